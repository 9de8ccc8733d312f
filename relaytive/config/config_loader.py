"""Configuration loader for RelayTive"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Exception raised when a configuration value is out of range"""
    pass


class Config:
    """Configuration manager for RelayTive

    Resolution order for the file: explicit ``config_path``, the
    ``RELAYTIVE_CONFIG`` environment variable, ``config/config.{RELAYTIVE_ENV}.yaml``
    and finally ``config/config.yaml``. A missing default file yields an empty
    configuration so every component runs on its coded defaults.
    """

    def __init__(self, config_path: Optional[str] = None):
        explicit = config_path is not None or os.getenv('RELAYTIVE_CONFIG') is not None
        if config_path is None:
            config_path = os.getenv('RELAYTIVE_CONFIG')
        if config_path is None:
            env = os.getenv('RELAYTIVE_ENV', 'development')
            # Try environment-specific config first, fall back to default
            env_config = Path(f"config/config.{env}.yaml")
            if env_config.exists():
                config_path = str(env_config)
            else:
                config_path = "config/config.yaml"

        self.config_path = Path(config_path)
        self._explicit = explicit
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file"""
        if not self.config_path.exists():
            if self._explicit:
                raise FileNotFoundError(f"Config file not found: {self.config_path}")
            logger.warning(f"Config file not found: {self.config_path}, using built-in defaults")
            return {}

        with open(self.config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation

        Args:
            key: Configuration key in dot notation (e.g., 'vad.energy_threshold_start')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        keys = key.split('.')
        value = self._config

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default

    def __getitem__(self, key: str) -> Any:
        """Allow dictionary-style access"""
        return self.get(key)

    def section(self, name: str) -> Dict[str, Any]:
        """Return a shallow copy of a top-level section (empty if absent)"""
        value = self._config.get(name)
        return dict(value) if isinstance(value, dict) else {}

    def validate(self) -> None:
        """Validate configuration values"""
        sample_rate = self.get('audio.sample_rate')
        if sample_rate is not None and sample_rate <= 0:
            raise ConfigurationError(f"Invalid sample_rate: {sample_rate}, must be positive")

        codebook_size = self.get('quantizer.codebook_size')
        if codebook_size is not None and codebook_size <= 0:
            raise ConfigurationError(f"Invalid codebook_size: {codebook_size}, must be positive")

        embedding_weight = self.get('classifier.embedding_weight', 0.6)
        phonetic_weight = self.get('classifier.phonetic_weight', 0.4)
        if abs(embedding_weight + phonetic_weight - 1.0) > 1e-6:
            raise ConfigurationError(
                f"Classifier weights must sum to 1, got {embedding_weight} + {phonetic_weight}"
            )

        # Check threshold ranges
        for key in (
            'classifier.confidence_threshold',
            'classifier.margin_threshold',
            'discovery.similarity_threshold',
            'discovery.min_pattern_confidence',
            'discovery.meaning_consistency_threshold',
            'matching.min_match_confidence',
            'matching.min_coverage',
            'matching.min_combined_confidence',
            'matching.fallback_similarity_threshold',
        ):
            value = self.get(key)
            if value is not None and not 0 <= value <= 1:
                raise ConfigurationError(f"Invalid {key}: {value}, must be in [0, 1]")


# Global config instance
config = Config()
