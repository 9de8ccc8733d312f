"""Configuration package"""

from relaytive.config.config_loader import Config, ConfigurationError, config

__all__ = ["Config", "ConfigurationError", "config"]
