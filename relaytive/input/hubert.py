"""HuBERT Embedding Extractor

Embeds audio windows with a pre-trained HuBERT encoder from transformers,
mean-pooling the last hidden state. The model is loaded lazily on the first
call and inference runs in a worker thread so the event loop stays free.
"""

import asyncio
import logging
from typing import Optional

import numpy as np
import torch
from transformers import AutoConfig, AutoFeatureExtractor, HubertModel

from relaytive.models.interfaces import EmbeddingExtractor, ExtractionError
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


class HubertEmbeddingExtractor(EmbeddingExtractor):
    """EmbeddingExtractor backed by a transformers HuBERT model.

    Attributes:
        model_path: Hugging Face model id or local path
        model: Loaded HubertModel (None until first use)
        processor: Matching feature extractor
        device: "cuda" when enabled and available, else "cpu"
    """

    def __init__(self, model_path: Optional[str] = None):
        self.model_path = model_path or config.get('extractor.model_path', 'facebook/hubert-base-ls960')
        self._sample_rate = config.get('audio.sample_rate', 16000)
        self._required_length = int(round(config.get('extractor.window_seconds', 2.0) * self._sample_rate))
        self._dimension = self._resolve_dimension(config.get('extractor.dimension', 768))

        self.model: Optional[HubertModel] = None
        self.processor = None
        self.device = "cuda" if config.get('extractor.use_gpu', False) and torch.cuda.is_available() else "cpu"

        logger.info(f"HubertEmbeddingExtractor initialized with device: {self.device}")

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def required_length(self) -> int:
        return self._required_length

    @property
    def dimension(self) -> int:
        return self._dimension

    def _resolve_dimension(self, configured: int) -> int:
        """Hidden size from the model config, so callers can size buffers before the weights load."""
        try:
            hidden_size = int(AutoConfig.from_pretrained(self.model_path).hidden_size)
        except Exception as e:
            # The weights cannot load either; extraction will report the failure
            logger.warning(f"Could not read HuBERT config from {self.model_path}: {e}")
            return int(configured)
        if hidden_size != configured:
            logger.info(f"Using hidden size {hidden_size} from model config (configured {configured})")
        return hidden_size

    def _load_model(self):
        """Load the pre-trained encoder.

        Raises:
            Exception: If model loading fails or its hidden size differs from ``dimension``
        """
        try:
            logger.info(f"Loading HuBERT model from {self.model_path}")
            self.processor = AutoFeatureExtractor.from_pretrained(self.model_path)
            model = HubertModel.from_pretrained(self.model_path)
            hidden_size = int(model.config.hidden_size)
            if hidden_size != self._dimension:
                raise ExtractionError(f"model hidden size {hidden_size} does not match dimension {self._dimension}")
            model.to(self.device)
            model.eval()
            self.model = model
            logger.info("HuBERT model loaded successfully")
        except Exception as e:
            logger.error(f"Failed to load HuBERT model: {e}", exc_info=True)
            raise

    def _ensure_loaded(self) -> None:
        if self.model is None or self.processor is None:
            self._load_model()

    async def warm_up(self) -> None:
        await asyncio.to_thread(self._ensure_loaded)

    def _embed(self, samples: np.ndarray) -> np.ndarray:
        self._ensure_loaded()

        inputs = self.processor(
            samples,
            sampling_rate=self._sample_rate,
            return_tensors="pt"
        )
        inputs = {k: v.to(self.device) for k, v in inputs.items()}

        with torch.no_grad():
            outputs = self.model(**inputs)
            pooled = outputs.last_hidden_state.mean(dim=1)

        return pooled.cpu().numpy()[0].astype(np.float32)

    async def extract(self, samples: np.ndarray) -> Optional[np.ndarray]:
        try:
            return await asyncio.to_thread(self._embed, np.asarray(samples, dtype=np.float32))
        except Exception as e:
            raise ExtractionError(f"HuBERT embedding failed: {e}") from e
