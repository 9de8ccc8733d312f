"""Base interfaces for pluggable components"""

from abc import ABC, abstractmethod
from typing import Optional

import numpy as np


class ExtractionError(Exception):
    """Exception raised by an embedding extractor that cannot produce a vector"""
    pass


class EmbeddingExtractor(ABC):
    """Maps a fixed-length mono audio window to a fixed-length vector.

    Callers prepare the window (resampling, peak normalization and tiling to
    ``required_length``) before calling ``extract``.
    """

    @property
    @abstractmethod
    def sample_rate(self) -> int:
        """Sample rate the extractor accepts (Hz)"""
        pass

    @property
    @abstractmethod
    def required_length(self) -> int:
        """Exact number of samples ``extract`` expects"""
        pass

    @property
    @abstractmethod
    def dimension(self) -> int:
        """Length of the produced embedding"""
        pass

    async def warm_up(self) -> None:
        """Load heavy resources before the first ``extract`` call"""
        return None

    @abstractmethod
    async def extract(self, samples: np.ndarray) -> Optional[np.ndarray]:
        """Embed one prepared window

        Args:
            samples: float32 samples of length ``required_length`` in [-1, 1]

        Returns:
            Embedding of length ``dimension``, or None on failure

        Raises:
            ExtractionError: If the backend fails
        """
        pass
