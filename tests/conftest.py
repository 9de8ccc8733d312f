"""Pytest configuration and fixtures"""

from typing import Optional

import numpy as np
import pytest
from hypothesis import settings, Verbosity

from relaytive.input.extractor import GuardedExtractor, MelEmbeddingExtractor
from relaytive.models.features import TrainingExample
from relaytive.models.frames import AudioWindow
from relaytive.models.interfaces import EmbeddingExtractor, ExtractionError

# Register Hypothesis profiles
settings.register_profile("ci", max_examples=100, verbosity=Verbosity.verbose)
settings.register_profile("dev", max_examples=20, verbosity=Verbosity.normal)
settings.register_profile("debug", max_examples=10, verbosity=Verbosity.verbose)

# Use CI profile by default
settings.load_profile("ci")


SAMPLE_RATE = 16000


# Tones used by tests have an integer number of cycles in 0.6 s so tiling stays phase-continuous
def _tone(frequency: float, duration: float, amplitude: float = 0.5,
         sample_rate: int = SAMPLE_RATE) -> np.ndarray:
    t = np.arange(int(round(duration * sample_rate))) / float(sample_rate)
    return (amplitude * np.sin(2 * np.pi * frequency * t)).astype(np.float32)


def _utterance(*frequencies: float, part: float = 0.6) -> AudioWindow:
    """Concatenation of equal-length tones"""
    samples = np.concatenate([_tone(f, part) for f in frequencies])
    return AudioWindow(samples=samples, sample_rate=SAMPLE_RATE)


def _silence(duration: float = 1.0) -> AudioWindow:
    return AudioWindow(samples=np.zeros(int(duration * SAMPLE_RATE), dtype=np.float32),
                       sample_rate=SAMPLE_RATE)


class AlwaysFailingExtractor(EmbeddingExtractor):
    """Extractor whose every call raises"""

    def __init__(self, dimension: int = 40):
        self._dimension = dimension
        self.calls = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def required_length(self) -> int:
        return SAMPLE_RATE // 2

    @property
    def dimension(self) -> int:
        return self._dimension

    async def extract(self, samples: np.ndarray) -> Optional[np.ndarray]:
        self.calls += 1
        raise ExtractionError("backend unavailable")


class FixedExtractor(EmbeddingExtractor):
    """Extractor returning a configurable vector regardless of input"""

    def __init__(self, vector: Optional[np.ndarray] = None, dimension: int = 8):
        self._dimension = dimension
        self.vector = vector if vector is not None else np.arange(1, dimension + 1, dtype=np.float32)
        self.calls = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def required_length(self) -> int:
        return 1600

    @property
    def dimension(self) -> int:
        return self._dimension

    async def extract(self, samples: np.ndarray) -> Optional[np.ndarray]:
        self.calls += 1
        return self.vector


@pytest.fixture
def mel_backend():
    """Deterministic librosa log-mel backend with a short analysis window"""
    return MelEmbeddingExtractor(sample_rate=SAMPLE_RATE, window_seconds=0.5, n_mels=40)


@pytest.fixture
def mel_extractor(mel_backend):
    """Guarded deterministic mel extractor"""
    return GuardedExtractor(mel_backend, timeout=10.0, cache_size=20)


@pytest.fixture
def failing_extractor(failing_backend):
    return GuardedExtractor(failing_backend, timeout=1.0, cache_size=0)


@pytest.fixture
def make_example():
    """Factory for training examples built from tone sequences"""
    def _make(explanation: str, *frequencies: float, part: float = 0.6) -> TrainingExample:
        return TrainingExample(audio=_utterance(*frequencies, part=part), explanation=explanation)
    return _make


@pytest.fixture
def tone():
    """Factory for pure tones at 16 kHz"""
    return _tone


@pytest.fixture
def utterance():
    """Factory for utterances made of consecutive 0.6 s tones"""
    return _utterance


@pytest.fixture
def silence():
    return _silence


@pytest.fixture
def failing_backend():
    return AlwaysFailingExtractor()


@pytest.fixture
def fixed_backend():
    """Factory for extractors that always return the same vector"""
    def _make(vector: Optional[np.ndarray] = None, dimension: int = 8) -> FixedExtractor:
        return FixedExtractor(vector, dimension)
    return _make
