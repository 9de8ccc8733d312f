"""Embedding Extraction

This module prepares audio windows for an EmbeddingExtractor and guards every
call to it. Windows shorter than the extractor's required length are tiled
(cyclically repeated) and longer ones are truncated; this policy is applied on
every path (frames, segments and whole utterances).

The guard serializes access to the extractor, bounds each call with a timeout
and turns every failure into a typed ExtractionOutcome instead of raising.

A lightweight librosa log-mel extractor is provided as the default backend.
"""

import asyncio
import hashlib
import logging
from collections import Counter, OrderedDict
from typing import Optional

import librosa
import numpy as np

from relaytive.analysis.vectors import find_defect
from relaytive.models.enums import FailureKind
from relaytive.models.frames import AudioWindow
from relaytive.models.interfaces import EmbeddingExtractor, ExtractionError
from relaytive.models.results import ExtractionOutcome
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


def prepare_window(samples: np.ndarray, required_length: int) -> np.ndarray:
    """Tile or truncate samples to exactly ``required_length``.

    Args:
        samples: Non-empty mono samples
        required_length: Target number of samples

    Returns:
        float32 array of length ``required_length``
    """
    samples = np.asarray(samples, dtype=np.float32)
    if len(samples) == required_length:
        return samples.copy()
    # numpy.resize repeats the input cyclically, which both tiles and truncates
    return np.resize(samples, required_length).astype(np.float32)


def peak_normalize(samples: np.ndarray) -> np.ndarray:
    """Scale into [-1, 1] only when the peak exceeds 1."""
    peak = float(np.max(np.abs(samples))) if len(samples) else 0.0
    if peak > 1.0:
        return (samples / peak).astype(np.float32)
    return samples


class MelEmbeddingExtractor(EmbeddingExtractor):
    """Deterministic embedding from the time-averaged log-mel spectrum.

    The log-mel spectrum (dB relative to its peak) is averaged over time and
    mean-centred, so silence maps to the zero vector and tonal content maps to
    a direction determined by its spectral shape.
    """

    def __init__(
        self,
        sample_rate: Optional[int] = None,
        window_seconds: Optional[float] = None,
        n_mels: Optional[int] = None
    ):
        self._sample_rate = sample_rate if sample_rate is not None else config.get('audio.sample_rate', 16000)
        window_seconds = window_seconds if window_seconds is not None else config.get('extractor.window_seconds', 2.0)
        self._required_length = int(round(window_seconds * self._sample_rate))
        self.n_mels = n_mels if n_mels is not None else config.get('extractor.n_mels', 40)
        self.n_fft = config.get('extractor.n_fft', 512)
        self.hop_length = config.get('extractor.hop_length', 160)

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def required_length(self) -> int:
        return self._required_length

    @property
    def dimension(self) -> int:
        return self.n_mels

    def _embed(self, samples: np.ndarray) -> np.ndarray:
        mel = librosa.feature.melspectrogram(
            y=samples,
            sr=self._sample_rate,
            n_fft=self.n_fft,
            hop_length=self.hop_length,
            n_mels=self.n_mels,
        )
        log_mel = librosa.power_to_db(mel, ref=np.max)
        profile = np.mean(log_mel, axis=1)
        return (profile - np.mean(profile)).astype(np.float32)

    async def extract(self, samples: np.ndarray) -> Optional[np.ndarray]:
        try:
            return self._embed(np.asarray(samples, dtype=np.float32))
        except Exception as e:
            raise ExtractionError(f"Mel embedding failed: {e}") from e


class GuardedExtractor:
    """Serialized, time-bounded access to an EmbeddingExtractor.

    Attributes:
        extractor: Wrapped backend
        timeout: Seconds allowed per call
        failure_counts: Failures seen so far, by FailureKind
        defect_counts: Degenerate embeddings seen so far, by EmbeddingDefect
    """

    def __init__(
        self,
        extractor: EmbeddingExtractor,
        timeout: Optional[float] = None,
        cache_size: Optional[int] = None
    ):
        self.extractor = extractor
        self.timeout = timeout if timeout is not None else config.get('extractor.timeout', 5.0)
        self.cache_size = cache_size if cache_size is not None else config.get('extractor.cache_size', 20)
        self.failure_counts = Counter()
        self.defect_counts = Counter()
        self.total_calls = 0
        self._lock: Optional[asyncio.Lock] = None
        self._cache: "OrderedDict[str, np.ndarray]" = OrderedDict()

    @property
    def sample_rate(self) -> int:
        return self.extractor.sample_rate

    @property
    def dimension(self) -> int:
        return self.extractor.dimension

    def _get_lock(self) -> asyncio.Lock:
        # Created on first use so it binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def warm_up(self) -> bool:
        """Load the backend ahead of the first call, without the per-call timeout.

        Returns:
            False when the backend could not be loaded
        """
        try:
            async with self._get_lock():
                await self.extractor.warm_up()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Extractor warm-up failed: {e}", exc_info=True)
            self.failure_counts[FailureKind.RESOURCE] += 1
            return False
        return True

    def _fail(self, kind: FailureKind, detail: str, defect=None) -> ExtractionOutcome:
        self.failure_counts[kind] += 1
        if defect is not None:
            self.defect_counts[defect] += 1
        logger.debug(f"Embedding unavailable [{kind.value}]: {detail}")
        return ExtractionOutcome.unavailable(kind, detail, defect)

    def _cache_key(self, samples: np.ndarray) -> str:
        return hashlib.sha1(samples.tobytes()).hexdigest()

    def _prepare(self, window: AudioWindow) -> Optional[np.ndarray]:
        samples = np.asarray(window.samples, dtype=np.float32)
        if window.sample_rate != self.extractor.sample_rate:
            samples = librosa.resample(
                samples,
                orig_sr=window.sample_rate,
                target_sr=self.extractor.sample_rate
            ).astype(np.float32)
            if len(samples) == 0:
                return None
        samples = peak_normalize(samples)
        return prepare_window(samples, self.extractor.required_length)

    async def embed(self, window: AudioWindow, use_cache: bool = False) -> ExtractionOutcome:
        """Embed a window, never raising for expected failures.

        Args:
            window: Audio to embed
            use_cache: Look up and store the result in the LRU cache

        Returns:
            ExtractionOutcome with either an embedding or a failure category
        """
        self.total_calls += 1
        if window.is_empty:
            return self._fail(FailureKind.INPUT, "empty window")
        if not np.all(np.isfinite(window.samples)):
            return self._fail(FailureKind.INPUT, "non-finite samples")

        try:
            prepared = self._prepare(window)
        except Exception as e:
            logger.warning(f"Window preparation failed: {e}")
            return self._fail(FailureKind.INPUT, f"preparation failed: {e}")
        if prepared is None:
            return self._fail(FailureKind.INPUT, "window too short after resampling")

        key = None
        if use_cache and self.cache_size > 0:
            key = self._cache_key(prepared)
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return ExtractionOutcome(embedding=cached.copy())

        try:
            async with self._get_lock():
                embedding = await asyncio.wait_for(
                    self.extractor.extract(prepared),
                    timeout=self.timeout
                )
        except asyncio.TimeoutError:
            return self._fail(FailureKind.RESOURCE, f"extractor timed out after {self.timeout}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Extractor failed: {e}", exc_info=True)
            return self._fail(FailureKind.RESOURCE, f"extractor failed: {e}")

        if embedding is None:
            return self._fail(FailureKind.RESOURCE, "extractor returned no embedding")

        embedding = np.asarray(embedding, dtype=np.float32).reshape(-1)
        defect = find_defect(embedding, self.extractor.dimension)
        if defect is not None:
            return self._fail(FailureKind.QUALITY, f"degenerate embedding ({defect.value})", defect)

        if key is not None:
            self._cache[key] = embedding.copy()
            while len(self._cache) > self.cache_size:
                self._cache.popitem(last=False)

        return ExtractionOutcome(embedding=embedding)

    def clear_cache(self) -> None:
        self._cache.clear()


def create_extractor(backend: Optional[str] = None) -> EmbeddingExtractor:
    """Build the configured extractor backend ('mel' or 'hubert')."""
    backend = backend if backend is not None else config.get('extractor.backend', 'mel')
    if backend == 'hubert':
        from relaytive.input.hubert import HubertEmbeddingExtractor
        return HubertEmbeddingExtractor()
    if backend != 'mel':
        logger.warning(f"Unknown extractor backend '{backend}', using mel")
    return MelEmbeddingExtractor()
