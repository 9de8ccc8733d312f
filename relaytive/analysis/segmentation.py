"""Audio Segmentation Module

This module splits a training utterance into candidate sub-segments and embeds
each one. Four interchangeable strategies produce the time ranges:

    - fixed: equal windows with optional overlap
    - variable: sinusoidally varying widths between a minimum and a maximum
    - adaptive: boundaries at local energy minima below a fraction of the mean
    - embedding_based: boundaries where consecutive frame embeddings diverge,
      then spans are merged or split to respect min/max durations

A segment whose extraction fails is skipped; the pass never aborts.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import librosa
import numpy as np

from relaytive.analysis.vectors import cosine_similarity
from relaytive.input.extractor import GuardedExtractor
from relaytive.models.enums import SegmentationMode
from relaytive.models.features import AudioSegment
from relaytive.models.frames import AudioWindow
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


Range = Tuple[float, float]


@dataclass(frozen=True)
class SegmentationStrategy:
    """Segmentation strategy and its parameters

    Attributes:
        mode: Which strategy to run
        window: Window length for fixed segmentation (seconds)
        overlap: Fractional overlap for fixed segmentation [0, 1)
        min_duration: Minimum segment duration (seconds)
        max_duration: Maximum segment duration (seconds)
        similarity_threshold: Frame similarity below which a boundary is placed
        max_segments: Upper bound on ranges per utterance
    """
    mode: SegmentationMode
    window: float = 0.5
    overlap: float = 0.0
    min_duration: float = 0.2
    max_duration: float = 2.0
    similarity_threshold: float = 0.6
    max_segments: int = 16

    def __post_init__(self):
        assert 0.0 <= self.overlap < 1.0, "Overlap must be in [0, 1)"
        assert self.min_duration > 0, "Minimum duration must be positive"
        assert self.max_duration >= self.min_duration, "Maximum duration must not be below minimum"
        assert self.max_segments > 0, "Max segments must be positive"

    @classmethod
    def fixed(cls, window: float, overlap: float = 0.0, max_segments: int = 16) -> "SegmentationStrategy":
        return cls(SegmentationMode.FIXED, window=window, overlap=overlap,
                   min_duration=min(window, 0.2), max_duration=max(window, 0.2),
                   max_segments=max_segments)

    @classmethod
    def variable(cls, min_duration: float = 0.2, max_duration: float = 1.0,
                 max_segments: int = 16) -> "SegmentationStrategy":
        return cls(SegmentationMode.VARIABLE, min_duration=min_duration,
                   max_duration=max_duration, max_segments=max_segments)

    @classmethod
    def adaptive(cls, min_duration: float = 0.2, max_duration: float = 2.0,
                 max_segments: int = 16) -> "SegmentationStrategy":
        return cls(SegmentationMode.ADAPTIVE, min_duration=min_duration,
                   max_duration=max_duration, max_segments=max_segments)

    @classmethod
    def embedding_based(cls, min_duration: float = 0.2, max_duration: float = 2.0,
                        similarity_threshold: float = 0.6,
                        max_segments: int = 16) -> "SegmentationStrategy":
        return cls(SegmentationMode.EMBEDDING_BASED, min_duration=min_duration,
                   max_duration=max_duration, similarity_threshold=similarity_threshold,
                   max_segments=max_segments)

    @classmethod
    def from_config(cls, prefix: str = 'segmentation') -> "SegmentationStrategy":
        """Build the strategy named by ``<prefix>.strategy``."""
        name = config.get(f'{prefix}.strategy', 'embedding_based')
        try:
            mode = SegmentationMode(name)
        except ValueError:
            logger.warning(f"Unknown segmentation strategy '{name}', using embedding_based")
            mode = SegmentationMode.EMBEDDING_BASED
        return cls(
            mode=mode,
            window=config.get(f'{prefix}.window', 0.5),
            overlap=config.get(f'{prefix}.overlap', 0.0),
            min_duration=config.get(f'{prefix}.min_duration', 0.2),
            max_duration=config.get(f'{prefix}.max_duration', 2.0),
            similarity_threshold=config.get(f'{prefix}.similarity_threshold', 0.6),
            max_segments=config.get(f'{prefix}.max_segments', 16),
        )


def segment_confidence(samples: np.ndarray, duration: float) -> float:
    """Confidence from RMS energy and whether the duration is in a reasonable band."""
    if len(samples) == 0:
        return 0.0
    rms = float(np.sqrt(np.mean(np.asarray(samples, dtype=np.float64) ** 2)))
    energy_factor = min(1.0, rms * 10.0)
    duration_factor = 1.0 if 0.1 < duration < 2.0 else 0.5
    return float(energy_factor * duration_factor)


def finalize_spans(boundaries: Sequence[float], total: float,
                   min_duration: float, max_duration: float) -> List[Range]:
    """Turn interior boundaries into spans honouring min/max durations.

    Under-long spans merge into the following span (the previous one for the
    last span); over-long spans are split evenly.

    Args:
        boundaries: Interior boundary times (any order, may contain duplicates)
        total: Utterance duration
        min_duration: Minimum span duration
        max_duration: Maximum span duration

    Returns:
        Ordered, contiguous spans covering [0, total]
    """
    if total <= 0:
        return []
    points = [0.0] + sorted(b for b in set(boundaries) if 0.0 < b < total) + [total]
    spans = [[points[i], points[i + 1]] for i in range(len(points) - 1)]

    i = 0
    while i < len(spans) and len(spans) > 1:
        start, end = spans[i]
        if end - start >= min_duration:
            i += 1
            continue
        if i + 1 < len(spans):
            spans[i + 1][0] = start
        else:
            spans[i - 1][1] = end
        del spans[i]
        if i > 0 and i == len(spans):
            i -= 1

    result: List[Range] = []
    for start, end in spans:
        length = end - start
        parts = max(1, int(math.ceil(length / max_duration - 1e-9)))
        step = length / parts
        for p in range(parts):
            result.append((start + p * step, start + (p + 1) * step if p < parts - 1 else end))
    return result


class SegmentExtractor:
    """Segments utterances and attaches an embedding to each segment.

    Attributes:
        extractor: Guarded embedding extractor
        strategy: Active segmentation strategy
        frame_window: Frame length used by embedding-based segmentation (seconds)
        frame_hop: Frame hop used by embedding-based segmentation (seconds)
        max_frame_embeddings: Cap on frame embeddings per utterance
        min_segment_confidence: Segments at or below this confidence are dropped
    """

    def __init__(
        self,
        extractor: GuardedExtractor,
        strategy: Optional[SegmentationStrategy] = None,
        max_frame_embeddings: Optional[int] = None
    ):
        self.extractor = extractor
        self.strategy = strategy or SegmentationStrategy.from_config()
        self.frame_window = config.get('segmentation.frame_window', 0.1)
        self.frame_hop = config.get('segmentation.frame_hop', 0.05)
        self.max_frame_embeddings = max_frame_embeddings if max_frame_embeddings is not None else config.get('segmentation.max_frame_embeddings', 64)
        self.min_segment_confidence = 0.1

    def _fixed_ranges(self, total: float) -> List[Range]:
        window = self.strategy.window
        step = window * (1.0 - self.strategy.overlap)
        ranges: List[Range] = []
        current = 0.0
        while current < total - 1e-9 and len(ranges) < self.strategy.max_segments:
            end = min(current + window, total)
            if end - current >= min(window, self.strategy.min_duration) * 0.5:
                ranges.append((current, end))
            current += step
        return ranges

    def _variable_ranges(self, total: float) -> List[Range]:
        lo, hi = self.strategy.min_duration, self.strategy.max_duration
        step = lo * 0.5
        ranges: List[Range] = []
        current = 0.0
        while current < total - 1e-9 and len(ranges) < self.strategy.max_segments:
            progress = current / total
            target = lo + (hi - lo) * (0.5 + 0.5 * math.sin(progress * math.pi))
            end = min(current + target, total)
            if end - current >= lo * 0.5:
                ranges.append((current, end))
            current += step
        return ranges

    def _adaptive_ranges(self, window: AudioWindow) -> List[Range]:
        total = window.duration
        samples = np.asarray(window.samples, dtype=np.float32)
        if len(samples) < 1024:
            return [(0.0, total)]
        energy = librosa.feature.rms(y=samples, frame_length=1024, hop_length=512, center=False)[0] ** 2
        n = len(energy)
        radius = max(5, n // 20)
        if n <= 2 * radius:
            return finalize_spans([], total, self.strategy.min_duration, self.strategy.max_duration)

        threshold = 0.3 * float(np.mean(energy))
        boundaries: List[float] = []
        for i in range(radius, n - radius):
            value = energy[i]
            if value < threshold and value <= np.min(energy[i - radius:i + radius + 1]):
                t = i / float(n) * total
                if not boundaries or t - boundaries[-1] >= self.strategy.min_duration:
                    boundaries.append(t)
        return finalize_spans(boundaries, total, self.strategy.min_duration, self.strategy.max_duration)

    async def _embedding_ranges(self, window: AudioWindow) -> List[Range]:
        total = window.duration
        frame = self.frame_window
        if total <= frame:
            return [(0.0, total)]

        count = int((total - frame) / self.frame_hop) + 1
        hop = self.frame_hop
        if count > self.max_frame_embeddings:
            count = self.max_frame_embeddings
            hop = (total - frame) / float(count - 1)

        embeddings = []
        for i in range(count):
            start = i * hop
            outcome = await self.extractor.embed(window.slice(start, start + frame))
            embeddings.append(outcome.embedding if outcome.ok else None)

        boundaries: List[float] = []
        for i in range(1, count):
            prev, cur = embeddings[i - 1], embeddings[i]
            if prev is None or cur is None:
                continue
            if cosine_similarity(prev, cur) < self.strategy.similarity_threshold:
                # Midpoint between the two frame centres
                boundaries.append(i * hop + frame / 2.0 - hop / 2.0)

        return finalize_spans(boundaries, total, self.strategy.min_duration, self.strategy.max_duration)

    async def compute_ranges(self, window: AudioWindow) -> List[Range]:
        """Time ranges for an utterance under the active strategy, capped at max_segments."""
        total = window.duration
        if total <= 0:
            return []
        mode = self.strategy.mode
        if mode == SegmentationMode.FIXED:
            ranges = self._fixed_ranges(total)
        elif mode == SegmentationMode.VARIABLE:
            ranges = self._variable_ranges(total)
        elif mode == SegmentationMode.ADAPTIVE:
            ranges = self._adaptive_ranges(window)
        else:
            ranges = await self._embedding_ranges(window)
        return ranges[: self.strategy.max_segments]

    async def extract_segments(self, window: AudioWindow, parent_example_id: str) -> List[AudioSegment]:
        """Segment an utterance and embed each segment.

        Args:
            window: Utterance audio
            parent_example_id: Id recorded on every produced segment

        Returns:
            Valid segments in time order; failed segments are skipped
        """
        if window.is_empty:
            return []

        try:
            ranges = await self.compute_ranges(window)
        except Exception as e:
            logger.error(f"Segmentation failed for {parent_example_id}: {e}", exc_info=True)
            return []

        total = window.duration
        segments: List[AudioSegment] = []
        for start, end in ranges:
            try:
                sub = window.slice(start, end)
                if sub.is_empty:
                    continue
                outcome = await self.extractor.embed(sub)
                if not outcome.ok:
                    continue
                segment = AudioSegment(
                    start_time=start,
                    end_time=end,
                    embedding=outcome.embedding,
                    parent_example_id=parent_example_id,
                    confidence=segment_confidence(sub.samples, end - start),
                    parent_duration=total,
                )
                if segment.is_valid(self.min_segment_confidence):
                    segments.append(segment)
            except Exception as e:
                logger.warning(f"Skipping segment {start:.2f}-{end:.2f}s of {parent_example_id}: {e}")

        logger.debug(
            f"Extracted {len(segments)}/{len(ranges)} segments from {parent_example_id} "
            f"({self.strategy.mode.value})"
        )
        return segments
