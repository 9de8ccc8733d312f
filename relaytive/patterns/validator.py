"""Pattern validation

A pattern is kept only when it recurs often enough, is confident enough, its
member segments sit close to the representative embedding (cohesion) and its
associated meanings agree (meaning consistency). Validation is independent of
discovery and can be re-run on a stored collection at any time.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Mapping, Optional

import numpy as np

from relaytive.analysis.vectors import cosine_similarity
from relaytive.models.features import AudioSegment
from relaytive.models.patterns import CompositionalPattern
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    """Per-check breakdown for one pattern"""
    pattern_id: str
    frequency_ok: bool
    confidence_ok: bool
    cohesion: Optional[float]
    cohesion_ok: bool
    meaning_consistency: float
    consistency_ok: bool

    @property
    def is_valid(self) -> bool:
        return self.frequency_ok and self.confidence_ok and self.cohesion_ok and self.consistency_ok


class PatternValidator:
    """Threshold-based pattern validation.

    Every check is a ``>=`` comparison against one threshold, so relaxing any
    threshold can only turn invalid patterns valid, never the reverse.

    Attributes:
        min_frequency: Minimum number of contributing segments
        min_confidence: Minimum pattern confidence
        similarity_threshold: Minimum cohesion of members to the representative
        meaning_consistency_threshold: Minimum fraction of modal meanings
    """

    def __init__(
        self,
        min_frequency: Optional[int] = None,
        min_confidence: Optional[float] = None,
        similarity_threshold: Optional[float] = None,
        meaning_consistency_threshold: Optional[float] = None
    ):
        def pick(value, key, default):
            return value if value is not None else config.get(key, default)

        self.min_frequency = pick(min_frequency, 'discovery.min_pattern_frequency', 1)
        self.min_confidence = pick(min_confidence, 'discovery.min_pattern_confidence', 0.25)
        self.similarity_threshold = pick(similarity_threshold, 'discovery.similarity_threshold', 0.5)
        self.meaning_consistency_threshold = pick(
            meaning_consistency_threshold, 'discovery.meaning_consistency_threshold', 0.6
        )

    @classmethod
    def from_discovery_config(cls, discovery_config) -> "PatternValidator":
        return cls(
            min_frequency=discovery_config.min_pattern_frequency,
            min_confidence=discovery_config.min_pattern_confidence,
            similarity_threshold=discovery_config.similarity_threshold,
            meaning_consistency_threshold=discovery_config.meaning_consistency_threshold,
        )

    def cohesion(self, pattern: CompositionalPattern,
                 segments: Mapping[str, AudioSegment]) -> Optional[float]:
        """Mean cosine similarity of member segments to the representative.

        Returns:
            None when none of the member segments are available
        """
        members = [segments[sid] for sid in pattern.contributing_segment_ids if sid in segments]
        if not members:
            return None
        similarities = [cosine_similarity(s.embedding, pattern.representative_embedding) for s in members]
        return float(np.mean(similarities))

    def meaning_consistency(self, pattern: CompositionalPattern) -> float:
        """Fraction of associated meanings equal to the modal meaning (0 if none)."""
        if not pattern.associated_meanings:
            return 0.0
        counts = Counter(pattern.associated_meanings)
        return max(counts.values()) / float(len(pattern.associated_meanings))

    def evaluate(self, pattern: CompositionalPattern,
                 segments: Optional[Mapping[str, AudioSegment]] = None) -> ValidationReport:
        segments = segments or {}
        cohesion = self.cohesion(pattern, segments)
        consistency = self.meaning_consistency(pattern)
        return ValidationReport(
            pattern_id=pattern.id,
            frequency_ok=pattern.frequency >= self.min_frequency,
            confidence_ok=pattern.confidence >= self.min_confidence,
            cohesion=cohesion,
            cohesion_ok=cohesion is None or cohesion >= self.similarity_threshold,
            meaning_consistency=consistency,
            consistency_ok=consistency >= self.meaning_consistency_threshold,
        )

    def is_valid(self, pattern: CompositionalPattern,
                 segments: Optional[Mapping[str, AudioSegment]] = None) -> bool:
        return self.evaluate(pattern, segments).is_valid

    def debug_report(self, pattern: CompositionalPattern,
                     segments: Optional[Mapping[str, AudioSegment]] = None) -> List[str]:
        """Human-readable check-by-check report, also logged at DEBUG level."""
        report = self.evaluate(pattern, segments)
        cohesion = "n/a" if report.cohesion is None else f"{report.cohesion:.3f}"
        lines = [
            f"Pattern {pattern.id[:8]} ({', '.join(pattern.associated_meanings) or 'no meaning'})",
            f"  frequency: {pattern.frequency} (min {self.min_frequency}) "
            f"{'ok' if report.frequency_ok else 'FAIL'}",
            f"  confidence: {pattern.confidence:.3f} (min {self.min_confidence}) "
            f"{'ok' if report.confidence_ok else 'FAIL'}",
            f"  cohesion: {cohesion} (min {self.similarity_threshold}) "
            f"{'ok' if report.cohesion_ok else 'FAIL'}",
            f"  meaning consistency: {report.meaning_consistency:.3f} "
            f"(min {self.meaning_consistency_threshold}) {'ok' if report.consistency_ok else 'FAIL'}",
            f"  position: {pattern.average_position:.2f}",
            f"  valid: {report.is_valid}",
        ]
        for line in lines:
            logger.debug(line)
        return lines
