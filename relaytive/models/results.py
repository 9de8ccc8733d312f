"""Data models for analysis results"""

from dataclasses import dataclass, field
from typing import List, Optional

import numpy as np

from relaytive.models.enums import (
    EmbeddingDefect,
    FailureKind,
    MatchStrategy,
    ResolutionTier,
)


NO_MATCH_TRANSLATION = "No matching pattern found. Please add more training examples."


@dataclass
class ExtractionOutcome:
    """Result of one guarded embedding extraction

    Attributes:
        embedding: The embedding, or None when unavailable
        failure: Failure category when no embedding was produced
        defect: Degeneracy reason for quality failures
        detail: Human-readable description of the failure
    """
    embedding: Optional[np.ndarray] = None
    failure: Optional[FailureKind] = None
    defect: Optional[EmbeddingDefect] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.embedding is not None and self.failure is None

    @classmethod
    def unavailable(
        cls,
        failure: FailureKind,
        detail: str,
        defect: Optional[EmbeddingDefect] = None
    ) -> "ExtractionOutcome":
        return cls(embedding=None, failure=failure, defect=defect, detail=detail)


@dataclass
class ClassificationAlternative:
    """A runner-up meaning and its probability"""
    meaning: str
    confidence: float


@dataclass
class ClassificationResult:
    """Result from the nearest-centroid classifier

    Attributes:
        top_meaning: Most probable meaning, or None without information
        confidence: Probability of the top meaning [0, 1]
        margin: Top probability minus the runner-up probability
        needs_confirmation: True when the result should be confirmed by a caregiver
        alternatives: Up to two runner-up meanings
        embedding_confidence: Embedding similarity of the top meaning
        phonetic_confidence: Phonetic similarity of the top meaning
    """
    top_meaning: Optional[str]
    confidence: float
    margin: float
    needs_confirmation: bool
    alternatives: List[ClassificationAlternative] = field(default_factory=list)
    embedding_confidence: float = 0.0
    phonetic_confidence: float = 0.0

    def __post_init__(self):
        assert 0.0 <= self.confidence <= 1.0 + 1e-6, "Confidence must be in [0, 1]"

    @classmethod
    def no_information(cls) -> "ClassificationResult":
        return cls(top_meaning=None, confidence=0.0, margin=0.0, needs_confirmation=True)

    @property
    def is_confident(self) -> bool:
        return self.top_meaning is not None and not self.needs_confirmation


@dataclass
class StringDistance:
    """Token-level alignment between two unit strings"""
    distance: int
    insertions: int
    deletions: int
    substitutions: int


@dataclass
class CodebookStatistics:
    """Diagnostic statistics of the frame quantizer"""
    total_observations: int
    active_clusters: int
    average_cluster_size: float
    max_cluster_size: int
    min_cluster_size: int
    purity: float
    utilization: float

    @property
    def is_well_distributed(self) -> bool:
        if self.max_cluster_size == 0:
            return False
        return self.min_cluster_size / self.max_cluster_size > 0.1 and self.purity > 0.3


@dataclass
class TranscriptionStatistics:
    """Diagnostic statistics of the phonetic transcriber"""
    total_frames_processed: int
    active_clusters: int
    cluster_utilization: float
    cluster_purity: float
    has_symbol_mapping: bool

    @property
    def is_healthy(self) -> bool:
        return (
            self.active_clusters > 10
            and self.cluster_utilization > 0.1
            and self.cluster_purity > 0.3
        )


@dataclass
class MatchedPattern:
    """A query segment matched to a stored pattern"""
    pattern_id: str
    similarity: float
    confidence: float
    frequency: int
    start_time: float
    end_time: float
    meanings: List[str]
    embedding: Optional[np.ndarray] = None

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


@dataclass
class PatternMatchResult:
    """Result from the pattern matcher

    Attributes:
        translation: Reconstructed meaning, or None when nothing matched
        confidence: Overall confidence [0, 1]
        strategy: Reconstruction strategy that produced the translation
        coverage: Fraction of the utterance explained by matched patterns
        matched_patterns: Per-segment matches that fed the reconstruction
        explanation: Human-readable account of how the result was reached
        matched_example_id: Training example used by the whole-utterance fallback
    """
    translation: Optional[str]
    confidence: float
    strategy: MatchStrategy
    coverage: float = 0.0
    matched_patterns: List[MatchedPattern] = field(default_factory=list)
    explanation: str = ""
    matched_example_id: Optional[str] = None

    def __post_init__(self):
        assert 0.0 <= self.confidence <= 1.0 + 1e-6, "Confidence must be in [0, 1]"

    @classmethod
    def no_match(cls, explanation: str, coverage: float = 0.0) -> "PatternMatchResult":
        return cls(
            translation=None,
            confidence=0.0,
            strategy=MatchStrategy.NONE,
            coverage=coverage,
            explanation=explanation,
        )

    @property
    def is_match(self) -> bool:
        return self.translation is not None

    @property
    def display_text(self) -> str:
        return self.translation if self.translation is not None else NO_MATCH_TRANSLATION


@dataclass
class MatchQualityAnalysis:
    """Summary of how well a match result is supported"""
    match_count: int
    average_confidence: float
    temporal_distribution: str
    confidence_consistency: str
    quality_score: float
    overall_confidence: float = 0.0


@dataclass
class ResolutionResult:
    """Outcome of the three-tier lookup

    A result with ``translation`` set to None is the explicit no-match outcome.
    """
    translation: Optional[str]
    confidence: float
    tier: ResolutionTier
    explanation: str
    classification: Optional[ClassificationResult] = None
    match: Optional[PatternMatchResult] = None

    @classmethod
    def no_match(
        cls,
        explanation: str,
        classification: Optional[ClassificationResult] = None,
        match: Optional[PatternMatchResult] = None
    ) -> "ResolutionResult":
        return cls(
            translation=None,
            confidence=0.0,
            tier=ResolutionTier.NONE,
            explanation=explanation,
            classification=classification,
            match=match,
        )

    @property
    def is_match(self) -> bool:
        return self.translation is not None

    @property
    def display_text(self) -> str:
        return self.translation if self.translation is not None else NO_MATCH_TRANSLATION
