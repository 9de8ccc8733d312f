"""Data models and interfaces"""

from relaytive.models.enums import (
    VADState,
    FailureKind,
    EmbeddingDefect,
    SegmentationMode,
    MatchStrategy,
    ResolutionTier,
)
from relaytive.models.frames import AudioWindow, VoicedSegment, VADResult
from relaytive.models.features import (
    AudioSegment,
    PhoneticTranscription,
    TrainingExample,
    CodebookSnapshot,
    MeaningCentroid,
    SnapshotError,
)
from relaytive.models.results import (
    ExtractionOutcome,
    ClassificationAlternative,
    ClassificationResult,
    StringDistance,
    CodebookStatistics,
    TranscriptionStatistics,
    MatchedPattern,
    PatternMatchResult,
    MatchQualityAnalysis,
    ResolutionResult,
    NO_MATCH_TRANSLATION,
)
from relaytive.models.patterns import CompositionalPattern, PatternCollection
from relaytive.models.interfaces import EmbeddingExtractor, ExtractionError

__all__ = [
    # Enums
    "VADState",
    "FailureKind",
    "EmbeddingDefect",
    "SegmentationMode",
    "MatchStrategy",
    "ResolutionTier",
    # Frames
    "AudioWindow",
    "VoicedSegment",
    "VADResult",
    # Features
    "AudioSegment",
    "PhoneticTranscription",
    "TrainingExample",
    "CodebookSnapshot",
    "MeaningCentroid",
    "SnapshotError",
    # Results
    "ExtractionOutcome",
    "ClassificationAlternative",
    "ClassificationResult",
    "StringDistance",
    "CodebookStatistics",
    "TranscriptionStatistics",
    "MatchedPattern",
    "PatternMatchResult",
    "MatchQualityAnalysis",
    "ResolutionResult",
    "NO_MATCH_TRANSLATION",
    # Patterns
    "CompositionalPattern",
    "PatternCollection",
    # Interfaces
    "EmbeddingExtractor",
    "ExtractionError",
]
