"""Enumerations shared across the pipeline"""

from enum import Enum


class VADState(Enum):
    """Voice activity detector states"""
    SILENCE = "silence"
    SPEECH_START = "speech_start"
    SPEECH = "speech"
    HANGOVER = "hangover"


class FailureKind(Enum):
    """Failure categories used when logging degraded conditions"""
    INPUT = "input"
    RESOURCE = "resource"
    QUALITY = "quality"
    CONCURRENCY = "concurrency"


class EmbeddingDefect(Enum):
    """Reasons an embedding is rejected as degenerate"""
    EMPTY = "empty"
    NAN_INF = "nan_inf"
    ZEROS = "zeros"
    LOW_NORM = "low_norm"
    CONSTANT = "constant"
    HIGH_NORM = "high_norm"
    DIMENSION_MISMATCH = "dimension_mismatch"


class SegmentationMode(Enum):
    """Segmentation strategies for splitting an utterance"""
    FIXED = "fixed"
    VARIABLE = "variable"
    ADAPTIVE = "adaptive"
    EMBEDDING_BASED = "embedding_based"


class MatchStrategy(Enum):
    """How a pattern match result was reconstructed"""
    MEANING_COMBINATION = "meaning_combination"
    FREQUENCY_WEIGHTED = "frequency_weighted"
    DOMINANT_PATTERN = "dominant_pattern"
    WHOLE_UTTERANCE = "whole_utterance"
    NONE = "none"


class ResolutionTier(Enum):
    """Tier of the lookup policy that produced a translation"""
    PHONETIC = "phonetic"
    COMPOSITIONAL = "compositional"
    NEAREST_NEIGHBOR = "nearest_neighbor"
    NONE = "none"
