"""Pattern library quality reporting"""

import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

import numpy as np

from relaytive.models.features import AudioSegment
from relaytive.models.patterns import PatternCollection
from relaytive.patterns.validator import PatternValidator


logger = logging.getLogger(__name__)


@dataclass
class PatternQualityReport:
    """Summary of a pattern collection

    Attributes:
        total_patterns: Patterns in the collection
        significant_patterns: Patterns meeting the significance minimums
        average_frequency: Mean contributing segments per pattern
        average_confidence: Mean pattern confidence
        coverage: Fraction of patterns that are significant
        recommendations: Suggested actions for the caregiver or tuner
    """
    total_patterns: int
    significant_patterns: int
    average_frequency: float
    average_confidence: float
    coverage: float
    recommendations: List[str] = field(default_factory=list)

    @property
    def quality_score(self) -> float:
        return self.coverage * 0.4 + self.average_confidence * 0.6


def analyze_pattern_quality(
    collection: PatternCollection,
    min_confidence: float = 0.5,
    min_frequency: int = 2
) -> PatternQualityReport:
    patterns = collection.patterns
    total = len(patterns)
    significant = len(collection.significant_patterns(min_confidence, min_frequency))

    recommendations = []
    if significant < 3:
        recommendations.append(
            "Consider adding more diverse training examples to discover additional patterns"
        )
    if sum(1 for p in patterns if p.confidence < 0.5) > total / 2.0:
        recommendations.append(
            "Many patterns have low confidence - consider adjusting similarity thresholds"
        )
    if sum(1 for p in patterns if p.frequency < 3) > total / 3.0:
        recommendations.append("Consider increasing minimum pattern frequency to reduce noise")

    return PatternQualityReport(
        total_patterns=total,
        significant_patterns=significant,
        average_frequency=float(np.mean([p.frequency for p in patterns])) if patterns else 0.0,
        average_confidence=float(np.mean([p.confidence for p in patterns])) if patterns else 0.0,
        coverage=significant / float(total) if total else 0.0,
        recommendations=recommendations,
    )


def log_collection_debug(
    collection: PatternCollection,
    validator: PatternValidator,
    segments: Optional[Mapping[str, AudioSegment]] = None
) -> List[str]:
    """Dump every pattern's validation breakdown at DEBUG level."""
    lines = [f"Pattern collection: {len(collection)} patterns"]
    logger.debug(lines[0])
    for pattern in collection:
        lines.extend(validator.debug_report(pattern, segments))
    return lines
