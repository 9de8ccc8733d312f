"""Compositional Pattern Matching

This module explains a new utterance with the stored pattern library. The
utterance is segmented, each segment is matched to its closest significant
pattern, and if enough of the utterance is covered a meaning is reconstructed
with one of three strategies (tried in order):

    1. meaning combination: meanings weighted by match confidence squared
    2. frequency weighted: confidence x min(1, frequency / 10)
    3. dominant pattern: the single match with the highest confidence x frequency

Otherwise the matcher falls back to whole-utterance nearest-neighbour search
over the raw training examples, guarded against silence-vs-silence matches.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from relaytive.analysis.segmentation import SegmentExtractor, SegmentationStrategy
from relaytive.analysis.vectors import cosine_similarity, find_defect, mean_embedding
from relaytive.models.enums import MatchStrategy
from relaytive.models.features import AudioSegment, TrainingExample
from relaytive.models.frames import AudioWindow
from relaytive.models.patterns import PatternCollection
from relaytive.models.results import MatchedPattern, MatchQualityAnalysis, PatternMatchResult
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


NO_MATCH_EXPLANATION = "No compositional or whole-utterance matches found"


@dataclass
class CompositionalMatchingConfig:
    """Matching thresholds, silence guards and segmentation"""
    min_match_confidence: float = 0.6
    min_coverage: float = 0.4
    min_combined_confidence: float = 0.5
    fallback_similarity_threshold: float = 0.7
    segmentation: Optional[SegmentationStrategy] = None
    max_query_segments: int = 32
    near_zero_norm: float = 1e-6
    near_zero_component: float = 1e-6
    max_near_zero_fraction: float = 0.5
    uniform_high_score: float = 0.98
    uniform_high_spread: float = 0.01
    uniform_high_top_k: int = 3
    significance_min_confidence: float = 0.5
    significance_min_frequency: int = 2

    @classmethod
    def default(cls) -> "CompositionalMatchingConfig":
        return cls()

    @classmethod
    def conservative(cls) -> "CompositionalMatchingConfig":
        return cls(
            min_match_confidence=0.75,
            min_coverage=0.6,
            min_combined_confidence=0.7,
            fallback_similarity_threshold=0.8,
            segmentation=SegmentationStrategy.variable(0.3, 0.8),
        )

    @classmethod
    def aggressive(cls) -> "CompositionalMatchingConfig":
        return cls(
            min_match_confidence=0.5,
            min_coverage=0.3,
            min_combined_confidence=0.4,
            fallback_similarity_threshold=0.6,
            segmentation=SegmentationStrategy.variable(0.1, 1.2),
        )

    @classmethod
    def from_config(cls) -> "CompositionalMatchingConfig":
        preset = config.get('matching.preset', 'default')
        if preset == 'conservative':
            return cls.conservative()
        if preset == 'aggressive':
            return cls.aggressive()
        return cls(
            min_match_confidence=config.get('matching.min_match_confidence', 0.6),
            min_coverage=config.get('matching.min_coverage', 0.4),
            min_combined_confidence=config.get('matching.min_combined_confidence', 0.5),
            fallback_similarity_threshold=config.get('matching.fallback_similarity_threshold', 0.7),
            max_query_segments=config.get('matching.max_query_segments', 32),
            near_zero_norm=config.get('matching.near_zero_norm', 1e-6),
            near_zero_component=config.get('matching.near_zero_component', 1e-6),
            max_near_zero_fraction=config.get('matching.max_near_zero_fraction', 0.5),
            uniform_high_score=config.get('matching.uniform_high_score', 0.98),
            uniform_high_spread=config.get('matching.uniform_high_spread', 0.01),
            uniform_high_top_k=config.get('matching.uniform_high_top_k', 3),
            significance_min_confidence=config.get('collection.significance_min_confidence', 0.5),
            significance_min_frequency=config.get('collection.significance_min_frequency', 2),
        )


def _best_meaning(weights: Dict[str, float]) -> Tuple[Optional[str], float]:
    """Highest-weighted meaning; lexical order breaks ties."""
    if not weights:
        return None, 0.0
    meaning = min(weights, key=lambda m: (-weights[m], m))
    return meaning, weights[meaning]


class PatternMatcher:
    """Matches utterances against the pattern library with a nearest-neighbour fallback.

    Attributes:
        segment_extractor: Segments and embeds query audio
        matching_config: Thresholds and silence guards
    """

    def __init__(
        self,
        segment_extractor: SegmentExtractor,
        matching_config: Optional[CompositionalMatchingConfig] = None
    ):
        self.matching_config = matching_config or CompositionalMatchingConfig.from_config()
        if self.matching_config.segmentation is not None:
            segment_extractor = SegmentExtractor(
                segment_extractor.extractor,
                self.matching_config.segmentation,
                segment_extractor.max_frame_embeddings,
            )
        self.segment_extractor = segment_extractor

    def _match_segments(self, segments: Sequence[AudioSegment],
                        collection: PatternCollection) -> List[MatchedPattern]:
        cfg = self.matching_config
        significant = collection.significant_patterns(
            cfg.significance_min_confidence, cfg.significance_min_frequency
        )
        matches: List[MatchedPattern] = []
        if not significant:
            return matches
        for segment in segments:
            found = collection.find_similar_patterns(segment.embedding, cfg.min_match_confidence, significant)
            if not found:
                continue
            pattern, similarity = found[0]
            matches.append(MatchedPattern(
                pattern_id=pattern.id,
                similarity=similarity,
                confidence=float(similarity),
                frequency=pattern.frequency,
                start_time=segment.start_time,
                end_time=segment.end_time,
                meanings=list(pattern.associated_meanings),
                embedding=segment.embedding,
            ))
        return matches

    def _coverage(self, matches: Sequence[MatchedPattern], segments: Sequence[AudioSegment]) -> float:
        """0.6 x matched duration / utterance span + 0.4 x matched / total segments."""
        if not segments or not matches:
            return 0.0
        total_duration = max(s.end_time for s in segments)
        matched_duration = sum(m.duration for m in matches)
        temporal = min(1.0, matched_duration / total_duration) if total_duration > 0 else 0.0
        count_ratio = len(matches) / float(len(segments))
        return float(min(1.0, 0.6 * temporal + 0.4 * count_ratio))

    def _meaning_combination(self, matches: Sequence[MatchedPattern], coverage: float) -> Optional[PatternMatchResult]:
        weights: Dict[str, float] = defaultdict(float)
        for match in matches:
            for meaning in match.meanings:
                weights[meaning] += match.confidence ** 2
        meaning, weight = _best_meaning(weights)
        if meaning is None or weight <= self.matching_config.min_combined_confidence:
            return None
        return PatternMatchResult(
            translation=meaning,
            confidence=float(min(1.0, weight * coverage)),
            strategy=MatchStrategy.MEANING_COMBINATION,
            coverage=coverage,
            matched_patterns=list(matches),
            explanation=f"Compositional match using meaning combination (coverage: {coverage:.0%})",
        )

    def _frequency_weighted(self, matches: Sequence[MatchedPattern], coverage: float) -> Optional[PatternMatchResult]:
        weights: Dict[str, float] = defaultdict(float)
        for match in matches:
            for meaning in match.meanings:
                weights[meaning] += match.confidence * min(1.0, match.frequency / 10.0)
        meaning, weight = _best_meaning(weights)
        if meaning is None or weight <= self.matching_config.min_combined_confidence:
            return None
        return PatternMatchResult(
            translation=meaning,
            confidence=float(min(1.0, weight * coverage)),
            strategy=MatchStrategy.FREQUENCY_WEIGHTED,
            coverage=coverage,
            matched_patterns=list(matches),
            explanation=f"Compositional match using frequency weighting (coverage: {coverage:.0%})",
        )

    def _dominant_pattern(self, matches: Sequence[MatchedPattern], coverage: float) -> Optional[PatternMatchResult]:
        candidates = [m for m in matches if m.meanings]
        if not candidates:
            return None
        dominant = min(candidates, key=lambda m: (-(m.confidence * m.frequency), m.pattern_id))
        counts: Dict[str, float] = defaultdict(float)
        for meaning in dominant.meanings:
            counts[meaning] += 1.0
        meaning, _ = _best_meaning(counts)
        confidence = float(min(1.0, dominant.confidence * coverage))
        if confidence <= self.matching_config.min_combined_confidence:
            return None
        return PatternMatchResult(
            translation=meaning,
            confidence=confidence,
            strategy=MatchStrategy.DOMINANT_PATTERN,
            coverage=coverage,
            matched_patterns=list(matches),
            explanation=f"Compositional match using dominant pattern (coverage: {coverage:.0%})",
        )

    def _degenerate_query(self, query: np.ndarray) -> Optional[str]:
        cfg = self.matching_config
        if find_defect(query) is not None:
            return "degenerate query embedding"
        if float(np.linalg.norm(query)) < cfg.near_zero_norm:
            return "query embedding norm is near zero"
        near_zero = float(np.mean(np.abs(query) < cfg.near_zero_component))
        if near_zero > cfg.max_near_zero_fraction:
            return f"{near_zero:.0%} of query components are near zero"
        return None

    def _uniformly_high(self, scores: Sequence[float]) -> bool:
        """Top-k scores all very high and nearly equal: silence matching silence."""
        cfg = self.matching_config
        k = cfg.uniform_high_top_k
        if len(scores) < k:
            return False
        top = scores[:k]
        return min(top) >= cfg.uniform_high_score and (max(top) - min(top)) < cfg.uniform_high_spread

    def _fallback(self, queries: Sequence[np.ndarray], examples: Sequence[TrainingExample],
                  coverage: float) -> PatternMatchResult:
        """Whole-utterance nearest neighbour over cached example embeddings.

        Each example scores its best similarity over the usable query
        embeddings; degenerate queries are dropped first.
        """
        if not queries:
            return PatternMatchResult.no_match(NO_MATCH_EXPLANATION, coverage)

        usable = []
        problem = None
        for query in queries:
            reason = self._degenerate_query(query)
            if reason is None:
                usable.append(query)
            else:
                problem = reason
        if not usable:
            logger.debug(f"Fallback rejected: {problem}")
            return PatternMatchResult.no_match(f"{NO_MATCH_EXPLANATION} ({problem})", coverage)

        ranked = sorted(
            (
                (max(cosine_similarity(q, e.embedding) for q in usable), e)
                for e in examples if e.has_embedding
            ),
            key=lambda item: (-item[0], item[1].id),
        )
        if not ranked:
            return PatternMatchResult.no_match(NO_MATCH_EXPLANATION, coverage)

        scores = [score for score, _ in ranked]
        if self._uniformly_high(scores):
            logger.debug("Fallback rejected: top scores uniformly high")
            return PatternMatchResult.no_match(
                f"{NO_MATCH_EXPLANATION} (all candidates look identical)", coverage
            )

        best_score, best = ranked[0]
        if best_score < self.matching_config.fallback_similarity_threshold:
            return PatternMatchResult.no_match(NO_MATCH_EXPLANATION, coverage)

        return PatternMatchResult(
            translation=best.explanation,
            confidence=float(min(1.0, max(0.0, best_score))),
            strategy=MatchStrategy.WHOLE_UTTERANCE,
            coverage=coverage,
            explanation=f"Whole-utterance match (similarity: {best_score:.0%})",
            matched_example_id=best.id,
        )

    def _query_embeddings(self, segments: Sequence[AudioSegment],
                          whole_embedding: Optional[np.ndarray]) -> List[np.ndarray]:
        """Mean of the confident segment embeddings, plus the whole-utterance embedding if known."""
        queries = []
        confident = [s.embedding for s in segments if s.confidence >= self.matching_config.min_match_confidence]
        if confident:
            queries.append(mean_embedding(confident))
        if whole_embedding is not None:
            queries.append(np.asarray(whole_embedding, dtype=np.float32))
        return queries

    async def match(
        self,
        window: AudioWindow,
        collection: PatternCollection,
        examples: Sequence[TrainingExample],
        whole_embedding: Optional[np.ndarray] = None
    ) -> PatternMatchResult:
        """Match an utterance, falling back to whole-utterance search.

        Args:
            window: Query audio
            collection: Current pattern library
            examples: Training examples for the fallback
            whole_embedding: Whole-utterance embedding of the query, if known

        Returns:
            PatternMatchResult; an explicit no-match result when nothing qualifies
        """
        try:
            segments = await self.segment_extractor.extract_segments(window, "query")
            segments = segments[: self.matching_config.max_query_segments]

            matches = self._match_segments(segments, collection)
            coverage = self._coverage(matches, segments)

            if matches and coverage >= self.matching_config.min_coverage:
                for strategy in (self._meaning_combination, self._frequency_weighted, self._dominant_pattern):
                    result = strategy(matches, coverage)
                    if result is not None:
                        logger.debug(f"Pattern match via {result.strategy.value}: {result.translation}")
                        return result

            return self._fallback(self._query_embeddings(segments, whole_embedding), examples, coverage)
        except Exception as e:
            logger.error(f"Pattern matching failed: {e}", exc_info=True)
            return PatternMatchResult.no_match(NO_MATCH_EXPLANATION)

    def analyze_match_quality(self, result: PatternMatchResult) -> MatchQualityAnalysis:
        """Summarize how well the matched patterns support a result."""
        matches = result.matched_patterns
        if not matches:
            return MatchQualityAnalysis(
                match_count=0,
                average_confidence=0.0,
                temporal_distribution="No matches",
                confidence_consistency="No matches",
                quality_score=0.0,
            )

        confidences = [m.confidence for m in matches]
        average = float(np.mean(confidences))
        starts = [m.start_time for m in matches]
        span = max(starts) - min(starts)
        variance = float(np.var(confidences))

        count_factor = min(1.0, len(matches) / 5.0)
        confidence_factor = (result.confidence + average) / 2.0
        return MatchQualityAnalysis(
            match_count=len(matches),
            average_confidence=average,
            temporal_distribution="Well distributed" if span > 1.0 else "Clustered",
            confidence_consistency="Consistent" if variance < 0.1 else "Variable",
            quality_score=float(count_factor * 0.3 + confidence_factor * 0.7),
            overall_confidence=result.confidence,
        )
