"""Pattern Discovery Module

This module mines recurring sub-utterance patterns from the caregiver's
training examples:

    1. segment every example (capped number of examples and segments)
    2. greedily cluster segments by cosine similarity around seed segments
    3. keep clusters that recur often enough, largest first
    4. derive each cluster's meaning from the shared wording of its parent
       explanations, chosen by where in the utterance the cluster sits
    5. score and keep clusters that are confident enough

Discovery and incremental updates always build a new PatternCollection; the
caller decides when to commit it, so a cancelled pass leaves the stored
collection untouched.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from relaytive.analysis.segmentation import SegmentExtractor, SegmentationStrategy
from relaytive.analysis.vectors import cosine_similarity, mean_embedding
from relaytive.models.features import AudioSegment, TrainingExample
from relaytive.models.patterns import CompositionalPattern, PatternCollection
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


_PUNCTUATION = re.compile(r"^[^\w']+|[^\w']+$")


@dataclass
class PatternDiscoveryConfig:
    """Discovery thresholds and cost caps"""
    similarity_threshold: float = 0.5
    min_pattern_frequency: int = 1
    max_patterns_to_discover: int = 20
    min_pattern_confidence: float = 0.25
    meaning_consistency_threshold: float = 0.6
    max_examples_per_pass: int = 20
    max_total_segments: int = 200
    frequency_saturation: int = 5
    significance_min_confidence: float = 0.5
    significance_min_frequency: int = 2
    segmentation: SegmentationStrategy = field(
        default_factory=lambda: SegmentationStrategy.embedding_based(0.2, 2.0, 0.6)
    )

    @classmethod
    def from_config(cls) -> "PatternDiscoveryConfig":
        return cls(
            similarity_threshold=config.get('discovery.similarity_threshold', 0.5),
            min_pattern_frequency=config.get('discovery.min_pattern_frequency', 1),
            max_patterns_to_discover=config.get('discovery.max_patterns_to_discover', 20),
            min_pattern_confidence=config.get('discovery.min_pattern_confidence', 0.25),
            meaning_consistency_threshold=config.get('discovery.meaning_consistency_threshold', 0.6),
            max_examples_per_pass=config.get('discovery.max_examples_per_pass', 20),
            max_total_segments=config.get('discovery.max_total_segments', 200),
            frequency_saturation=config.get('discovery.frequency_saturation', 5),
            significance_min_confidence=config.get('collection.significance_min_confidence', 0.5),
            significance_min_frequency=config.get('collection.significance_min_frequency', 2),
            segmentation=SegmentationStrategy.from_config(),
        )


@dataclass
class DiscoveryOutcome:
    """A freshly built collection plus the segments it was built from"""
    collection: PatternCollection
    segments: Dict[str, AudioSegment] = field(default_factory=dict)
    examples_scanned: int = 0


def _tokens(text: str) -> List[str]:
    return [t for t in text.split() if t]


def _key(token: str) -> str:
    return _PUNCTUATION.sub("", token).casefold()


def common_prefix(explanations: Sequence[str]) -> str:
    """Longest common leading token run (case and edge punctuation ignored)."""
    token_lists = [_tokens(e) for e in explanations]
    if not token_lists or any(not t for t in token_lists):
        return ""
    reference = token_lists[0]
    length = 0
    for i, token in enumerate(reference):
        if all(i < len(t) and _key(t[i]) == _key(token) for t in token_lists[1:]):
            length += 1
        else:
            break
    return " ".join(_PUNCTUATION.sub("", t) for t in reference[:length]).strip()


def common_suffix(explanations: Sequence[str]) -> str:
    """Longest common trailing token run."""
    reversed_texts = [" ".join(reversed(_tokens(e))) for e in explanations]
    prefix = common_prefix(reversed_texts)
    return " ".join(reversed(prefix.split()))


def most_frequent_token(explanations: Sequence[str]) -> str:
    """Most frequent token across explanations; lexical order breaks ties."""
    counts = Counter(_key(t) for e in explanations for t in _tokens(e) if _key(t))
    if not counts:
        return ""
    return min(counts, key=lambda t: (-counts[t], t))


def derive_meaning(explanations: Sequence[str], average_position: float) -> str:
    """Meaning of a cluster from its parents' explanations and its position.

    Early clusters take the common prefix, late clusters the common suffix and
    middle clusters the shorter non-empty of the two; the most frequent token
    is the fallback.

    Args:
        explanations: Parent explanations (one per parent example)
        average_position: Mean relative start position of the cluster [0, 1]

    Returns:
        Derived meaning, or "" when the explanations have no tokens
    """
    prefix = common_prefix(explanations)
    suffix = common_suffix(explanations)
    if average_position < 1.0 / 3.0:
        meaning = prefix
    elif average_position > 2.0 / 3.0:
        meaning = suffix
    else:
        candidates = [m for m in (prefix, suffix) if m]
        meaning = min(candidates, key=lambda m: len(m.split())) if candidates else ""
    return meaning or most_frequent_token(explanations)


def cluster_segments(segments: Sequence[AudioSegment], threshold: float) -> List[List[AudioSegment]]:
    """Greedy seed clustering: each unclustered segment seeds a cluster of all
    remaining segments more similar to it than ``threshold``."""
    clusters: List[List[AudioSegment]] = []
    used = [False] * len(segments)
    for i, seed in enumerate(segments):
        if used[i]:
            continue
        used[i] = True
        cluster = [seed]
        for j in range(i + 1, len(segments)):
            if not used[j] and cosine_similarity(seed.embedding, segments[j].embedding) > threshold:
                used[j] = True
                cluster.append(segments[j])
        clusters.append(cluster)
    return clusters


class PatternMiner:
    """Discovers, updates and reports on compositional patterns.

    Attributes:
        segment_extractor: Produces embedded segments for each example
        discovery_config: Thresholds and caps used by every pass
    """

    def __init__(
        self,
        segment_extractor: SegmentExtractor,
        discovery_config: Optional[PatternDiscoveryConfig] = None
    ):
        self.discovery_config = discovery_config or PatternDiscoveryConfig.from_config()
        if segment_extractor.strategy != self.discovery_config.segmentation:
            segment_extractor = SegmentExtractor(
                segment_extractor.extractor,
                self.discovery_config.segmentation,
                segment_extractor.max_frame_embeddings,
            )
        self.segment_extractor = segment_extractor
        self.max_segments_per_pattern = config.get('collection.max_segments_per_pattern', 50)

    def _select_examples(self, examples: Sequence[TrainingExample]) -> List[TrainingExample]:
        """Most recent examples, capped per pass, in creation order."""
        ordered = sorted(examples, key=lambda e: e.created_at)
        return ordered[-self.discovery_config.max_examples_per_pass:]

    async def _collect_segments(self, examples: Sequence[TrainingExample]) -> List[AudioSegment]:
        cap = self.discovery_config.max_total_segments
        segments: List[AudioSegment] = []
        for example in examples:
            if len(segments) >= cap:
                logger.info(f"Segment cap of {cap} reached; remaining examples skipped")
                break
            found = await self.segment_extractor.extract_segments(example.audio, example.id)
            segments.extend(found[: cap - len(segments)])
        return segments

    def _confidence(self, cluster: Sequence[AudioSegment]) -> float:
        positions = [s.relative_position for s in cluster]
        mean_confidence = float(np.mean([s.confidence for s in cluster]))
        consistency = max(0.1, 1.0 - float(np.std(positions)))
        frequency_term = min(1.0, len(cluster) / float(self.discovery_config.frequency_saturation))
        return float(min(1.0, mean_confidence * consistency * frequency_term))

    def _build_pattern(self, cluster: Sequence[AudioSegment],
                       explanations: Mapping[str, str]) -> Optional[CompositionalPattern]:
        confidence = self._confidence(cluster)
        if confidence < self.discovery_config.min_pattern_confidence:
            logger.debug(f"Rejected cluster of {len(cluster)} segments: confidence {confidence:.3f}")
            return None

        parent_ids = list(dict.fromkeys(s.parent_example_id for s in cluster))
        parent_texts = [explanations[pid] for pid in parent_ids if explanations.get(pid)]
        average_position = float(np.mean([s.relative_position for s in cluster]))
        meaning = derive_meaning(parent_texts, average_position) if parent_texts else ""

        return CompositionalPattern(
            representative_embedding=mean_embedding([s.embedding for s in cluster]),
            frequency=len(cluster),
            confidence=confidence,
            average_position=min(1.0, max(0.0, average_position)),
            associated_meanings=(meaning,) if meaning else (),
            contributing_segment_ids=tuple(s.id for s in cluster)[-self.max_segments_per_pattern:],
        )

    def _mine(self, segments: Sequence[AudioSegment],
              explanations: Mapping[str, str]) -> List[CompositionalPattern]:
        clusters = cluster_segments(segments, self.discovery_config.similarity_threshold)
        kept = [c for c in clusters if len(c) >= self.discovery_config.min_pattern_frequency]
        kept.sort(key=lambda c: len(c), reverse=True)
        kept = kept[: self.discovery_config.max_patterns_to_discover]

        patterns = []
        for cluster in kept:
            pattern = self._build_pattern(cluster, explanations)
            if pattern is not None:
                patterns.append(pattern)
        return patterns

    async def discover(self, examples: Sequence[TrainingExample]) -> DiscoveryOutcome:
        """Run a full discovery pass.

        Args:
            examples: Training examples (the most recent ones are used)

        Returns:
            DiscoveryOutcome with a new collection and the segments it used
        """
        selected = self._select_examples(examples)
        explanations = {e.id: e.explanation for e in selected}
        segments = await self._collect_segments(selected)
        patterns = self._mine(segments, explanations)

        collection = PatternCollection(patterns, max_segments_per_pattern=self.max_segments_per_pattern)
        collection.mark_discovery_complete()
        logger.info(
            f"Discovery found {len(patterns)} patterns from {len(segments)} segments "
            f"across {len(selected)} examples"
        )
        return DiscoveryOutcome(
            collection=collection,
            segments={s.id: s for s in segments},
            examples_scanned=len(selected),
        )

    def _merge_meaning(self, pattern: CompositionalPattern, explanation: str) -> Tuple[str, ...]:
        """Meanings a new member contributes: the wording it shares with the pattern."""
        primary = pattern.primary_meaning
        if not primary or not explanation:
            return ()
        shared = derive_meaning([primary, explanation], pattern.average_position)
        return (shared,) if shared else ()

    def _absorb(self, collection: PatternCollection, segments: Sequence[AudioSegment],
                explanations: Mapping[str, str],
                candidates: Sequence[CompositionalPattern]) -> List[AudioSegment]:
        """Merge segments into their best matching candidate; return the unmatched ones."""
        groups: Dict[str, List[AudioSegment]] = {}
        unmatched: List[AudioSegment] = []
        for segment in segments:
            matches = collection.find_similar_patterns(
                segment.embedding, self.discovery_config.similarity_threshold, candidates
            )
            if matches:
                groups.setdefault(matches[0][0].id, []).append(segment)
            else:
                unmatched.append(segment)

        for pattern_id, members in groups.items():
            pattern = collection.get(pattern_id)
            meanings: List[str] = []
            for member in members:
                meanings.extend(self._merge_meaning(pattern, explanations.get(member.parent_example_id, "")))
            collection.update_pattern(pattern_id, members, sorted(set(meanings)))
        return unmatched

    async def update(self, collection: PatternCollection,
                     new_examples: Sequence[TrainingExample]) -> DiscoveryOutcome:
        """Incrementally fold new examples into a copy of ``collection``.

        New segments reinforce the best matching significant pattern; segments
        that match nothing are clustered into new patterns.
        """
        updated = collection.copy()
        selected = self._select_examples(new_examples)
        explanations = {e.id: e.explanation for e in selected}
        segments = await self._collect_segments(selected)

        significant = updated.significant_patterns(
            self.discovery_config.significance_min_confidence,
            self.discovery_config.significance_min_frequency,
        )
        unmatched = self._absorb(updated, segments, explanations, significant)

        new_patterns = self._mine(unmatched, explanations)
        for pattern in new_patterns:
            updated.upsert(pattern)
        updated.mark_discovery_complete()

        logger.info(
            f"Incremental update: {len(segments) - len(unmatched)} segments merged, "
            f"{len(new_patterns)} new patterns"
        )
        return DiscoveryOutcome(
            collection=updated,
            segments={s.id: s for s in segments},
            examples_scanned=len(selected),
        )

    async def validate_patterns(self, collection: PatternCollection,
                                examples: Sequence[TrainingExample]) -> DiscoveryOutcome:
        """Re-check stored patterns against examples, reinforcing those that recur.

        Only examples created after the collection's last discovery run are
        used, so repeated validation does not count the same audio twice.
        """
        updated = collection.copy()
        since = collection.last_discovery_run
        fresh = [e for e in examples if since is None or e.created_at > since]
        selected = self._select_examples(fresh)
        explanations = {e.id: e.explanation for e in selected}
        segments = await self._collect_segments(selected)
        self._absorb(updated, segments, explanations, updated.patterns)
        updated.mark_discovery_complete()
        return DiscoveryOutcome(
            collection=updated,
            segments={s.id: s for s in segments},
            examples_scanned=len(selected),
        )
