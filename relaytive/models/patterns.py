"""Compositional pattern models and the persisted pattern collection"""

import copy
import logging
import time
import uuid
from collections import Counter
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from relaytive.analysis.vectors import cosine_similarity
from relaytive.models.features import AudioSegment, SnapshotError


logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class CompositionalPattern:
    """A cluster of acoustically similar segments recurring across examples

    Patterns are immutable; use ``with_`` to derive an updated copy.

    Attributes:
        representative_embedding: Mean of member segment embeddings
        frequency: Number of contributing segments
        confidence: Pattern confidence [0, 1]
        average_position: Mean relative start position in the parent utterances [0, 1]
        associated_meanings: Sorted, de-duplicated meanings
        contributing_segment_ids: Ids of member segments (most recent last)
        id: Unique pattern id
        created_at: Creation time
        updated_at: Last update time
    """
    representative_embedding: np.ndarray
    frequency: int
    confidence: float
    average_position: float
    associated_meanings: Tuple[str, ...] = ()
    contributing_segment_ids: Tuple[str, ...] = ()
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)

    def __post_init__(self):
        assert self.frequency >= 0, "Frequency must be non-negative"
        assert 0.0 <= self.confidence <= 1.0, "Confidence must be in [0, 1]"
        assert 0.0 <= self.average_position <= 1.0, "Average position must be in [0, 1]"

    def with_(self, **changes: Any) -> "CompositionalPattern":
        """Copy with overridden fields; bumps ``updated_at`` unless given"""
        changes.setdefault("updated_at", time.time())
        return replace(self, **changes)

    def is_significant(self, min_confidence: float = 0.5, min_frequency: int = 2) -> bool:
        return self.confidence >= min_confidence and self.frequency >= min_frequency

    @property
    def primary_meaning(self) -> Optional[str]:
        """Most common associated meaning (lexically first among ties)"""
        if not self.associated_meanings:
            return None
        counts = Counter(self.associated_meanings)
        return min(counts, key=lambda m: (-counts[m], m))

    def meaningfully_differs(self, other: "CompositionalPattern", tolerance: float = 1e-4) -> bool:
        if self.frequency != other.frequency:
            return True
        if abs(self.confidence - other.confidence) > tolerance:
            return True
        if abs(self.average_position - other.average_position) > tolerance:
            return True
        if tuple(self.associated_meanings) != tuple(other.associated_meanings):
            return True
        if self.representative_embedding.shape != other.representative_embedding.shape:
            return True
        return not np.allclose(
            self.representative_embedding, other.representative_embedding, atol=tolerance
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "representative_embedding": self.representative_embedding.astype(float).tolist(),
            "frequency": self.frequency,
            "confidence": self.confidence,
            "average_position": self.average_position,
            "associated_meanings": list(self.associated_meanings),
            "contributing_segment_ids": list(self.contributing_segment_ids),
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CompositionalPattern":
        try:
            return cls(
                representative_embedding=np.asarray(data["representative_embedding"], dtype=np.float32),
                frequency=int(data["frequency"]),
                confidence=float(data["confidence"]),
                average_position=float(data["average_position"]),
                associated_meanings=tuple(data.get("associated_meanings", ())),
                contributing_segment_ids=tuple(data.get("contributing_segment_ids", ())),
                id=str(data["id"]),
                created_at=float(data.get("created_at", time.time())),
                updated_at=float(data.get("updated_at", time.time())),
            )
        except (KeyError, TypeError, ValueError, AssertionError) as e:
            raise SnapshotError(f"Invalid pattern: {e}") from e


class PatternCollection:
    """Ordered set of patterns keyed by id

    Insertion order is preserved. Pruning operations only ever remove.

    Attributes:
        last_discovery_run: Time of the last completed discovery pass
        discovery_complete: Whether a discovery pass has completed
        max_segments_per_pattern: Cap on contributing segment ids per pattern
    """

    def __init__(
        self,
        patterns: Optional[Sequence[CompositionalPattern]] = None,
        last_discovery_run: Optional[float] = None,
        discovery_complete: bool = False,
        max_segments_per_pattern: int = 50
    ):
        self._patterns: Dict[str, CompositionalPattern] = {}
        for pattern in patterns or []:
            self._patterns[pattern.id] = pattern
        self.last_discovery_run = last_discovery_run
        self.discovery_complete = discovery_complete
        self.max_segments_per_pattern = max_segments_per_pattern

    def __len__(self) -> int:
        return len(self._patterns)

    def __iter__(self) -> Iterator[CompositionalPattern]:
        return iter(list(self._patterns.values()))

    def __contains__(self, pattern_id: str) -> bool:
        return pattern_id in self._patterns

    @property
    def patterns(self) -> List[CompositionalPattern]:
        return list(self._patterns.values())

    @property
    def is_empty(self) -> bool:
        return not self._patterns

    def get(self, pattern_id: str) -> Optional[CompositionalPattern]:
        return self._patterns.get(pattern_id)

    def upsert(self, pattern: CompositionalPattern) -> None:
        """Insert a pattern, or replace the one with the same id in place"""
        self._patterns[pattern.id] = pattern

    def remove(self, pattern_id: str) -> bool:
        return self._patterns.pop(pattern_id, None) is not None

    def significant_patterns(
        self,
        min_confidence: float = 0.5,
        min_frequency: int = 2
    ) -> List[CompositionalPattern]:
        return [p for p in self._patterns.values() if p.is_significant(min_confidence, min_frequency)]

    def find_similar_patterns(
        self,
        embedding: np.ndarray,
        threshold: float = 0.7,
        candidates: Optional[Sequence[CompositionalPattern]] = None
    ) -> List[Tuple[CompositionalPattern, float]]:
        """Patterns whose representative is at least ``threshold`` similar, best first"""
        pool = candidates if candidates is not None else self._patterns.values()
        scored = []
        for pattern in pool:
            similarity = cosine_similarity(embedding, pattern.representative_embedding)
            if similarity >= threshold:
                scored.append((pattern, similarity))
        scored.sort(key=lambda item: (-item[1], item[0].id))
        return scored

    def update_pattern(
        self,
        pattern_id: str,
        new_segments: Sequence[AudioSegment],
        new_meanings: Sequence[str] = ()
    ) -> Optional[CompositionalPattern]:
        """Reinforce a pattern with newly matched segments.

        Meanings are merged as a sorted set, the average position becomes a
        running average over all members, the representative moves towards the
        new members in proportion to their count and confidence grows by 0.1 per
        new segment (capped at 1).

        Args:
            pattern_id: Pattern to update
            new_segments: Segments that matched the pattern
            new_meanings: Meanings to associate

        Returns:
            The updated pattern, or None if the id is unknown or nothing was added
        """
        pattern = self._patterns.get(pattern_id)
        if pattern is None or not new_segments:
            return None

        old_count = pattern.frequency
        new_count = old_count + len(new_segments)
        positions = [s.relative_position for s in new_segments]
        average_position = (pattern.average_position * old_count + sum(positions)) / new_count

        new_sum = np.sum([s.embedding for s in new_segments], axis=0)
        representative = (pattern.representative_embedding * old_count + new_sum) / new_count

        segment_ids = list(pattern.contributing_segment_ids) + [s.id for s in new_segments]
        if len(segment_ids) > self.max_segments_per_pattern:
            segment_ids = segment_ids[-self.max_segments_per_pattern:]

        updated = pattern.with_(
            representative_embedding=representative.astype(np.float32),
            frequency=new_count,
            confidence=min(1.0, pattern.confidence + 0.1 * len(new_segments)),
            average_position=float(min(1.0, max(0.0, average_position))),
            associated_meanings=tuple(sorted(set(pattern.associated_meanings) | set(new_meanings))),
            contributing_segment_ids=tuple(segment_ids),
        )
        self._patterns[pattern_id] = updated
        return updated

    def remove_invalid(self, validator, segments: Optional[Mapping[str, AudioSegment]] = None) -> int:
        """Drop patterns the validator rejects; returns the number removed"""
        segments = segments or {}
        invalid = [pid for pid, p in self._patterns.items() if not validator.is_valid(p, segments)]
        for pid in invalid:
            del self._patterns[pid]
        if invalid:
            logger.debug(f"Removed {len(invalid)} invalid patterns")
        return len(invalid)

    def aggressive_prune(
        self,
        max_patterns: int = 8,
        min_frequency: int = 3,
        min_confidence: float = 0.6,
        validator=None,
        segments: Optional[Mapping[str, AudioSegment]] = None
    ) -> int:
        """Prune to a bounded footprint.

        Runs the validator (if given), drops patterns below the frequency or
        confidence floors, then keeps only the ``max_patterns`` highest-confidence
        patterns.

        Returns:
            Number of patterns removed
        """
        before = len(self._patterns)
        if validator is not None:
            self.remove_invalid(validator, segments)

        weak = [
            pid for pid, p in self._patterns.items()
            if p.frequency < min_frequency or p.confidence < min_confidence
        ]
        for pid in weak:
            del self._patterns[pid]

        if len(self._patterns) > max_patterns:
            ranked = sorted(
                self._patterns.values(),
                key=lambda p: (-p.confidence, -p.frequency, p.id)
            )
            keep = {p.id for p in ranked[:max(0, max_patterns)]}
            self._patterns = {pid: p for pid, p in self._patterns.items() if pid in keep}

        removed = before - len(self._patterns)
        logger.info(f"Aggressive prune removed {removed} patterns, {len(self._patterns)} remain")
        return removed

    def mark_discovery_complete(self, timestamp: Optional[float] = None) -> None:
        self.last_discovery_run = timestamp if timestamp is not None else time.time()
        self.discovery_complete = True

    def copy(self) -> "PatternCollection":
        """Independent copy; patterns are immutable so they are shared"""
        clone = copy.copy(self)
        clone._patterns = dict(self._patterns)
        return clone

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": [p.to_dict() for p in self._patterns.values()],
            "last_discovery_run": self.last_discovery_run,
            "discovery_complete": self.discovery_complete,
            "max_segments_per_pattern": self.max_segments_per_pattern,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PatternCollection":
        if not isinstance(data, Mapping) or "patterns" not in data:
            raise SnapshotError("Invalid pattern collection: missing 'patterns'")
        return cls(
            patterns=[CompositionalPattern.from_dict(p) for p in data["patterns"]],
            last_discovery_run=data.get("last_discovery_run"),
            discovery_complete=bool(data.get("discovery_complete", False)),
            max_segments_per_pattern=int(data.get("max_segments_per_pattern", 50)),
        )
