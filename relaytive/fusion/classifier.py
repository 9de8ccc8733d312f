"""Nearest-Centroid Classifier

This module classifies an utterance into one of the caregiver's meanings by
fusing two signals per meaning:

    - embedding similarity: cosine similarity to the meaning's centroid
    - phonetic similarity: best token-level match against the meaning's
      recent unit-string exemplars

The fused scores go through a temperature softmax; the top probability and its
margin over the runner-up decide whether the result needs caregiver
confirmation. Centroids learn online from confirmed examples with a learning
rate that decays as a meaning is reinforced.
"""

import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

import numpy as np

from relaytive.analysis.unit_strings import phonetic_similarity
from relaytive.analysis.vectors import find_defect, l2_normalize
from relaytive.models.features import MeaningCentroid, SnapshotError
from relaytive.models.results import ClassificationAlternative, ClassificationResult
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


class NearestCentroidClassifier:
    """Online nearest-centroid classifier with embedding/phonetic fusion.

    All access to the meaning table is serialized through ``self._lock``.

    Attributes:
        temperature: Softmax temperature (higher is softer)
        embedding_weight: Weight of embedding similarity in the fused score
        phonetic_weight: Weight of phonetic similarity in the fused score
        confidence_threshold: Minimum top probability for a confident result
        margin_threshold: Minimum top-vs-runner-up margin for a confident result
        min_fused_similarity: Minimum fused similarity of the top meaning
        max_prototypes: Phonetic exemplars kept per meaning
    """

    def __init__(
        self,
        temperature: Optional[float] = None,
        embedding_weight: Optional[float] = None,
        phonetic_weight: Optional[float] = None,
        confidence_threshold: Optional[float] = None,
        margin_threshold: Optional[float] = None,
        min_fused_similarity: Optional[float] = None,
        max_prototypes: Optional[int] = None
    ):
        def pick(value, key, default):
            return value if value is not None else config.get(key, default)

        self.temperature = pick(temperature, 'classifier.temperature', 10.0)
        self.embedding_weight = pick(embedding_weight, 'classifier.embedding_weight', 0.6)
        self.phonetic_weight = pick(phonetic_weight, 'classifier.phonetic_weight', 0.4)
        self.confidence_threshold = pick(confidence_threshold, 'classifier.confidence_threshold', 0.70)
        self.margin_threshold = pick(margin_threshold, 'classifier.margin_threshold', 0.10)
        self.min_fused_similarity = pick(min_fused_similarity, 'classifier.min_fused_similarity', 0.5)
        self.max_prototypes = pick(max_prototypes, 'classifier.max_prototypes', 10)
        self.base_learning_rate = config.get('classifier.base_learning_rate', 0.3)
        self.min_learning_rate = config.get('classifier.min_learning_rate', 0.05)
        self.learning_rate_decay = config.get('classifier.learning_rate_decay', 0.95)

        self._meanings: Dict[str, MeaningCentroid] = {}
        self._dim: Optional[int] = None
        self._lock = threading.Lock()

        logger.info(
            f"NearestCentroidClassifier initialized with T={self.temperature}, "
            f"weights=({self.embedding_weight}, {self.phonetic_weight})"
        )

    def _learning_rate(self, update_count: int) -> float:
        decayed = self.base_learning_rate * self.learning_rate_decay ** (update_count / 10.0)
        return max(self.min_learning_rate, decayed)

    def _embedding_similarities(self, embedding: np.ndarray) -> Dict[str, float]:
        return {
            meaning: float(np.clip(np.dot(embedding, state.centroid), -1.0, 1.0))
            for meaning, state in self._meanings.items()
        }

    def _phonetic_similarities(self, phonetic_string: str) -> Dict[str, float]:
        similarities = {}
        for meaning, state in self._meanings.items():
            if state.exemplars:
                similarities[meaning] = max(
                    phonetic_similarity(phonetic_string, exemplar) for exemplar in state.exemplars
                )
        return similarities

    def _fuse(self, embedding_sims: Dict[str, float], phonetic_sims: Dict[str, float],
              use_phonetic: bool) -> Dict[str, float]:
        """Weighted sum per meaning; embedding similarity alone without a phonetic query."""
        if not use_phonetic:
            return dict(embedding_sims)
        return {
            meaning: self.embedding_weight * sim + self.phonetic_weight * phonetic_sims.get(meaning, 0.0)
            for meaning, sim in embedding_sims.items()
        }

    def _softmax(self, scores: Dict[str, float]) -> Dict[str, float]:
        """Temperature softmax, shifted by the max score for stability."""
        if not scores:
            return {}
        max_score = max(scores.values())
        temperature = max(self.temperature, 1e-6)
        exps = {m: float(np.exp((s - max_score) / temperature)) for m, s in scores.items()}
        total = sum(exps.values())
        return {m: e / total for m, e in exps.items()}

    def classify(self, embedding: np.ndarray, phonetic_string: Optional[str] = None) -> ClassificationResult:
        """Classify an utterance.

        Args:
            embedding: Whole-utterance embedding
            phonetic_string: Unit string of the utterance, if available

        Returns:
            ClassificationResult; a no-information result when no meanings are
            known or the embedding is degenerate
        """
        with self._lock:
            if not self._meanings:
                return ClassificationResult.no_information()

            defect = find_defect(embedding, self._dim)
            if defect is not None:
                logger.debug(f"Classifier rejected embedding: {defect.value}")
                return ClassificationResult.no_information()

            query = l2_normalize(embedding)
            embedding_sims = self._embedding_similarities(query)
            use_phonetic = bool(phonetic_string and phonetic_string.strip())
            phonetic_sims = self._phonetic_similarities(phonetic_string) if use_phonetic else {}
            fused = self._fuse(embedding_sims, phonetic_sims, use_phonetic)

        probabilities = self._softmax(fused)
        # Lexical order breaks probability ties
        ranked = sorted(probabilities.items(), key=lambda item: (-item[1], item[0]))

        top_meaning, top_confidence = ranked[0]
        margin = top_confidence - ranked[1][1] if len(ranked) > 1 else top_confidence
        needs_confirmation = (
            top_confidence < self.confidence_threshold
            or margin < self.margin_threshold
            or fused[top_meaning] < self.min_fused_similarity
        )

        return ClassificationResult(
            top_meaning=top_meaning,
            confidence=float(min(1.0, top_confidence)),
            margin=float(margin),
            needs_confirmation=needs_confirmation,
            alternatives=[ClassificationAlternative(m, float(p)) for m, p in ranked[1:3]],
            embedding_confidence=embedding_sims.get(top_meaning, 0.0),
            phonetic_confidence=phonetic_sims.get(top_meaning, 0.0),
        )

    def update_with_example(self, meaning: str, embedding: np.ndarray,
                            phonetic_string: Optional[str] = None) -> bool:
        """Reinforce a meaning with a confirmed example.

        Returns:
            False when the embedding is degenerate or has the wrong dimension
        """
        if not meaning:
            return False
        with self._lock:
            defect = find_defect(embedding, self._dim)
            if defect is not None:
                logger.warning(f"Ignoring example for '{meaning}': {defect.value} embedding")
                return False

            vector = l2_normalize(embedding)
            if self._dim is None:
                self._dim = int(vector.shape[0])

            state = self._meanings.get(meaning)
            if state is None:
                state = MeaningCentroid(meaning=meaning, centroid=vector)
                self._meanings[meaning] = state
            else:
                lr = self._learning_rate(state.update_count)
                state.centroid = l2_normalize((1.0 - lr) * state.centroid + lr * vector)

            if phonetic_string and phonetic_string.strip():
                state.exemplars.append(phonetic_string)
                if len(state.exemplars) > self.max_prototypes:
                    del state.exemplars[: len(state.exemplars) - self.max_prototypes]

            state.update_count += 1

        logger.info(f"Classifier updated for meaning: '{meaning}'")
        return True

    def known_meanings(self) -> List[str]:
        with self._lock:
            return sorted(self._meanings)

    def update_count(self, meaning: str) -> int:
        with self._lock:
            state = self._meanings.get(meaning)
            return state.update_count if state else 0

    def reset(self) -> None:
        with self._lock:
            self._meanings.clear()
            self._dim = None
        logger.info("Classifier reset")

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "dim": self._dim,
                "meanings": [state.to_dict() for state in self._meanings.values()],
            }

    @staticmethod
    def parse_snapshot(data: Mapping[str, Any]) -> Optional[List[MeaningCentroid]]:
        """Decode a snapshot dict; None when it is malformed or inconsistent."""
        try:
            states = [MeaningCentroid.from_dict(m) for m in data.get("meanings", [])]
        except (SnapshotError, AttributeError, TypeError) as e:
            logger.error(f"Could not load classifier snapshot: {e}")
            return None

        dims = {int(s.centroid.shape[0]) for s in states}
        if len(dims) > 1:
            logger.error(f"Classifier snapshot has mixed dimensions: {sorted(dims)}")
            return None
        return states

    def load_snapshot(self, data: Mapping[str, Any]) -> bool:
        """Replace all meaning state from a snapshot dict.

        Returns:
            False (state untouched) when the snapshot is malformed or inconsistent
        """
        states = self.parse_snapshot(data)
        if states is None:
            return False
        self.load_states(states)
        return True

    def load_states(self, states: List[MeaningCentroid]) -> None:
        """Replace all meaning state with already decoded centroids."""
        dims = {int(s.centroid.shape[0]) for s in states}
        with self._lock:
            self._meanings = {s.meaning: s for s in states}
            for state in self._meanings.values():
                state.centroid = l2_normalize(state.centroid)
                state.exemplars = state.exemplars[-self.max_prototypes:]
            self._dim = dims.pop() if dims else None
        logger.info(f"Loaded classifier snapshot with {len(states)} meanings")
