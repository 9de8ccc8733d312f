"""Online Frame Quantizer

This module maintains a personal codebook of K unit-norm centroids and maps
each incoming embedding to the id of its nearest centroid. Every observation
also nudges that centroid towards the input (single-pass online k-means), so
the codebook keeps adapting to the speaker at O(K*D) cost per frame.

The learning rate decays with the cluster's own observation count and with the
total number of observations (global annealing).
"""

import logging
import threading
import time
from typing import List, Optional

import numpy as np

from relaytive.analysis.vectors import find_defect, l2_normalize
from relaytive.models.features import CodebookSnapshot
from relaytive.models.results import CodebookStatistics
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


class FrameQuantizer:
    """Online vector quantizer with a fixed-size codebook.

    All reads and writes of the codebook go through ``self._lock`` so that
    concurrent ``observe`` calls are serialized (single writer).

    Attributes:
        k: Number of centroids (unit ids are 0..k-1)
        dim: Embedding dimension
        base_learning_rate: Learning rate for a fresh cluster
        min_learning_rate: Lower bound of the decayed learning rate
        decay_rate: Global annealing factor applied per 1000 observations
    """

    def __init__(
        self,
        dim: int,
        k: Optional[int] = None,
        base_learning_rate: Optional[float] = None,
        min_learning_rate: Optional[float] = None,
        decay_rate: Optional[float] = None,
        seed: Optional[int] = None
    ):
        self.dim = int(dim)
        self.k = int(k if k is not None else config.get('quantizer.codebook_size', 160))
        self.base_learning_rate = base_learning_rate if base_learning_rate is not None else config.get('quantizer.base_learning_rate', 0.1)
        self.min_learning_rate = min_learning_rate if min_learning_rate is not None else config.get('quantizer.min_learning_rate', 0.001)
        self.decay_rate = decay_rate if decay_rate is not None else config.get('quantizer.decay_rate', 0.95)
        self.seed = seed if seed is not None else config.get('quantizer.seed')

        self._lock = threading.Lock()
        self._rng = np.random.default_rng(self.seed)
        self._initialize()

        logger.info(f"FrameQuantizer initialized: k={self.k}, dim={self.dim}")

    def _initialize(self) -> None:
        centroids = self._rng.uniform(-1.0, 1.0, size=(self.k, self.dim)).astype(np.float32)
        norms = np.linalg.norm(centroids, axis=1, keepdims=True)
        norms[norms < 1e-10] = 1.0
        self._centroids = centroids / norms
        self._counts = np.zeros(self.k, dtype=np.int64)
        self._total = 0

    def _learning_rate(self, cluster_count: int) -> float:
        count_factor = 1.0 / (1.0 + cluster_count * 0.01)
        global_factor = self.decay_rate ** (self._total / 1000.0)
        return max(self.min_learning_rate, self.base_learning_rate * count_factor * global_factor)

    def _prepare(self, vector: np.ndarray) -> Optional[np.ndarray]:
        defect = find_defect(vector, self.dim)
        if defect is not None:
            logger.debug(f"Quantizer rejected embedding: {defect.value}")
            return None
        return l2_normalize(vector)

    def observe(self, vector: np.ndarray) -> Optional[int]:
        """Assign a vector to its nearest centroid and update that centroid.

        Args:
            vector: Embedding of dimension ``dim``

        Returns:
            The assigned unit id, or None for a degenerate or mis-sized vector
        """
        v = self._prepare(vector)
        if v is None:
            return None

        with self._lock:
            unit_id = int(np.argmax(self._centroids @ v))
            lr = self._learning_rate(int(self._counts[unit_id]))
            updated = (1.0 - lr) * self._centroids[unit_id] + lr * v
            norm = float(np.linalg.norm(updated))
            if norm > 1e-10:
                self._centroids[unit_id] = updated / norm
            self._counts[unit_id] += 1
            self._total += 1
        return unit_id

    def nearest(self, vector: np.ndarray) -> Optional[int]:
        """Assign without learning."""
        v = self._prepare(vector)
        if v is None:
            return None
        with self._lock:
            return int(np.argmax(self._centroids @ v))

    @property
    def total_observations(self) -> int:
        return self._total

    def cluster_sizes(self) -> List[int]:
        with self._lock:
            return [int(c) for c in self._counts]

    def purity(self) -> float:
        """1 - mean pairwise centroid similarity, floored at 0."""
        with self._lock:
            return self._purity_locked()

    def _purity_locked(self) -> float:
        if self.k < 2:
            return 1.0
        gram = self._centroids @ self._centroids.T
        upper = gram[np.triu_indices(self.k, k=1)]
        return float(max(0.0, 1.0 - float(np.mean(upper))))

    def statistics(self) -> CodebookStatistics:
        with self._lock:
            active = self._counts[self._counts > 0]
            return CodebookStatistics(
                total_observations=int(self._total),
                active_clusters=int(len(active)),
                average_cluster_size=float(np.mean(active)) if len(active) else 0.0,
                max_cluster_size=int(np.max(active)) if len(active) else 0,
                min_cluster_size=int(np.min(active)) if len(active) else 0,
                purity=self._purity_locked(),
                utilization=len(active) / float(self.k),
            )

    def snapshot(self) -> CodebookSnapshot:
        with self._lock:
            return CodebookSnapshot(
                centroids=self._centroids.copy(),
                cluster_counts=[int(c) for c in self._counts],
                total_observations=int(self._total),
                k=self.k,
                dim=self.dim,
                timestamp=time.time(),
            )

    def accepts_snapshot(self, snapshot: CodebookSnapshot) -> bool:
        if snapshot.k != self.k or snapshot.dim != self.dim:
            logger.error(
                f"Codebook snapshot shape ({snapshot.k}, {snapshot.dim}) does not match "
                f"quantizer ({self.k}, {self.dim})"
            )
            return False
        return True

    def load_snapshot(self, snapshot: CodebookSnapshot) -> bool:
        """Replace the codebook with a snapshot of the same shape.

        Returns:
            False (and leaves the codebook untouched) when k or dim differ
        """
        if not self.accepts_snapshot(snapshot):
            return False
        centroids = np.asarray(snapshot.centroids, dtype=np.float32)
        norms = np.linalg.norm(centroids, axis=1, keepdims=True)
        norms[norms < 1e-10] = 1.0
        with self._lock:
            self._centroids = centroids / norms
            self._counts = np.asarray(snapshot.cluster_counts, dtype=np.int64)
            self._total = int(snapshot.total_observations)
        logger.info(f"Loaded codebook with {snapshot.total_observations} observations")
        return True

    def reset(self) -> None:
        with self._lock:
            self._rng = np.random.default_rng(self.seed)
            self._initialize()
        logger.info("FrameQuantizer reset")
