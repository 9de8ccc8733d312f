"""Vector helpers shared by the quantizer, classifier and pattern components"""

from typing import Optional, Sequence

import numpy as np

from relaytive.models.enums import EmbeddingDefect


EPSILON = 1e-10
LOW_NORM = 1e-6
HIGH_NORM = 1e6


def l2_normalize(vector: np.ndarray) -> np.ndarray:
    """Scale a vector to unit L2 norm.

    The zero vector (or anything with norm below EPSILON) is returned unchanged.

    Args:
        vector: Input vector

    Returns:
        New float32 array with unit norm, or a copy of the input if its norm is ~0
    """
    v = np.asarray(vector, dtype=np.float32)
    norm = float(np.linalg.norm(v))
    if norm < EPSILON or not np.isfinite(norm):
        return v.copy()
    return (v / norm).astype(np.float32)


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity in [-1, 1]; 0.0 for mismatched shapes or zero vectors"""
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    if a.shape != b.shape or a.size == 0:
        return 0.0
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a < EPSILON or norm_b < EPSILON:
        return 0.0
    similarity = float(np.dot(a, b) / (norm_a * norm_b))
    if not np.isfinite(similarity):
        return 0.0
    return float(np.clip(similarity, -1.0, 1.0))


def mean_embedding(embeddings: Sequence[np.ndarray]) -> Optional[np.ndarray]:
    """Arithmetic mean of equally sized embeddings, or None for an empty input"""
    if not embeddings:
        return None
    stacked = np.stack([np.asarray(e, dtype=np.float32) for e in embeddings])
    return stacked.mean(axis=0)


def find_defect(vector: Optional[np.ndarray], expected_dim: Optional[int] = None) -> Optional[EmbeddingDefect]:
    """Check an embedding for degeneracy.

    Args:
        vector: Candidate embedding
        expected_dim: Required dimension, if known

    Returns:
        The first defect found, or None for a usable embedding
    """
    if vector is None:
        return EmbeddingDefect.EMPTY
    v = np.asarray(vector)
    if v.size == 0:
        return EmbeddingDefect.EMPTY
    if expected_dim is not None and v.shape != (expected_dim,):
        return EmbeddingDefect.DIMENSION_MISMATCH
    if not np.all(np.isfinite(v)):
        return EmbeddingDefect.NAN_INF
    if not np.any(v):
        return EmbeddingDefect.ZEROS
    norm = float(np.linalg.norm(v))
    if norm < LOW_NORM:
        return EmbeddingDefect.LOW_NORM
    if norm > HIGH_NORM:
        return EmbeddingDefect.HIGH_NORM
    if v.size > 1 and np.allclose(v, v.flat[0]):
        return EmbeddingDefect.CONSTANT
    return None


def is_degenerate(vector: Optional[np.ndarray], expected_dim: Optional[int] = None) -> bool:
    return find_defect(vector, expected_dim) is not None
