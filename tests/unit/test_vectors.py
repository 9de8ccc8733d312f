"""Unit tests for vector helpers"""

import numpy as np
import pytest

from relaytive.analysis.vectors import (
    cosine_similarity,
    find_defect,
    is_degenerate,
    l2_normalize,
    mean_embedding,
)
from relaytive.models.enums import EmbeddingDefect


class TestL2Normalize:
    """Test suite for l2_normalize"""

    def test_unit_norm(self):
        v = l2_normalize(np.array([3.0, 4.0]))
        assert np.allclose(v, [0.6, 0.8])
        assert np.isclose(np.linalg.norm(v), 1.0)

    def test_zero_vector_unchanged(self):
        v = l2_normalize(np.zeros(4))
        assert np.array_equal(v, np.zeros(4))

    def test_returns_new_array(self):
        original = np.array([1.0, 0.0, 0.0], dtype=np.float32)
        v = l2_normalize(original)
        v[0] = 5.0
        assert original[0] == 1.0


class TestCosineSimilarity:
    """Test suite for cosine_similarity"""

    def test_identical_vectors(self):
        a = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(a, a) == pytest.approx(1.0)

    def test_opposite_vectors(self):
        a = np.array([1.0, 2.0, 3.0])
        assert cosine_similarity(a, -a) == pytest.approx(-1.0)

    def test_orthogonal_vectors(self):
        assert cosine_similarity(np.array([1.0, 0.0]), np.array([0.0, 1.0])) == pytest.approx(0.0)

    def test_shape_mismatch_is_zero(self):
        assert cosine_similarity(np.ones(3), np.ones(4)) == 0.0

    def test_zero_vector_is_zero(self):
        assert cosine_similarity(np.zeros(3), np.ones(3)) == 0.0


class TestMeanEmbedding:
    """Test suite for mean_embedding"""

    def test_mean(self):
        result = mean_embedding([np.array([1.0, 3.0]), np.array([3.0, 5.0])])
        assert np.allclose(result, [2.0, 4.0])

    def test_empty_is_none(self):
        assert mean_embedding([]) is None


class TestFindDefect:
    """Test suite for embedding degeneracy checks"""

    def test_healthy_embedding(self):
        assert find_defect(np.array([0.1, -0.4, 0.9])) is None
        assert not is_degenerate(np.array([0.1, -0.4, 0.9]))

    @pytest.mark.parametrize("vector,expected", [
        (None, EmbeddingDefect.EMPTY),
        (np.array([]), EmbeddingDefect.EMPTY),
        (np.array([1.0, np.nan]), EmbeddingDefect.NAN_INF),
        (np.array([1.0, np.inf]), EmbeddingDefect.NAN_INF),
        (np.zeros(5), EmbeddingDefect.ZEROS),
        (np.full(4, 1e-9), EmbeddingDefect.LOW_NORM),
        (np.full(4, 1e7), EmbeddingDefect.HIGH_NORM),
        (np.full(4, 0.3), EmbeddingDefect.CONSTANT),
    ])
    def test_defects(self, vector, expected):
        assert find_defect(vector) == expected

    def test_dimension_mismatch(self):
        assert find_defect(np.array([0.1, 0.2, 0.3]), expected_dim=4) == EmbeddingDefect.DIMENSION_MISMATCH
        assert find_defect(np.array([0.1, 0.2, 0.3]), expected_dim=3) is None
