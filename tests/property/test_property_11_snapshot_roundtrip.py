"""Property-based tests for persisted state

Feature: relaytive-core, Property 11: Snapshot fidelity
Validates: codebook, classifier and pattern collection snapshots restore to
state that behaves identically to the original
"""

import json

import numpy as np
from hypothesis import given, strategies as st, settings

from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.fusion.classifier import NearestCentroidClassifier
from relaytive.models.features import CodebookSnapshot
from relaytive.models.patterns import CompositionalPattern, PatternCollection


DIM = 12


@st.composite
def vectors_strategy(draw, min_size=1, max_size=30):
    seed = draw(st.integers(min_value=0, max_value=2**31 - 1))
    count = draw(st.integers(min_value=min_size, max_value=max_size))
    return np.random.default_rng(seed).normal(size=(count, DIM)).astype(np.float32)


@st.composite
def collection_strategy(draw):
    count = draw(st.integers(min_value=0, max_value=6))
    rng = np.random.default_rng(draw(st.integers(min_value=0, max_value=2**31 - 1)))
    patterns = [
        CompositionalPattern(
            representative_embedding=rng.normal(size=DIM).astype(np.float32),
            frequency=draw(st.integers(min_value=0, max_value=20)),
            confidence=draw(st.floats(min_value=0.0, max_value=1.0)),
            average_position=draw(st.floats(min_value=0.0, max_value=1.0)),
            associated_meanings=tuple(draw(st.lists(st.sampled_from(["I want", "water", "more"]), max_size=3))),
            contributing_segment_ids=tuple(f"segment-{i}" for i in range(draw(st.integers(0, 4)))),
        )
        for _ in range(count)
    ]
    last_run = draw(st.one_of(st.none(), st.floats(min_value=0.0, max_value=2e9)))
    return PatternCollection(patterns, last_discovery_run=last_run, discovery_complete=last_run is not None)


@settings(max_examples=100, deadline=None)
@given(training=vectors_strategy(), queries=vectors_strategy(max_size=10), k=st.integers(min_value=2, max_value=16))
def test_codebook_snapshot_preserves_assignments(training, queries, k):
    """
    Property 11: A quantizer restored from a JSON-encoded snapshot assigns
    every vector to the same unit as the original.
    """
    original = FrameQuantizer(dim=DIM, k=k, seed=3)
    for vector in training:
        original.observe(vector)

    encoded = json.dumps(original.snapshot().to_dict())
    restored = FrameQuantizer(dim=DIM, k=k, seed=99)
    assert restored.load_snapshot(CodebookSnapshot.from_dict(json.loads(encoded)))

    assert restored.total_observations == original.total_observations
    assert restored.cluster_sizes() == original.cluster_sizes()
    for query in queries:
        assert restored.nearest(query) == original.nearest(query)


@settings(max_examples=100, deadline=None)
@given(
    examples=vectors_strategy(min_size=1, max_size=12),
    meanings=st.lists(st.sampled_from(["water", "food", "more", "all done"]), min_size=12, max_size=12),
    queries=vectors_strategy(max_size=5),
)
def test_classifier_snapshot_preserves_predictions(examples, meanings, queries):
    """
    Property 11: A classifier restored from its snapshot ranks meanings
    exactly like the original.
    """
    original = NearestCentroidClassifier()
    for vector, meaning in zip(examples, meanings):
        original.update_with_example(meaning, vector, f"U{len(meaning)} U1")

    restored = NearestCentroidClassifier()
    assert restored.load_snapshot(json.loads(json.dumps(original.snapshot())))

    for query in queries:
        before = original.classify(query, "U4 U1")
        after = restored.classify(query, "U4 U1")
        assert after.top_meaning == before.top_meaning
        assert after.needs_confirmation == before.needs_confirmation
        assert abs(after.confidence - before.confidence) < 1e-5


@settings(max_examples=100, deadline=None)
@given(collection=collection_strategy())
def test_collection_snapshot_roundtrip(collection: PatternCollection):
    """
    Property 11: A pattern collection survives a JSON round trip with ids,
    order, statistics and embeddings intact.
    """
    restored = PatternCollection.from_dict(json.loads(json.dumps(collection.to_dict())))

    assert [p.id for p in restored] == [p.id for p in collection]
    assert restored.last_discovery_run == collection.last_discovery_run
    assert restored.discovery_complete == collection.discovery_complete
    for before, after in zip(collection, restored):
        assert after.frequency == before.frequency
        assert after.confidence == before.confidence
        assert after.average_position == before.average_position
        assert after.associated_meanings == before.associated_meanings
        assert after.contributing_segment_ids == before.contributing_segment_ids
        np.testing.assert_array_equal(after.representative_embedding, before.representative_embedding)
