"""Property-based tests for compositional discovery

Feature: relaytive-core, Property 8: Shared prefix discovery
Validates: examples that open with the same sound and share an explanation
prefix yield a pattern carrying that prefix as its meaning
"""

import asyncio

import numpy as np
from hypothesis import given, strategies as st, settings

from relaytive.analysis.segmentation import SegmentExtractor, SegmentationStrategy
from relaytive.input.extractor import GuardedExtractor, MelEmbeddingExtractor
from relaytive.models.features import TrainingExample
from relaytive.models.frames import AudioWindow
from relaytive.patterns.discovery import PatternDiscoveryConfig, PatternMiner


SAMPLE_RATE = 16000
TONES = [440.0, 1000.0, 2500.0, 4000.0, 6000.0]
WORDS = ["water", "food", "hugs", "juice", "music", "outside"]


def utterance(*frequencies: float) -> AudioWindow:
    t = np.arange(int(0.6 * SAMPLE_RATE)) / float(SAMPLE_RATE)
    parts = [0.5 * np.sin(2 * np.pi * f * t) for f in frequencies]
    return AudioWindow(samples=np.concatenate(parts).astype(np.float32), sample_rate=SAMPLE_RATE)


@st.composite
def shared_prefix_strategy(draw):
    """Generate a prefix tone and two to four distinct continuations."""
    prefix = draw(st.sampled_from(TONES))
    count = draw(st.integers(min_value=2, max_value=4))
    suffixes = draw(st.lists(
        st.sampled_from([t for t in TONES if t != prefix]),
        min_size=count, max_size=count, unique=True,
    ))
    words = draw(st.lists(st.sampled_from(WORDS), min_size=count, max_size=count, unique=True))
    return prefix, list(zip(suffixes, words))


@settings(max_examples=20, deadline=None)
@given(data=shared_prefix_strategy())
def test_shared_prefix_becomes_a_pattern(data):
    """
    Property 8: For any shared opening sound, discovery produces a pattern
    meaning "I want" that every example contributed to.
    """
    prefix, continuations = data
    examples = [
        TrainingExample(audio=utterance(prefix, suffix), explanation=f"I want {word}")
        for suffix, word in continuations
    ]

    async def run():
        extractor = GuardedExtractor(
            MelEmbeddingExtractor(sample_rate=SAMPLE_RATE, window_seconds=0.5, n_mels=40),
            timeout=10.0,
            cache_size=0,
        )
        config = PatternDiscoveryConfig(min_pattern_frequency=2, segmentation=SegmentationStrategy.fixed(0.6))
        miner = PatternMiner(SegmentExtractor(extractor, config.segmentation), config)
        return await miner.discover(examples)

    outcome = asyncio.run(run())

    prefix_patterns = [p for p in outcome.collection if p.primary_meaning == "I want"]
    assert len(prefix_patterns) == 1
    pattern = prefix_patterns[0]
    assert pattern.frequency == len(examples)
    assert pattern.average_position == 0.0
    assert pattern.confidence >= 0.25
