"""Property-based tests for graceful degradation

Feature: relaytive-core, Property 10: Failing extractor degradation
Validates: when every embedding call raises, each pipeline stage returns its
neutral result and none of them raises
"""

import asyncio
from typing import List, Optional

import numpy as np
from hypothesis import given, strategies as st, settings

from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.analysis.segmentation import SegmentExtractor, SegmentationStrategy
from relaytive.analysis.transcriber import PhoneticTranscriber
from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.fusion.classifier import NearestCentroidClassifier
from relaytive.fusion.resolution import ResolutionPolicy
from relaytive.input.extractor import GuardedExtractor
from relaytive.models.enums import FailureKind
from relaytive.models.features import TrainingExample
from relaytive.models.frames import AudioWindow
from relaytive.models.interfaces import EmbeddingExtractor, ExtractionError
from relaytive.models.patterns import CompositionalPattern, PatternCollection
from relaytive.patterns.discovery import PatternDiscoveryConfig, PatternMiner
from relaytive.patterns.matcher import CompositionalMatchingConfig, PatternMatcher
from relaytive.ui.diagnostics import DiagnosticsMonitor


SAMPLE_RATE = 16000
DIM = 40
CALLS_PER_EXAMPLE = 10
STAGES = ["transcribe", "segments", "match", "resolve", "confirm", "discover", "update"]


class BrokenBackend(EmbeddingExtractor):
    """Backend whose every call raises"""

    def __init__(self):
        self.calls = 0

    @property
    def sample_rate(self) -> int:
        return SAMPLE_RATE

    @property
    def required_length(self) -> int:
        return SAMPLE_RATE // 2

    @property
    def dimension(self) -> int:
        return DIM

    async def extract(self, samples: np.ndarray) -> Optional[np.ndarray]:
        self.calls += 1
        raise ExtractionError("backend unavailable")


@st.composite
def audio_strategy(draw):
    seed = draw(st.integers(min_value=0, max_value=2**31 - 1))
    length = draw(st.integers(min_value=0, max_value=SAMPLE_RATE))
    amplitude = draw(st.sampled_from([0.0, 0.01, 0.5]))
    samples = amplitude * np.random.default_rng(seed).normal(size=length)
    return AudioWindow(samples=np.clip(samples, -1.0, 1.0).astype(np.float32), sample_rate=SAMPLE_RATE)


def stored_state():
    """One pattern and one example with a cached embedding"""
    rng = np.random.default_rng(7)
    vector = rng.normal(size=DIM).astype(np.float32)
    pattern = CompositionalPattern(
        representative_embedding=vector,
        frequency=3,
        confidence=0.8,
        average_position=0.0,
        associated_meanings=("I want",),
    )
    example = TrainingExample(
        audio=AudioWindow(samples=np.zeros(SAMPLE_RATE, dtype=np.float32), sample_rate=SAMPLE_RATE),
        explanation="I want water",
    )
    example.cache_embedding(vector)
    collection = PatternCollection([pattern])
    collection.mark_discovery_complete(0.0)
    return collection, [example]


@settings(max_examples=100, deadline=None)
@given(
    stages=st.lists(st.sampled_from(STAGES), min_size=CALLS_PER_EXAMPLE, max_size=CALLS_PER_EXAMPLE),
    windows=st.lists(audio_strategy(), min_size=CALLS_PER_EXAMPLE, max_size=CALLS_PER_EXAMPLE),
)
def test_every_stage_degrades_without_raising(stages: List[str], windows: List[AudioWindow]):
    """
    Property 10: For any sequence of calls against a broken backend, every
    stage yields an empty or no-match result.
    """
    async def run():
        backend = BrokenBackend()
        extractor = GuardedExtractor(backend, timeout=1.0, cache_size=0)
        diagnostics = DiagnosticsMonitor(history_size=20)
        transcriber = PhoneticTranscriber(
            extractor,
            FrameQuantizer(dim=DIM, k=8, seed=0),
            vad=VoiceActivityDetector(sample_rate=SAMPLE_RATE),
            diagnostics=diagnostics,
            hop_size=1600,
            max_frames_per_segment=4,
        )
        segmenter = SegmentExtractor(extractor, SegmentationStrategy.fixed(0.25))
        matcher = PatternMatcher(segmenter, CompositionalMatchingConfig(segmentation=SegmentationStrategy.fixed(0.25)))
        classifier = NearestCentroidClassifier()
        classifier.update_with_example("I want water", np.linspace(-1.0, 1.0, DIM).astype(np.float32))
        policy = ResolutionPolicy(extractor, transcriber, classifier, matcher, diagnostics)
        miner = PatternMiner(
            segmenter,
            PatternDiscoveryConfig(min_pattern_frequency=1, segmentation=SegmentationStrategy.fixed(0.25)),
        )
        collection, examples = stored_state()

        for stage, window in zip(stages, windows):
            if stage == "transcribe":
                transcription = await transcriber.transcribe(window)
                assert transcription.is_empty
            elif stage == "segments":
                assert await segmenter.extract_segments(window, "query") == []
            elif stage == "match":
                result = await matcher.match(window, collection, examples)
                assert not result.is_match
            elif stage == "resolve":
                result = await policy.resolve(window, None, collection, examples)
                assert not result.is_match
                assert result.classification is None or not result.classification.is_confident
            elif stage == "confirm":
                assert await policy.confirm("more", window) is False
            elif stage == "discover":
                example = TrainingExample(audio=window, explanation="I want food")
                outcome = await miner.discover([example])
                assert outcome.collection.is_empty
            else:
                example = TrainingExample(audio=window, explanation="I want food")
                outcome = await miner.update(collection, [example])
                assert [p.id for p in outcome.collection] == [p.id for p in collection]
                assert outcome.collection.get(collection.patterns[0].id).frequency == 3

        return extractor, diagnostics

    extractor, diagnostics = asyncio.run(run())

    assert set(extractor.failure_counts) <= {FailureKind.INPUT, FailureKind.RESOURCE}
    assert diagnostics.snapshot().failure_counts.get(FailureKind.QUALITY.value, 0) == 0
