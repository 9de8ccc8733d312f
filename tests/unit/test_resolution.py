"""Unit tests for the three-tier resolution policy"""

from unittest.mock import AsyncMock, MagicMock

import numpy as np
import pytest

from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.analysis.segmentation import SegmentExtractor, SegmentationStrategy
from relaytive.analysis.transcriber import PhoneticTranscriber
from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.fusion.classifier import NearestCentroidClassifier
from relaytive.fusion.resolution import ResolutionPolicy
from relaytive.models.enums import FailureKind, MatchStrategy, ResolutionTier
from relaytive.models.features import PhoneticTranscription
from relaytive.models.patterns import PatternCollection
from relaytive.models.results import (
    NO_MATCH_TRANSLATION,
    ClassificationResult,
    PatternMatchResult,
)
from relaytive.patterns.matcher import CompositionalMatchingConfig, PatternMatcher
from relaytive.ui.diagnostics import DiagnosticsMonitor


EMBEDDING = np.linspace(-1.0, 1.0, 40).astype(np.float32)


def confident(meaning: str = "water") -> ClassificationResult:
    return ClassificationResult(top_meaning=meaning, confidence=0.95, margin=0.9, needs_confirmation=False)


def unsure() -> ClassificationResult:
    return ClassificationResult(top_meaning="water", confidence=0.55, margin=0.1, needs_confirmation=True)


@pytest.fixture
def diagnostics():
    return DiagnosticsMonitor(history_size=10)


@pytest.fixture
def mocks():
    """Policy wired to mocked components"""
    transcriber = MagicMock()
    transcriber.transcribe = AsyncMock(
        return_value=PhoneticTranscription(unit_ids=[1, 2], unit_string="U1 U2")
    )
    classifier = MagicMock()
    classifier.classify = MagicMock(return_value=unsure())
    matcher = MagicMock()
    matcher.match = AsyncMock(return_value=PatternMatchResult.no_match("nothing matched"))
    extractor = MagicMock()
    return extractor, transcriber, classifier, matcher


@pytest.fixture
def policy(mocks, diagnostics):
    return ResolutionPolicy(*mocks, diagnostics=diagnostics)


@pytest.fixture
def real_policy(mel_extractor, diagnostics):
    """Policy built from real, untrained components"""
    transcriber = PhoneticTranscriber(
        mel_extractor,
        FrameQuantizer(dim=40, k=16, seed=3),
        vad=VoiceActivityDetector(sample_rate=16000),
        hop_size=320,
        max_frames_per_segment=20,
    )
    matcher = PatternMatcher(
        SegmentExtractor(mel_extractor, SegmentationStrategy.fixed(0.6)),
        CompositionalMatchingConfig(),
    )
    return ResolutionPolicy(mel_extractor, transcriber, NearestCentroidClassifier(), matcher, diagnostics)


class TestTiers:
    """Test suite for tier ordering"""

    @pytest.mark.asyncio
    async def test_confident_classification_wins(self, policy, mocks, utterance):
        _, _, classifier, matcher = mocks
        classifier.classify.return_value = confident()
        result = await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])

        assert result.tier == ResolutionTier.PHONETIC
        assert result.translation == "water"
        assert result.explanation.startswith("Phonetic match")
        matcher.match.assert_not_awaited()
        classifier.classify.assert_called_once_with(EMBEDDING, "U1 U2")

    @pytest.mark.asyncio
    async def test_compositional_tier(self, policy, mocks, utterance):
        _, _, _, matcher = mocks
        matcher.match.return_value = PatternMatchResult(
            translation="I want",
            confidence=0.7,
            strategy=MatchStrategy.MEANING_COMBINATION,
            coverage=0.6,
            explanation="Compositional match",
        )
        result = await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])
        assert result.tier == ResolutionTier.COMPOSITIONAL
        assert result.translation == "I want"
        assert result.classification.top_meaning == "water"

    @pytest.mark.asyncio
    async def test_nearest_neighbor_tier(self, policy, mocks, utterance):
        _, _, _, matcher = mocks
        matcher.match.return_value = PatternMatchResult(
            translation="water",
            confidence=0.9,
            strategy=MatchStrategy.WHOLE_UTTERANCE,
            explanation="Whole-utterance match",
        )
        result = await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])
        assert result.tier == ResolutionTier.NEAREST_NEIGHBOR
        assert result.confidence == pytest.approx(0.9)

    @pytest.mark.asyncio
    async def test_no_tier_gives_explicit_no_match(self, policy, utterance):
        result = await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])
        assert not result.is_match
        assert result.tier == ResolutionTier.NONE
        assert result.explanation == "nothing matched"
        assert result.display_text == NO_MATCH_TRANSLATION

    @pytest.mark.asyncio
    async def test_cached_embedding_skips_extraction(self, policy, mocks, utterance):
        extractor, _, _, matcher = mocks
        extractor.embed = AsyncMock()
        await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])
        extractor.embed.assert_not_awaited()
        assert matcher.match.await_args.kwargs["whole_embedding"] is EMBEDDING

    @pytest.mark.asyncio
    async def test_unexpected_error_gives_no_match(self, policy, mocks, utterance):
        _, transcriber, _, _ = mocks
        transcriber.transcribe.side_effect = RuntimeError("boom")
        result = await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])
        assert not result.is_match

    @pytest.mark.asyncio
    async def test_confidence_recorded(self, policy, mocks, diagnostics, utterance):
        _, _, classifier, _ = mocks
        classifier.classify.return_value = confident()
        await policy.resolve(utterance(440.0), EMBEDDING, PatternCollection(), [])
        assert diagnostics.snapshot().last_confidence == pytest.approx(0.95)


class TestUntrainedPipeline:
    """Test suite for resolution with nothing learned yet"""

    @pytest.mark.asyncio
    async def test_empty_state_is_no_match(self, real_policy, utterance):
        result = await real_policy.resolve(utterance(440.0, 1000.0), None, PatternCollection(), [])
        assert not result.is_match
        assert result.classification.top_meaning is None

    @pytest.mark.asyncio
    async def test_silence_is_no_match(self, real_policy, silence):
        result = await real_policy.resolve(silence(1.0), None, PatternCollection(), [])
        assert not result.is_match

    @pytest.mark.asyncio
    async def test_failing_extractor_is_no_match(self, failing_extractor, diagnostics, utterance):
        policy = ResolutionPolicy(
            failing_extractor,
            PhoneticTranscriber(failing_extractor, FrameQuantizer(dim=40, k=8, seed=1), hop_size=320,
                                max_frames_per_segment=4),
            NearestCentroidClassifier(),
            PatternMatcher(SegmentExtractor(failing_extractor, SegmentationStrategy.fixed(0.6)),
                           CompositionalMatchingConfig()),
            diagnostics,
        )
        result = await policy.resolve(utterance(440.0), None, PatternCollection(), [])
        assert not result.is_match
        assert diagnostics.snapshot().failure_counts[FailureKind.RESOURCE.value] >= 1


class TestConfirm:
    """Test suite for caregiver confirmation"""

    @pytest.mark.asyncio
    async def test_confirm_teaches_classifier(self, real_policy, utterance):
        assert await real_policy.confirm("water", utterance(1000.0)) is True
        assert await real_policy.confirm("food", utterance(4000.0)) is True
        result = await real_policy.resolve(utterance(1000.0), None, PatternCollection(), [])
        assert result.classification.top_meaning == "water"

    @pytest.mark.asyncio
    async def test_confirm_without_embedding(self, real_policy, silence):
        assert await real_policy.confirm("water", silence(1.0)) is False
        assert real_policy.classifier.known_meanings() == []
