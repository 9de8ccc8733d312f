"""Resolution Policy

This module answers "what does this utterance mean?" by trying three tiers in
order and returning the first confident answer:

    1. phonetic classification (nearest centroid over embedding + unit string)
    2. compositional pattern match
    3. whole-utterance nearest neighbour over the training examples

When no tier is confident the result is an explicit no-match carrying an
explanation, never an exception.
"""

import asyncio
import logging
from typing import Optional, Sequence

import numpy as np

from relaytive.analysis.transcriber import PhoneticTranscriber
from relaytive.fusion.classifier import NearestCentroidClassifier
from relaytive.input.extractor import GuardedExtractor
from relaytive.models.enums import MatchStrategy, ResolutionTier
from relaytive.models.features import PhoneticTranscription, TrainingExample
from relaytive.models.frames import AudioWindow
from relaytive.models.patterns import PatternCollection
from relaytive.models.results import ClassificationResult, ResolutionResult
from relaytive.patterns.matcher import NO_MATCH_EXPLANATION, PatternMatcher
from relaytive.ui.diagnostics import DiagnosticsMonitor


logger = logging.getLogger(__name__)


class ResolutionPolicy:
    """Three-tier lookup of an utterance's meaning.

    Attributes:
        extractor: Guarded extractor for whole-utterance embeddings
        transcriber: Produces the unit string used by the classifier
        classifier: Tier 1
        matcher: Tiers 2 and 3
        diagnostics: Receives the confidence of every resolution
    """

    def __init__(
        self,
        extractor: GuardedExtractor,
        transcriber: PhoneticTranscriber,
        classifier: NearestCentroidClassifier,
        matcher: PatternMatcher,
        diagnostics: Optional[DiagnosticsMonitor] = None
    ):
        self.extractor = extractor
        self.transcriber = transcriber
        self.classifier = classifier
        self.matcher = matcher
        self.diagnostics = diagnostics

    async def _embedding(self, window: AudioWindow,
                         cached_embedding: Optional[np.ndarray]) -> Optional[np.ndarray]:
        if cached_embedding is not None:
            return cached_embedding
        outcome = await self.extractor.embed(window, use_cache=True)
        if not outcome.ok:
            if self.diagnostics is not None:
                self.diagnostics.record_failure(outcome.failure, outcome.defect)
            logger.debug(f"No whole-utterance embedding [{outcome.failure.value}]: {outcome.detail}")
            return None
        return outcome.embedding

    def _classify(self, embedding: Optional[np.ndarray],
                  transcription: PhoneticTranscription) -> ClassificationResult:
        if embedding is None:
            return ClassificationResult.no_information()
        return self.classifier.classify(embedding, transcription.unit_string or None)

    def _record(self, result: ResolutionResult) -> ResolutionResult:
        if self.diagnostics is not None:
            self.diagnostics.record_confidence(result.confidence)
        return result

    async def resolve(
        self,
        window: AudioWindow,
        cached_embedding: Optional[np.ndarray],
        patterns: PatternCollection,
        training_examples: Sequence[TrainingExample]
    ) -> ResolutionResult:
        """Resolve an utterance to a meaning.

        Args:
            window: Utterance audio
            cached_embedding: Whole-utterance embedding if already computed
            patterns: Committed pattern library
            training_examples: Caregiver examples for the nearest-neighbour tier

        Returns:
            ResolutionResult from the first confident tier, else a no-match result
        """
        try:
            transcription = await self.transcriber.transcribe(window)
            embedding = await self._embedding(window, cached_embedding)

            classification = self._classify(embedding, transcription)
            if classification.is_confident:
                logger.debug(f"Resolved phonetically: {classification.top_meaning}")
                return self._record(ResolutionResult(
                    translation=classification.top_meaning,
                    confidence=classification.confidence,
                    tier=ResolutionTier.PHONETIC,
                    explanation=(
                        f"Phonetic match (confidence: {classification.confidence:.0%}, "
                        f"margin: {classification.margin:.0%})"
                    ),
                    classification=classification,
                ))

            match = await self.matcher.match(window, patterns, training_examples, whole_embedding=embedding)
            if match.is_match:
                tier = (
                    ResolutionTier.NEAREST_NEIGHBOR
                    if match.strategy == MatchStrategy.WHOLE_UTTERANCE
                    else ResolutionTier.COMPOSITIONAL
                )
                return self._record(ResolutionResult(
                    translation=match.translation,
                    confidence=match.confidence,
                    tier=tier,
                    explanation=match.explanation,
                    classification=classification,
                    match=match,
                ))

            return self._record(ResolutionResult.no_match(
                match.explanation or NO_MATCH_EXPLANATION,
                classification=classification,
                match=match,
            ))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Resolution failed: {e}", exc_info=True)
            return self._record(ResolutionResult.no_match(NO_MATCH_EXPLANATION))

    async def confirm(self, meaning: str, window: AudioWindow) -> bool:
        """Teach the classifier that ``window`` means ``meaning``.

        Returns:
            True when the classifier accepted the example
        """
        transcription = await self.transcriber.transcribe(window)
        embedding = await self._embedding(window, None)
        if embedding is None:
            logger.warning(f"Confirmation of '{meaning}' dropped: no usable embedding")
            return False
        return self.classifier.update_with_example(meaning, embedding, transcription.unit_string or None)
