"""Main Application Entry Point

This module wires the continual-learning pipeline together and owns its
long-lived state:

    1. Guarded embedding extractor (shared by every component)
    2. Frame quantizer and phonetic transcriber
    3. Nearest-centroid classifier
    4. Pattern miner, matcher and the committed pattern library
    5. Debounced discovery scheduler
    6. Live diagnostics

Audio capture, storage and the UI live outside this package; they talk to the
pipeline through RelayEngine.
"""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from relaytive.analysis.quantizer import FrameQuantizer
from relaytive.analysis.segmentation import SegmentExtractor
from relaytive.analysis.transcriber import PhoneticTranscriber
from relaytive.analysis.vad import VoiceActivityDetector
from relaytive.fusion.classifier import NearestCentroidClassifier
from relaytive.fusion.resolution import ResolutionPolicy
from relaytive.input.extractor import GuardedExtractor, create_extractor
from relaytive.models.features import CodebookSnapshot, SnapshotError, TrainingExample
from relaytive.models.frames import AudioWindow
from relaytive.models.interfaces import EmbeddingExtractor
from relaytive.models.patterns import PatternCollection
from relaytive.models.results import ResolutionResult
from relaytive.patterns.discovery import PatternDiscoveryConfig, PatternMiner
from relaytive.patterns.matcher import CompositionalMatchingConfig, PatternMatcher
from relaytive.patterns.report import PatternQualityReport, analyze_pattern_quality
from relaytive.patterns.scheduler import DiscoveryScheduler, PatternLibrary
from relaytive.ui.diagnostics import DiagnosticsMonitor, DiagnosticsSnapshot
from relaytive.config.config_loader import ConfigurationError, config


logger = logging.getLogger(__name__)


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level: Optional[str] = None, log_file: Optional[str] = None) -> None:
    """Configure root logging from the ``logging`` config section."""
    level = level or config.get('logging.level', 'INFO')
    log_file = log_file or config.get('logging.file')

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers
    )


@dataclass
class PipelineContext:
    """Long-lived pipeline state, passed explicitly instead of held in globals.

    Attributes:
        extractor: Guarded embedding extractor
        quantizer: Online codebook
        transcriber: Phonetic transcriber (trains the codebook)
        classifier: Nearest-centroid classifier
        library: Last committed pattern collection
        diagnostics: Live metrics
        training_examples: Caregiver examples in insertion order
    """
    extractor: GuardedExtractor
    quantizer: FrameQuantizer
    transcriber: PhoneticTranscriber
    classifier: NearestCentroidClassifier
    library: PatternLibrary
    diagnostics: DiagnosticsMonitor
    training_examples: List[TrainingExample] = field(default_factory=list)


class RelayEngine:
    """Main orchestrator for the continual-learning pipeline.

    Attributes:
        context: Long-lived state shared by every component
        miner: Pattern discovery
        matcher: Compositional matcher with whole-utterance fallback
        policy: Three-tier resolution policy
        scheduler: Debounced discovery runner
    """

    def __init__(
        self,
        extractor: Optional[EmbeddingExtractor] = None,
        discovery_config: Optional[PatternDiscoveryConfig] = None,
        matching_config: Optional[CompositionalMatchingConfig] = None,
        quiet_period: Optional[float] = None,
        min_new_examples: Optional[int] = None
    ):
        logger.info("Initializing RelayEngine...")

        guarded = GuardedExtractor(extractor or create_extractor())
        diagnostics = DiagnosticsMonitor()
        quantizer = FrameQuantizer(dim=guarded.dimension)
        transcriber = PhoneticTranscriber(
            guarded,
            quantizer,
            vad=VoiceActivityDetector(sample_rate=guarded.sample_rate),
            diagnostics=diagnostics,
        )
        self.context = PipelineContext(
            extractor=guarded,
            quantizer=quantizer,
            transcriber=transcriber,
            classifier=NearestCentroidClassifier(),
            library=PatternLibrary(),
            diagnostics=diagnostics,
        )

        segment_extractor = SegmentExtractor(guarded)
        self.miner = PatternMiner(segment_extractor, discovery_config)
        self.matcher = PatternMatcher(segment_extractor, matching_config)
        self.policy = ResolutionPolicy(
            guarded, transcriber, self.context.classifier, self.matcher, diagnostics
        )
        self.scheduler = DiscoveryScheduler(
            self.miner,
            self.context.library,
            lambda: list(self.context.training_examples),
            quiet_period=quiet_period,
            min_new_examples=min_new_examples,
        )

        logger.info("RelayEngine initialized successfully")

    @property
    def training_examples(self) -> List[TrainingExample]:
        return list(self.context.training_examples)

    @property
    def patterns(self) -> PatternCollection:
        return self.context.library.collection

    async def add_training_example(
        self,
        window: AudioWindow,
        explanation: str,
        verified: bool = True,
        schedule_discovery: bool = True
    ) -> TrainingExample:
        """Store a caregiver example and learn from it.

        The whole-utterance embedding and transcription are cached on the
        example, the classifier is reinforced and a discovery pass is requested.

        Args:
            window: Utterance audio
            explanation: Caregiver's meaning for the utterance
            verified: Whether the caregiver confirmed the example
            schedule_discovery: Request a debounced discovery pass

        Returns:
            The stored TrainingExample
        """
        ctx = self.context
        example = TrainingExample(audio=window, explanation=explanation, verified=verified)

        outcome = await ctx.extractor.embed(example.audio, use_cache=True)
        if outcome.ok:
            example.cache_embedding(outcome.embedding)
        else:
            ctx.diagnostics.record_failure(outcome.failure, outcome.defect)
            logger.warning(f"Example '{explanation}' stored without embedding [{outcome.failure.value}]")

        transcription = await ctx.transcriber.transcribe(example.audio)
        example.cache_transcription(transcription)
        ctx.training_examples.append(example)

        if example.has_embedding:
            ctx.classifier.update_with_example(explanation, example.embedding, transcription.unit_string or None)

        if schedule_discovery:
            self.scheduler.request()

        logger.info(f"Added training example {example.id}: '{explanation}'")
        return example

    async def resolve(self, window: AudioWindow) -> ResolutionResult:
        return await self.policy.resolve(
            window,
            None,
            self.context.library.collection,
            self.training_examples,
        )

    async def confirm(self, meaning: str, window: AudioWindow) -> bool:
        return await self.policy.confirm(meaning, window)

    async def warm_up(self) -> bool:
        """Load the embedding backend before the first utterance arrives."""
        return await self.context.extractor.warm_up()

    async def discover_now(self) -> Optional[PatternCollection]:
        """Run a discovery pass immediately and commit it."""
        return await self.scheduler.run_now()

    def pattern_report(self) -> PatternQualityReport:
        return analyze_pattern_quality(self.context.library.collection)

    def diagnostics(self) -> DiagnosticsSnapshot:
        return self.context.diagnostics.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        """Serializable state of the codebook, classifier and pattern library."""
        return {
            "codebook": self.context.quantizer.snapshot().to_dict(),
            "classifier": self.context.classifier.snapshot(),
            "patterns": self.context.library.collection.to_dict(),
        }

    def restore(self, data: Mapping[str, Any]) -> bool:
        """Restore state produced by ``snapshot``.

        Returns:
            False when any part is malformed; nothing is restored then
        """
        try:
            codebook = CodebookSnapshot.from_dict(data["codebook"])
            collection = PatternCollection.from_dict(data["patterns"])
            classifier_state = data["classifier"]
        except (KeyError, TypeError, SnapshotError) as e:
            logger.error(f"Invalid engine snapshot: {e}")
            return False

        if not self.context.quantizer.accepts_snapshot(codebook):
            return False
        meanings = self.context.classifier.parse_snapshot(classifier_state)
        if meanings is None:
            return False

        self.context.quantizer.load_snapshot(codebook)
        self.context.classifier.load_states(meanings)
        self.context.library.commit(collection)
        logger.info("Engine state restored from snapshot")
        return True

    async def shutdown(self) -> None:
        """Cancel pending discovery; the last committed library is kept."""
        logger.info("Shutting down RelayEngine...")
        await self.scheduler.shutdown()
        logger.info("RelayEngine shutdown complete")


async def main_async() -> int:
    """Build the engine from configuration and report its setup."""
    engine = RelayEngine()
    try:
        if not await engine.warm_up():
            logger.warning("Embedding backend unavailable; every utterance will resolve to no match")
        stats = engine.context.transcriber.statistics()
        logger.info(
            f"Extractor dimension={engine.context.extractor.dimension}, "
            f"codebook size={engine.context.quantizer.k}, "
            f"symbol map loaded={stats.has_symbol_mapping}"
        )
    finally:
        await engine.shutdown()
    return 0


def main():
    """Main entry point."""
    configure_logging()
    try:
        config.validate()
        sys.exit(asyncio.run(main_async()))
    except ConfigurationError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Application terminated by user")


if __name__ == "__main__":
    main()
