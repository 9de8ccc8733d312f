"""Discovery Scheduling

Pattern discovery is expensive, so requests are debounced: a pass starts after
a quiet period, or immediately once enough new examples have accumulated. At
most one pass runs at a time and a newer request replaces a pending one that
has not started yet ("latest request wins").

A pass builds a brand new collection and commits it to the PatternLibrary in
one assignment. A cancelled or failed pass commits nothing, so readers always
see the last committed collection.
"""

import asyncio
import logging
import time
from typing import Callable, Optional, Sequence, Set

from relaytive.models.enums import FailureKind
from relaytive.models.features import TrainingExample
from relaytive.models.patterns import PatternCollection
from relaytive.patterns.discovery import DiscoveryOutcome, PatternMiner
from relaytive.patterns.validator import PatternValidator
from relaytive.config.config_loader import config


logger = logging.getLogger(__name__)


class PatternLibrary:
    """Holder of the last committed PatternCollection.

    Attributes:
        version: Incremented on every commit
        committed_at: Time of the last commit
    """

    def __init__(self, collection: Optional[PatternCollection] = None):
        self._collection = collection or PatternCollection()
        self.version = 0
        self.committed_at: Optional[float] = None

    @property
    def collection(self) -> PatternCollection:
        return self._collection

    def commit(self, collection: PatternCollection) -> None:
        self._collection = collection
        self.version += 1
        self.committed_at = time.time()
        logger.info(f"Committed pattern collection v{self.version} with {len(collection)} patterns")


class DiscoveryScheduler:
    """Debounced, single-flight discovery runner.

    Attributes:
        miner: Runs discovery and incremental updates
        library: Receives committed collections
        examples_provider: Returns the current training examples
        validator: Prunes invalid patterns before commit
        quiet_period: Seconds to wait for more requests before running
        min_new_examples: Pending requests that trigger a pass without waiting
        max_patterns: Collection size above which an aggressive prune runs
    """

    def __init__(
        self,
        miner: PatternMiner,
        library: PatternLibrary,
        examples_provider: Callable[[], Sequence[TrainingExample]],
        validator: Optional[PatternValidator] = None,
        quiet_period: Optional[float] = None,
        min_new_examples: Optional[int] = None
    ):
        self.miner = miner
        self.library = library
        self.examples_provider = examples_provider
        self.validator = validator or PatternValidator.from_discovery_config(miner.discovery_config)
        self.quiet_period = quiet_period if quiet_period is not None else config.get('scheduler.quiet_period', 2.0)
        self.min_new_examples = min_new_examples if min_new_examples is not None else config.get('scheduler.min_new_examples', 3)
        self.aggressive_prune = config.get('scheduler.aggressive_prune', True)
        self.max_patterns = config.get('collection.max_patterns', 8)
        self.prune_min_frequency = config.get('collection.prune_min_frequency', 3)
        self.prune_min_confidence = config.get('collection.prune_min_confidence', 0.6)

        self.passes_completed = 0
        self.passes_superseded = 0
        self.last_error: Optional[BaseException] = None

        self._pending_requests = 0
        self._mined_ids: Set[str] = set()
        self._mined_version: Optional[int] = None
        self._pending: Optional[asyncio.Task] = None
        self._running: Optional[asyncio.Task] = None
        self._run_lock: Optional[asyncio.Lock] = None

    @property
    def is_running(self) -> bool:
        return self._running is not None and not self._running.done()

    @property
    def has_pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def request(self, new_examples: int = 1) -> asyncio.Task:
        """Ask for a discovery pass; must be called from a running event loop.

        Returns:
            The task that will run the pass (it may later be superseded)
        """
        if self._run_lock is None:
            self._run_lock = asyncio.Lock()
        self._pending_requests += new_examples

        if self.has_pending:
            self._pending.cancel()
            self.passes_superseded += 1
            logger.debug(f"Discovery request superseded [{FailureKind.CONCURRENCY.value}]")

        task = asyncio.create_task(self._debounced(), name="pattern_discovery")
        self._pending = task
        return task

    async def _debounced(self) -> Optional[PatternCollection]:
        if self._pending_requests < self.min_new_examples:
            await asyncio.sleep(self.quiet_period)

        async with self._run_lock:
            current = asyncio.current_task()
            if self._pending is current:
                self._pending = None
            self._running = current
            try:
                return await self._run_pass()
            finally:
                self._running = None

    def _unmined(self, examples: Sequence[TrainingExample], since: float) -> list:
        """Examples no earlier pass has seen.

        ``since`` is the start of the pass that produced the committed
        collection, so examples added while that pass ran are still fresh.
        """
        if self._mined_version != self.library.version:
            # Collection committed elsewhere (restore); ids are unknown
            self._mined_ids = set()
        return [e for e in examples if e.id not in self._mined_ids and e.created_at >= since]

    async def _run_pass(self) -> Optional[PatternCollection]:
        self._pending_requests = 0
        started_at = time.time()
        examples = list(self.examples_provider())
        current = self.library.collection

        try:
            if current.is_empty or current.last_discovery_run is None:
                outcome = await self.miner.discover(examples)
                mined = {e.id for e in examples}
            else:
                fresh = self._unmined(examples, current.last_discovery_run)
                outcome = await self.miner.update(current, fresh)
                mined = self._mined_ids | {e.id for e in fresh}
            collection = self._prune(outcome)
            collection.mark_discovery_complete(started_at)
        except asyncio.CancelledError:
            logger.info("Discovery pass cancelled; keeping last committed collection")
            raise
        except Exception as e:
            self.last_error = e
            logger.error(f"Discovery pass failed: {e}", exc_info=True)
            return None

        self.library.commit(collection)
        self._mined_ids = mined
        self._mined_version = self.library.version
        self.passes_completed += 1
        return collection

    def _prune(self, outcome: DiscoveryOutcome) -> PatternCollection:
        collection = outcome.collection
        collection.remove_invalid(self.validator, outcome.segments)
        if self.aggressive_prune and len(collection) > self.max_patterns:
            collection.aggressive_prune(
                max_patterns=self.max_patterns,
                min_frequency=self.prune_min_frequency,
                min_confidence=self.prune_min_confidence,
            )
        return collection

    def cancel(self) -> None:
        """Cancel the pending and the running pass (nothing is committed)."""
        for task in (self._pending, self._running):
            if task is not None and not task.done():
                task.cancel()

    async def wait_idle(self) -> None:
        """Wait until no pass is pending or running."""
        while True:
            tasks = [t for t in (self._pending, self._running) if t is not None and not t.done()]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def run_now(self) -> Optional[PatternCollection]:
        """Run a pass immediately, bypassing the debounce."""
        if self._run_lock is None:
            self._run_lock = asyncio.Lock()
        async with self._run_lock:
            self._running = asyncio.current_task()
            try:
                return await self._run_pass()
            finally:
                self._running = None

    async def shutdown(self) -> None:
        self.cancel()
        await self.wait_idle()
        logger.info("DiscoveryScheduler shut down")
