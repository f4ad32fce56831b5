# fswatcher/watcher/monitor.py

"""
Main polling monitor: ticks over the watched roots, classifies changes and
hands them to the dispatch worker
"""
import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .detector import ChangeDetector, SnapshotStore
from .dispatch import EventPublisher, HandlerRegistry, ProblemList
from .errors import ConfigError, ScanError, ScanErrorKind
from .events import ChangeRecord, Origin
from .ledger import SelfModificationLedger
from .loopback import LoopbackFilter, LoopbackPolicy
from .patterns import PatternFilter
from .scanner import DirectoryScanner, ensure_root
from ..utils.file_utils import normalize_path

logger = logging.getLogger(__name__)


class FileMonitor:
    """
    Single long-lived engine value. Detection runs on a fixed tick; delivery
    to handlers runs in a separate worker fed through a queue, so a slow
    handler never delays the next tick.
    """

    def __init__(self, roots: Iterable[Union[str, Path]],
                 detector: ChangeDetector,
                 ledger: SelfModificationLedger,
                 publisher: EventPublisher,
                 tick_interval: float = 1.0,
                 loopback_policy: LoopbackPolicy = LoopbackPolicy.TAG):
        """
        Initialize file monitor

        Args:
            roots: Directories to watch, fixed for the monitor's lifetime
            detector: Change detector owning the snapshot store
            ledger: Self-modification ledger shared with handlers
            publisher: Delivers records to handlers
            tick_interval: Seconds between tick starts
            loopback_policy: Tag or discard self-caused changes
        """
        self.roots = self._unique_roots(roots)
        if not self.roots:
            raise ConfigError("No directories to watch")
        if tick_interval <= 0:
            raise ConfigError("tick_interval must be positive")

        self.detector = detector
        self.ledger = ledger
        self.loopback = LoopbackFilter(ledger, loopback_policy)
        self.publisher = publisher
        self.tick_interval = tick_interval

        self.queue: asyncio.Queue = asyncio.Queue()
        self._loop_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None

        # State
        self.is_running = False
        self.stats = {
            'ticks': 0,
            'records': 0,
            'external': 0,
            'internal': 0,
            'discarded': 0,
            'scan_errors': 0,
            'tick_errors': 0,
            'last_tick': None,
            'last_tick_duration': 0.0,
            'watched_directories': len(self.roots),
        }

        logger.info(f"FileMonitor initialized with {len(self.roots)} directories to watch")

    @classmethod
    def from_config(cls, config: Any, registry: HandlerRegistry,
                    ledger: Optional[SelfModificationLedger] = None) -> "FileMonitor":
        """
        Build the engine from a loaded Config

        Args:
            config: fswatcher.utils.config.Config
            registry: Handlers, already registered in order
            ledger: Ledger the handlers were given, created if None
        """
        watcher_config = config.watcher

        pattern_filter = PatternFilter(
            ignore_patterns=watcher_config.ignore_patterns,
            ignore_directories=watcher_config.ignore_directories,
        )
        scanner = DirectoryScanner(
            max_files=watcher_config.max_files,
            max_depth=watcher_config.max_depth,
            pattern_filter=pattern_filter,
        )
        ledger = ledger or SelfModificationLedger(window=watcher_config.suppression_window)
        publisher = EventPublisher(registry, ProblemList())

        return cls(
            roots=watcher_config.roots,
            detector=ChangeDetector(scanner, SnapshotStore()),
            ledger=ledger,
            publisher=publisher,
            tick_interval=watcher_config.tick_interval,
            loopback_policy=LoopbackPolicy(watcher_config.loopback_policy),
        )

    @staticmethod
    def _unique_roots(roots: Iterable[Union[str, Path]]) -> List[str]:
        unique = []
        seen = set()
        for root in roots:
            normalized = normalize_path(root)
            if normalized not in seen:
                seen.add(normalized)
                unique.append(normalized)
        return unique

    async def initialize(self):
        """Create missing roots and take the baseline snapshots"""
        for root in self.roots:
            await self._baseline(root)

    async def _baseline(self, root: str) -> bool:
        try:
            await asyncio.to_thread(self.detector.baseline, root)
            return True
        except ScanError as e:
            self.stats['scan_errors'] += 1
            logger.error(f"Cannot take baseline of {root} ({e.kind.value}): {e}")
            return False
        except OSError as e:
            self.stats['scan_errors'] += 1
            logger.error(f"Cannot prepare watched directory {root}: {e}")
            return False

    async def start(self) -> bool:
        """Start monitoring directories"""
        if self.is_running:
            logger.warning("FileMonitor is already running")
            return True

        await self.initialize()

        self.is_running = True
        self._dispatch_task = asyncio.create_task(self._dispatch_loop())
        self._loop_task = asyncio.create_task(self._run_loop())

        for root in self.roots:
            logger.info(f"Watching directory: {root}")
        logger.info(f"FileMonitor started (tick: {self.tick_interval}s, "
                    f"suppression window: {self.ledger.window}s)")
        return True

    async def stop(self, wait_for_retries: bool = False):
        """
        Stop ticking and deliver what was already detected

        Args:
            wait_for_retries: Let scheduled handler retries finish instead of
                abandoning them
        """
        if not self.is_running:
            return

        self.is_running = False
        if self._loop_task:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        await self.queue.join()
        if self._dispatch_task:
            self._dispatch_task.cancel()
            await asyncio.gather(self._dispatch_task, return_exceptions=True)
            self._dispatch_task = None

        if wait_for_retries:
            await self.publisher.drain()
        elif self.publisher.pending_retries:
            logger.warning(f"Abandoning {self.publisher.pending_retries} pending handler retries")
        await self.publisher.cancel_pending()

        logger.info("FileMonitor stopped")

    async def tick(self) -> List[ChangeRecord]:
        """
        Scan every root once and queue the finalized records

        Returns:
            Records queued for delivery, in delivery order
        """
        started = datetime.now()
        self.ledger.evict_stale()

        finalized = []
        for root in self.roots:
            if not self.detector.store.has(root):
                # Baseline failed earlier; retry it instead of reporting every file as new
                await self._baseline(root)
                continue

            try:
                raw_records = await asyncio.to_thread(self.detector.detect, root)
            except ScanError as e:
                self._on_scan_error(e)
                continue

            for raw in raw_records:
                record = self.loopback.apply(raw)
                if record is None:
                    self.stats['discarded'] += 1
                    continue
                self.stats[record.origin.value] += 1
                if record.origin is Origin.EXTERNAL:
                    logger.info(f"External file system event: {record.kind.value} - {record.path}",
                                extra=record.log_context())
                else:
                    logger.debug(f"Internal file system event: {record.kind.value} - {record.path}",
                                 extra=record.log_context())
                finalized.append(record)
                self.queue.put_nowait(record)

        self.stats['ticks'] += 1
        self.stats['records'] += len(finalized)
        self.stats['last_tick'] = started
        self.stats['last_tick_duration'] = (datetime.now() - started).total_seconds()
        return finalized

    def _on_scan_error(self, error: ScanError):
        self.stats['scan_errors'] += 1
        if error.kind is ScanErrorKind.ROOT_MISSING:
            logger.warning(f"Watched directory disappeared: {error.root}")
            try:
                ensure_root(error.root)
            except OSError as e:
                logger.error(f"Cannot re-create {error.root}: {e}")
        else:
            logger.error(f"Scan of {error.root} skipped ({error.kind.value}): {error}")

    async def _run_loop(self):
        logger.info("Starting polling loop")
        loop = asyncio.get_running_loop()

        while self.is_running:
            tick_started = loop.time()
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats['tick_errors'] += 1
                logger.error(f"Error during tick: {e}", exc_info=True)

            elapsed = loop.time() - tick_started
            await asyncio.sleep(max(0.0, self.tick_interval - elapsed))

    async def _dispatch_loop(self):
        logger.info("Starting dispatch worker")
        while True:
            record = await self.queue.get()
            try:
                await self.publisher.publish(record)
            except Exception as e:
                logger.error(f"Error dispatching {record}: {e}", exc_info=True)
            finally:
                self.queue.task_done()

    async def flush(self, include_retries: bool = False):
        """
        Deliver everything queued so far

        Args:
            include_retries: Also wait for scheduled handler retries
        """
        if self._dispatch_task is not None:
            await self.queue.join()
        else:
            while not self.queue.empty():
                record = self.queue.get_nowait()
                try:
                    await self.publisher.publish(record)
                finally:
                    self.queue.task_done()

        if include_retries:
            await self.publisher.drain()

    def get_status(self) -> Dict[str, Any]:
        """Get monitor status"""
        return {
            'is_running': self.is_running,
            'watched_directories': list(self.roots),
            'tick_interval': self.tick_interval,
            'loopback_policy': self.loopback.policy.value,
            'queued': self.queue.qsize(),
            'stats': self.stats.copy(),
            'scanner': self.detector.scanner.get_stats(),
            'detector': self.detector.get_stats(),
            'ledger': self.ledger.get_stats(),
            'publisher': self.publisher.get_stats(),
        }
