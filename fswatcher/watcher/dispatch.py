# fswatcher/watcher/dispatch.py

"""
Handler registry and event publisher with per-handler failure isolation
and retry policies
"""
import asyncio
import inspect
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set, Tuple

from .errors import HandlerError
from .events import ChangeKind, ChangeRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    How often a failing handler is re-invoked for one record.

    ``backoff[i]`` is the wait before attempt ``i + 2``. A schedule shorter
    than the number of waits keeps using its last entry.
    """
    max_attempts: int = 1
    backoff: Tuple[float, ...] = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if any(delay < 0 for delay in self.backoff):
            raise ValueError("backoff delays must not be negative")
        object.__setattr__(self, 'backoff', tuple(float(d) for d in self.backoff))

    @classmethod
    def none(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    @property
    def retries_enabled(self) -> bool:
        return self.max_attempts > 1

    def delay_before(self, attempt: int) -> float:
        """
        Args:
            attempt: 1-based number of the attempt about to run (>= 2)

        Returns:
            Seconds to wait before it
        """
        if not self.backoff or attempt < 2:
            return 0.0
        idx = min(attempt - 2, len(self.backoff) - 1)
        return self.backoff[idx]


@dataclass
class ProblemEntry:
    handler: str
    path: str
    kind: ChangeKind
    mtime_ns: int
    error: str
    attempts: int
    recorded_at: datetime = field(default_factory=datetime.now)


ProblemKey = Tuple[str, str, ChangeKind, int]

DEFAULT_PROBLEM_TTL = 7 * 24 * 3600.0  # 7 days
DEFAULT_MAX_PROBLEMS = 10000


class ProblemList:
    """
    (handler, path, kind, mtime) combinations that failed for good.
    A listed combination is never delivered to that handler again.

    Entries expire after ``ttl`` seconds and the oldest are dropped beyond
    ``max_entries``, so a long-running monitor does not grow without bound.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_PROBLEMS,
                 ttl: float = DEFAULT_PROBLEM_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.ttl = ttl
        self._clock = clock
        # key -> (entry, listed at); insertion order is age order
        self._entries: "OrderedDict[ProblemKey, Tuple[ProblemEntry, float]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def _key(handler: str, record: ChangeRecord) -> ProblemKey:
        return (handler, record.path, record.kind, record.mtime_ns)

    def _expire(self, now: float):
        while self._entries:
            _, (_, listed_at) = next(iter(self._entries.items()))
            if now - listed_at < self.ttl:
                break
            self._entries.popitem(last=False)

    def add(self, handler: str, record: ChangeRecord, error: str, attempts: int) -> bool:
        """
        Returns:
            False if the combination was already listed
        """
        key = self._key(handler, record)
        with self._lock:
            now = self._clock()
            self._expire(now)
            if key in self._entries:
                return False
            self._entries[key] = (ProblemEntry(
                handler=handler,
                path=record.path,
                kind=record.kind,
                mtime_ns=record.mtime_ns,
                error=error,
                attempts=attempts,
            ), now)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
            return True

    def contains(self, handler: str, record: ChangeRecord) -> bool:
        with self._lock:
            self._expire(self._clock())
            return self._key(handler, record) in self._entries

    def entries(self) -> List[ProblemEntry]:
        with self._lock:
            self._expire(self._clock())
            return [entry for entry, _ in self._entries.values()]

    def __len__(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._entries)


@dataclass
class HandlerRegistration:
    handler: Any
    retry_policy: RetryPolicy
    name: str


def _handler_name(handler: Any) -> str:
    name = getattr(handler, 'name', None)
    if name:
        return name
    if hasattr(handler, '__name__'):
        return handler.__name__
    return type(handler).__name__


class HandlerRegistry:
    """
    Ordered, static list of handlers. Filled at startup, read-only afterwards.
    """

    def __init__(self):
        self._registrations: List[HandlerRegistration] = []

    def register(self, handler: Any, retry_policy: Optional[RetryPolicy] = None) -> HandlerRegistration:
        """
        Register a handler

        Args:
            handler: Object with ``handle(path, kind, origin)`` or a callable
                with the same signature
            retry_policy: Overrides the handler's own ``retry_policy``

        Returns:
            The registration
        """
        name = _handler_name(handler)
        if name in self.names():
            raise ValueError(f"Handler already registered: {name}")

        policy = retry_policy or getattr(handler, 'retry_policy', None) or RetryPolicy.none()
        registration = HandlerRegistration(handler=handler, retry_policy=policy, name=name)
        self._registrations.append(registration)

        logger.info(
            f"Registered handler {name} "
            f"(max_attempts={policy.max_attempts}, backoff={list(policy.backoff)})"
        )
        return registration

    def names(self) -> List[str]:
        return [r.name for r in self._registrations]

    def __iter__(self) -> Iterator[HandlerRegistration]:
        return iter(list(self._registrations))

    def __len__(self) -> int:
        return len(self._registrations)


class EventPublisher:
    """
    Deliver finalized records to every registered handler, in registration
    order, each inside its own failure boundary.

    Retries wait in background tasks, so a handler in backoff holds up
    neither the handlers after it nor later records.
    """

    def __init__(self, registry: HandlerRegistry,
                 problems: Optional[ProblemList] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        """
        Initialize publisher

        Args:
            registry: Handlers to deliver to
            problems: Shared problem list
            sleep: Coroutine used for backoff waits, injectable for tests
        """
        self.registry = registry
        self.problems = problems if problems is not None else ProblemList()
        self._sleep = sleep
        self._pending: Set[asyncio.Task] = set()

        self.stats = {
            'published': 0,
            'delivered': 0,
            'failed': 0,
            'retried': 0,
            'skipped': 0,
            'problems': 0,
        }

    async def publish(self, record: ChangeRecord):
        """
        Hand a record to all handlers

        Args:
            record: Record carrying an origin
        """
        if not record.is_finalized:
            raise ValueError(f"Record has no origin: {record}")

        self.stats['published'] += 1
        for registration in self.registry:
            if self.problems.contains(registration.name, record):
                self.stats['skipped'] += 1
                logger.debug(f"Skipping {registration.name} for {record}: on problem list")
                continue
            await self._attempt(registration, record, attempt=1)

    async def _attempt(self, registration: HandlerRegistration, record: ChangeRecord, attempt: int):
        try:
            await self._invoke(registration.handler, record)
        except Exception as e:
            self.stats['failed'] += 1
            self._on_failure(registration, record, attempt, e)
        else:
            self.stats['delivered'] += 1

    @staticmethod
    async def _invoke(handler: Any, record: ChangeRecord):
        handle = getattr(handler, 'handle', handler)
        if inspect.iscoroutinefunction(handle):
            await handle(record.path, record.kind, record.origin)
        else:
            await asyncio.to_thread(handle, record.path, record.kind, record.origin)

    def _on_failure(self, registration: HandlerRegistration, record: ChangeRecord,
                    attempt: int, error: Exception):
        policy = registration.retry_policy
        # Unknown exceptions count as transient
        transient = not isinstance(error, HandlerError) or error.transient

        if transient and attempt < policy.max_attempts:
            delay = policy.delay_before(attempt + 1)
            logger.warning(
                f"Handler {registration.name} failed on {record} "
                f"(attempt {attempt}/{policy.max_attempts}): {error}; retrying in {delay:g}s",
                extra=dict(record.log_context(), handler=registration.name, attempt=attempt),
            )
            self.stats['retried'] += 1
            task = asyncio.create_task(self._retry(registration, record, attempt + 1, delay))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
            return

        if not transient:
            reason = "fatal error"
        elif policy.retries_enabled:
            reason = f"gave up after {attempt} attempts"
        else:
            reason = "no retry policy"

        logger.error(
            f"Handler {registration.name} failed on {record} ({reason}): {error}",
            exc_info=(type(error), error, error.__traceback__),
            extra=dict(record.log_context(), handler=registration.name, attempt=attempt),
        )
        if self.problems.add(registration.name, record, str(error), attempt):
            self.stats['problems'] += 1

    async def _retry(self, registration: HandlerRegistration, record: ChangeRecord,
                     attempt: int, delay: float):
        await self._sleep(delay)
        await self._attempt(registration, record, attempt)

    @property
    def pending_retries(self) -> int:
        return len(self._pending)

    async def drain(self):
        """Wait until no retry is outstanding"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def cancel_pending(self):
        """Abandon outstanding retries"""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.copy()
        stats['pending_retries'] = self.pending_retries
        stats['handlers'] = self.registry.names()
        return stats
