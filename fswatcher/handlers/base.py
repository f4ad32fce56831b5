# fswatcher/handlers/base.py

"""
Base class for change handlers
"""
import logging
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Set, Union

from ..watcher.dispatch import RetryPolicy
from ..watcher.events import ChangeKind, Origin
from ..utils.file_utils import get_extension

logger = logging.getLogger(__name__)


def _no_mark(path: Union[str, Path]):
    pass


class ProcessedCache:
    """
    Bounded set of file-state keys a handler has already dealt with
    """

    def __init__(self, max_size: int = 10000):
        self.max_size = max_size
        self._keys: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def add(self, key: Optional[str]):
        if key is None:
            return
        with self._lock:
            self._keys[key] = None
            self._keys.move_to_end(key)
            while len(self._keys) > self.max_size:
                self._keys.popitem(last=False)

    def __contains__(self, key: Optional[str]) -> bool:
        if key is None:
            return False
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)


class EventHandler:
    """
    A side effect triggered by change records.

    Subclasses set ``extensions`` / ``kinds`` to narrow what they react to and
    implement ``process``. Handlers that write into watched directories call
    ``self.mark_self_modified(path)`` first.
    """

    name: Optional[str] = None
    retry_policy: Optional[RetryPolicy] = None

    # Empty set means "any"
    extensions: Set[str] = set()
    kinds: Set[ChangeKind] = set()
    external_only: bool = False

    def __init__(self, mark_self_modified: Optional[Callable[[Union[str, Path]], None]] = None,
                 settings: Optional[Any] = None):
        """
        Initialize handler

        Args:
            mark_self_modified: Ledger hook to call before writing a file
            settings: Handler-specific configuration section
        """
        self.mark_self_modified = mark_self_modified or _no_mark
        self.settings = settings
        if self.name is None:
            self.name = type(self).__name__

        self.stats = {
            'received': 0,
            'processed': 0,
            'ignored': 0,
        }

    def accepts(self, path: str, kind: ChangeKind, origin: Origin) -> bool:
        if self.external_only and origin is Origin.INTERNAL:
            return False
        if self.kinds and kind not in self.kinds:
            return False
        if self.extensions and get_extension(path) not in self.extensions:
            return False
        return True

    def handle(self, path: str, kind: ChangeKind, origin: Origin):
        """
        Entry point used by the event publisher

        Raises:
            HandlerError: TransientHandlerError to ask for a retry,
                FatalHandlerError otherwise
        """
        self.stats['received'] += 1
        if not self.accepts(path, kind, origin):
            self.stats['ignored'] += 1
            return
        self.process(path, kind, origin)
        self.stats['processed'] += 1

    def process(self, path: str, kind: ChangeKind, origin: Origin):
        raise NotImplementedError

    def get_stats(self) -> Dict[str, Any]:
        return self.stats.copy()


class AsyncEventHandler(EventHandler):
    """
    Handler whose work is mostly network I/O; runs on the event loop instead
    of a worker thread
    """

    async def handle(self, path: str, kind: ChangeKind, origin: Origin):
        self.stats['received'] += 1
        if not self.accepts(path, kind, origin):
            self.stats['ignored'] += 1
            return
        await self.process(path, kind, origin)
        self.stats['processed'] += 1

    # Set by subclasses; closed by aclose() only when the handler created it
    client = None
    _owns_client = False

    async def process(self, path: str, kind: ChangeKind, origin: Origin):
        raise NotImplementedError

    async def aclose(self):
        """Release the HTTP client unless it was passed in and is shared"""
        if self.client is not None and self._owns_client:
            await self.client.aclose()
