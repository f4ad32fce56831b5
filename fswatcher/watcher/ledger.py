# fswatcher/watcher/ledger.py

"""
Time-bounded record of files the watcher's own handlers wrote
"""
import logging
import threading
import time
from pathlib import Path
from typing import Any, Callable, Dict, Union

from ..utils.file_utils import normalize_path

logger = logging.getLogger(__name__)

DEFAULT_SUPPRESSION_WINDOW = 10.0  # seconds


class SelfModificationLedger:
    """
    Handlers mark a path right before writing it; the loopback filter asks
    whether a detected change falls inside the suppression window of such a
    mark. Handlers may run in worker threads, so every access holds a
    threading lock. Concurrent marks for one path resolve last-write-wins.
    """

    def __init__(self, window: float = DEFAULT_SUPPRESSION_WINDOW,
                 clock: Callable[[], float] = time.monotonic):
        """
        Initialize ledger

        Args:
            window: Suppression window in seconds
            clock: Monotonic time source, injectable for tests
        """
        if window <= 0:
            raise ValueError("Suppression window must be positive")

        self.window = window
        self.clock = clock
        self._entries: Dict[str, float] = {}
        self._lock = threading.Lock()

        self.stats = {
            'marks': 0,
            'hits': 0,
            'evicted': 0,
        }

    def mark_self_modified(self, path: Union[str, Path]):
        """
        Announce that we are about to modify path

        Args:
            path: File about to be written, created or removed
        """
        key = normalize_path(path)
        now = self.clock()
        with self._lock:
            self._entries[key] = now
            self.stats['marks'] += 1
        logger.debug(f"Marked as self-modified: {key}")

    def was_self_modified(self, path: Union[str, Path]) -> bool:
        """
        Check for a mark on path within the suppression window

        Stale entries are treated as absent and dropped on the way.
        """
        key = normalize_path(path)
        now = self.clock()
        with self._lock:
            touched = self._entries.get(key)
            if touched is None:
                return False
            if now - touched < self.window:
                self.stats['hits'] += 1
                return True
            del self._entries[key]
            self.stats['evicted'] += 1
            return False

    def evict_stale(self) -> int:
        """
        Drop every entry older than the window

        Returns:
            Number of entries removed
        """
        now = self.clock()
        with self._lock:
            stale = [key for key, touched in self._entries.items()
                     if now - touched >= self.window]
            for key in stale:
                del self._entries[key]
            self.stats['evicted'] += len(stale)

        if stale:
            logger.debug(f"Evicted {len(stale)} stale ledger entries")
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            stats = self.stats.copy()
            stats['entries'] = len(self._entries)
        stats['window'] = self.window
        return stats
