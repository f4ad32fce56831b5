# fswatcher/watcher/__init__.py

"""
fswatcher Watcher Module
Polling change detection and event dispatch
"""
from .events import ChangeKind, ChangeRecord, Origin
from .errors import (
    WatcherError, ConfigError, ScanError, ScanErrorKind,
    HandlerError, TransientHandlerError, FatalHandlerError,
)
from .patterns import PatternFilter, PatternRule
from .scanner import DirectoryScanner, Snapshot, ensure_root
from .detector import ChangeDetector, SnapshotStore, diff_snapshots
from .ledger import SelfModificationLedger
from .loopback import LoopbackFilter, LoopbackPolicy
from .dispatch import EventPublisher, HandlerRegistry, HandlerRegistration, ProblemList, RetryPolicy
from .monitor import FileMonitor

__all__ = [
    'ChangeKind',
    'ChangeRecord',
    'Origin',
    'WatcherError',
    'ConfigError',
    'ScanError',
    'ScanErrorKind',
    'HandlerError',
    'TransientHandlerError',
    'FatalHandlerError',
    'PatternFilter',
    'PatternRule',
    'DirectoryScanner',
    'Snapshot',
    'ensure_root',
    'ChangeDetector',
    'SnapshotStore',
    'diff_snapshots',
    'SelfModificationLedger',
    'LoopbackFilter',
    'LoopbackPolicy',
    'EventPublisher',
    'HandlerRegistry',
    'HandlerRegistration',
    'ProblemList',
    'RetryPolicy',
    'FileMonitor',
]
