# fswatcher/watcher/errors.py

"""
Error taxonomy for the watcher engine
"""
from enum import Enum
from typing import Optional


class WatcherError(Exception):
    """Base class for all watcher errors"""


class ConfigError(WatcherError):
    """Unrecoverable configuration problem detected at startup"""


class ScanErrorKind(Enum):
    PERMISSION_DENIED = "permission_denied"
    ROOT_MISSING = "root_missing"
    IO_ERROR = "io_error"
    LIMIT_EXCEEDED = "limit_exceeded"


class ScanError(WatcherError):
    """A watched root could not be scanned"""

    def __init__(self, kind: ScanErrorKind, root: str, message: Optional[str] = None):
        self.kind = kind
        self.root = root
        super().__init__(message or f"{kind.value}: {root}")


class HandlerError(WatcherError):
    """Base class for failures raised by event handlers"""

    transient = False


class TransientHandlerError(HandlerError):
    """Failure that may succeed on a later attempt (network, locked file)"""

    transient = True


class FatalHandlerError(HandlerError):
    """Failure that will not go away by retrying (corrupt input, bad archive)"""
