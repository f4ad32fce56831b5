# fswatcher/watcher/events.py

from enum import Enum
from dataclasses import dataclass, replace
from typing import Optional


class ChangeKind(Enum):
    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


class Origin(Enum):
    EXTERNAL = "external"
    INTERNAL = "internal"


@dataclass(frozen=True)
class ChangeRecord:
    path: str
    kind: ChangeKind
    root: str = ""
    mtime_ns: int = 0
    origin: Optional[Origin] = None

    @property
    def is_finalized(self) -> bool:
        return self.origin is not None

    def with_origin(self, origin: Origin) -> "ChangeRecord":
        return replace(self, origin=origin)

    def log_context(self) -> dict:
        """Fields for ``logger.x(..., extra=...)``"""
        return {
            'path': self.path,
            'kind': self.kind.value,
            'root': self.root,
            'origin': self.origin.value if self.origin else None,
        }

    def __str__(self):
        if self.origin:
            return f"{self.kind.value} ({self.origin.value}): {self.path}"
        return f"{self.kind.value}: {self.path}"
