# fswatcher/watcher/detector.py

"""
Snapshot store and snapshot diffing
"""
import logging
from typing import Dict, List, Optional

from .events import ChangeKind, ChangeRecord
from .scanner import DirectoryScanner, Snapshot, ensure_root
from ..utils.file_utils import normalize_path

logger = logging.getLogger(__name__)


class SnapshotStore:
    """
    Latest snapshot per watched root.

    Only the ChangeDetector writes here. A replacement swaps the whole mapping,
    so a reader never sees a half-updated snapshot.
    """

    def __init__(self):
        self._snapshots: Dict[str, Snapshot] = {}

    def get(self, root: str) -> Snapshot:
        return self._snapshots.get(root, {})

    def replace(self, root: str, snapshot: Snapshot):
        self._snapshots[root] = dict(snapshot)

    def has(self, root: str) -> bool:
        return root in self._snapshots

    def roots(self) -> List[str]:
        return list(self._snapshots)


def diff_snapshots(previous: Snapshot, current: Snapshot, root: str = "") -> List[ChangeRecord]:
    """
    Compare two snapshots of the same root

    Args:
        previous: Snapshot from the last tick
        current: Snapshot just scanned
        root: Root the snapshots belong to (copied onto records)

    Returns:
        One record per changed path, sorted by path
    """
    records = []

    for path, mtime_ns in current.items():
        old_mtime = previous.get(path)
        if old_mtime is None:
            records.append(ChangeRecord(path, ChangeKind.CREATED, root, mtime_ns))
        elif mtime_ns > old_mtime:
            records.append(ChangeRecord(path, ChangeKind.MODIFIED, root, mtime_ns))

    for path, mtime_ns in previous.items():
        if path not in current:
            records.append(ChangeRecord(path, ChangeKind.DELETED, root, mtime_ns))

    records.sort(key=lambda r: r.path)
    return records


class ChangeDetector:
    """
    Scans roots and turns snapshot differences into change records
    """

    def __init__(self, scanner: DirectoryScanner, store: Optional[SnapshotStore] = None):
        self.scanner = scanner
        self.store = store or SnapshotStore()

        self.stats = {
            'created': 0,
            'modified': 0,
            'deleted': 0,
        }

    def baseline(self, root: str) -> int:
        """
        Record the starting state of a root without emitting records.
        A missing root is created and baselined empty.

        Returns:
            Number of files in the baseline
        """
        root = normalize_path(root)
        ensure_root(root)
        snapshot = self.scanner.scan(root)
        self.store.replace(root, snapshot)
        logger.info(f"Baseline for {root}: {len(snapshot)} files")
        return len(snapshot)

    def detect(self, root: str) -> List[ChangeRecord]:
        """
        Scan root, diff against the stored snapshot and store the new one

        Raises:
            ScanError: the stored snapshot is left untouched
        """
        root = normalize_path(root)
        previous = self.store.get(root)
        current = self.scanner.scan(root, previous)

        records = diff_snapshots(previous, current, root)
        # Stored before anything downstream can fail
        self.store.replace(root, current)

        for record in records:
            self.stats[record.kind.value] += 1
        if records:
            logger.debug(f"{len(records)} change(s) detected under {root}")
        return records

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
