# fswatcher/watcher/scanner.py

"""
Recursive directory scanner producing path -> mtime snapshots
"""
import os
import stat
import errno
import logging
from pathlib import Path
from typing import Dict, Optional, Union

from .errors import ScanError, ScanErrorKind
from .patterns import PatternFilter
from ..utils.file_utils import normalize_path

logger = logging.getLogger(__name__)

# Absolute file path -> st_mtime_ns
Snapshot = Dict[str, int]

DEFAULT_MAX_FILES = 100_000
DEFAULT_MAX_DEPTH = 32


class DirectoryScanner:
    """
    Lists regular files below a root.

    Symbolic links are never followed and never reported, whether they point
    at files or directories. FIFOs, sockets and device nodes are skipped.
    """

    def __init__(self, max_files: int = DEFAULT_MAX_FILES,
                 max_depth: int = DEFAULT_MAX_DEPTH,
                 pattern_filter: Optional[PatternFilter] = None):
        """
        Initialize scanner

        Args:
            max_files: Scan fails with LIMIT_EXCEEDED beyond this many files
            max_depth: Directory levels below the root that are descended
            pattern_filter: Ignore rules, None scans everything
        """
        self.max_files = max_files
        self.max_depth = max_depth
        self.pattern_filter = pattern_filter

        self.stats = {
            'scans': 0,
            'files_seen': 0,
            'entries_skipped': 0,
            'errors': 0,
        }

    def scan(self, root: Union[str, Path], previous: Optional[Snapshot] = None) -> Snapshot:
        """
        Build a snapshot of every regular file reachable from root

        Args:
            root: Watched root directory
            previous: Last snapshot of root. Entries below a sub-directory
                that cannot be listed this time are carried over from it,
                so an unreadable directory never looks like a deletion.

        Returns:
            Mapping of absolute file path to modification time (ns)

        Raises:
            ScanError: if the root itself cannot be read or is too large
        """
        root = normalize_path(root)
        self._check_root(root)

        snapshot: Snapshot = {}
        root_depth = root.rstrip(os.sep).count(os.sep)

        unreadable = []

        def on_error(error: OSError):
            # The root was checked above
            self.stats['entries_skipped'] += 1
            if isinstance(error, FileNotFoundError) or error.filename is None:
                logger.debug(f"Directory vanished during scan: {error.filename}")
                return
            unreadable.append(os.fsdecode(error.filename))
            logger.debug(f"Skipping unreadable directory {error.filename}: {error.strerror}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=False):
            depth = dirpath.rstrip(os.sep).count(os.sep) - root_depth
            if depth >= self.max_depth:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(d for d in dirnames if not self._skip_directory(d))

            for filename in filenames:
                if self.pattern_filter and self.pattern_filter.should_skip_file(filename):
                    continue

                file_path = os.path.join(dirpath, filename)
                try:
                    # lstat so symlinks are seen as links, not their targets
                    stat_info = os.lstat(file_path)
                except OSError:
                    # Vanished or unreadable between listing and stat
                    self.stats['entries_skipped'] += 1
                    continue

                if not stat.S_ISREG(stat_info.st_mode):
                    continue

                snapshot[file_path] = stat_info.st_mtime_ns
                if len(snapshot) > self.max_files:
                    self.stats['errors'] += 1
                    raise ScanError(
                        ScanErrorKind.LIMIT_EXCEEDED, root,
                        f"More than {self.max_files} files under {root}"
                    )

        if unreadable and previous:
            self._carry_over(snapshot, previous, unreadable, root)
        self.stats['scans'] += 1
        self.stats['files_seen'] += len(snapshot)
        return snapshot

    def _carry_over(self, snapshot: Snapshot, previous: Snapshot, unreadable, root: str):
        prefixes = tuple(directory.rstrip(os.sep) + os.sep for directory in unreadable)
        carried = 0
        for path, mtime_ns in previous.items():
            if path not in snapshot and path.startswith(prefixes):
                snapshot[path] = mtime_ns
                carried += 1
        if carried:
            logger.warning(f"{carried} file(s) under unreadable directories of {root} kept from the last scan")
        if len(snapshot) > self.max_files:
            self.stats['errors'] += 1
            raise ScanError(
                ScanErrorKind.LIMIT_EXCEEDED, root,
                f"More than {self.max_files} files under {root}"
            )

    def _skip_directory(self, name: str) -> bool:
        return bool(self.pattern_filter and self.pattern_filter.should_skip_directory(name))

    def _check_root(self, root: str):
        """Raise ScanError if the root cannot be listed"""
        try:
            if not os.path.isdir(root):
                if os.path.lexists(root):
                    raise ScanError(ScanErrorKind.IO_ERROR, root, f"Not a directory: {root}")
                raise ScanError(ScanErrorKind.ROOT_MISSING, root, f"Root does not exist: {root}")
            with os.scandir(root):
                pass
        except ScanError:
            self.stats['errors'] += 1
            raise
        except PermissionError as e:
            self.stats['errors'] += 1
            raise ScanError(ScanErrorKind.PERMISSION_DENIED, root, str(e)) from e
        except FileNotFoundError as e:
            # Removed between the isdir check and scandir
            self.stats['errors'] += 1
            raise ScanError(ScanErrorKind.ROOT_MISSING, root, str(e)) from e
        except OSError as e:
            self.stats['errors'] += 1
            kind = ScanErrorKind.PERMISSION_DENIED if e.errno == errno.EACCES else ScanErrorKind.IO_ERROR
            raise ScanError(kind, root, str(e)) from e

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()


def ensure_root(root: Union[str, Path]) -> bool:
    """
    Create a watched root if it is missing

    Returns:
        True if the directory had to be created
    """
    path = Path(normalize_path(root))
    if path.is_dir():
        return False
    logger.warning(f"Directory {path} does not exist. Creating it.")
    path.mkdir(parents=True, exist_ok=True)
    return True
