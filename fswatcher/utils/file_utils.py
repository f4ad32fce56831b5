"""
File utilities for fswatcher
"""
import os
import hashlib
from pathlib import Path
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)


# File type detection
IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.webp',
}

OPTIMIZABLE_IMAGE_EXTENSIONS = {
    '.jpg', '.jpeg', '.png', '.gif', '.webp',
}

ARCHIVE_EXTENSIONS = {
    '.zip',
}


def get_extension(file_path: Union[str, Path]) -> str:
    """Lower-cased extension including the dot, '' if none"""
    return Path(file_path).suffix.lower()


def normalize_path(path: Union[str, Path]) -> str:
    """
    Canonical absolute form used for snapshot keys and ledger entries

    Args:
        path: Path to normalize

    Returns:
        Absolute path string with symlinked parents resolved
    """
    return os.path.realpath(os.path.expanduser(str(path)))


def get_mtime_ns(file_path: Union[str, Path]) -> Optional[int]:
    """
    Get modification time in nanoseconds

    Returns:
        mtime in ns, or None if the file is gone
    """
    try:
        return os.stat(file_path).st_mtime_ns
    except OSError:
        return None


def get_state_key(file_path: Union[str, Path]) -> Optional[str]:
    """
    Identify one observed state of a file by path and modification time

    Args:
        file_path: Path to file

    Returns:
        md5 hex digest of ``path.mtime_ns``, or None if the file is gone
    """
    mtime_ns = get_mtime_ns(file_path)
    if mtime_ns is None:
        return None
    return hashlib.md5(f"{file_path}.{mtime_ns}".encode('utf-8')).hexdigest()


def ensure_parent_directory(file_path: Union[str, Path]) -> Path:
    """Create the parent directory of file_path if needed"""
    parent = Path(file_path).parent
    parent.mkdir(parents=True, exist_ok=True)
    return parent


def is_within_directory(directory: Union[str, Path], target: Union[str, Path]) -> bool:
    """True if target resolves to a location inside directory"""
    directory = os.path.realpath(str(directory))
    target = os.path.realpath(str(target))
    return os.path.commonpath([directory, target]) == directory
