# fswatcher/utils/__init__.py

"""
fswatcher Utilities
"""
from .config import Config, load_config
from .logger import setup_logging
from .file_utils import (
    get_extension, normalize_path, get_mtime_ns, get_state_key,
    ensure_parent_directory, is_within_directory,
)

__all__ = [
    'Config', 'load_config',
    'setup_logging',
    'get_extension', 'normalize_path', 'get_mtime_ns', 'get_state_key',
    'ensure_parent_directory', 'is_within_directory',
]
