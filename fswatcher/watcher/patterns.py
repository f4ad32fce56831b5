# fswatcher/watcher/patterns.py

"""
Name-based ignore rules applied while scanning watched roots
"""
import fnmatch
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Pattern

logger = logging.getLogger(__name__)


DEFAULT_IGNORE_PATTERNS = [
    '*.swp', '*.swo', '*~', '.#*',
    '.DS_Store', 'Thumbs.db', 'desktop.ini',
]

DEFAULT_IGNORE_DIRECTORIES = [
    '.git', '.svn', '.hg',
    '@eaDir', '.Trash-*',
]


@dataclass
class PatternRule:
    """Pattern matching rule"""
    pattern: str
    is_regex: bool = False
    case_sensitive: bool = False
    compiled_pattern: Optional[Pattern] = field(default=None, repr=False)

    def __post_init__(self):
        if self.is_regex:
            flags = 0 if self.case_sensitive else re.IGNORECASE
            try:
                self.compiled_pattern = re.compile(self.pattern, flags)
            except re.error as e:
                logger.error(f"Invalid regex pattern '{self.pattern}': {e}")
                # Fallback to glob match
                self.is_regex = False

    def matches(self, name: str) -> bool:
        """
        Check if a file or directory name matches the rule

        Args:
            name: Entry name (not a full path)

        Returns:
            True if name matches pattern
        """
        if self.is_regex:
            return bool(self.compiled_pattern.search(name))
        if self.case_sensitive:
            return fnmatch.fnmatchcase(name, self.pattern)
        return fnmatch.fnmatchcase(name.lower(), self.pattern.lower())


class PatternFilter:
    """
    Decide which files and directories a scan skips
    """

    def __init__(self, ignore_patterns: Optional[List[str]] = None,
                 ignore_directories: Optional[List[str]] = None):
        """
        Initialize pattern filter

        Args:
            ignore_patterns: Glob or regex patterns for file names
            ignore_directories: Glob or regex patterns for directory names
        """
        self.ignore_patterns = list(DEFAULT_IGNORE_PATTERNS if ignore_patterns is None
                                    else ignore_patterns)
        self.ignore_directories = list(DEFAULT_IGNORE_DIRECTORIES if ignore_directories is None
                                       else ignore_directories)

        self.file_rules = [self._compile(p) for p in self.ignore_patterns]
        self.directory_rules = [self._compile(p) for p in self.ignore_directories]

        # Names repeat a lot across ticks
        self.cache: Dict[tuple, bool] = {}
        self.cache_max_size = 10000

        logger.debug(
            f"PatternFilter initialized with {len(self.file_rules)} file rules "
            f"and {len(self.directory_rules)} directory rules"
        )

    def _compile(self, pattern: str) -> PatternRule:
        if self._is_regex_pattern(pattern):
            return PatternRule(pattern=pattern[3:], is_regex=True)
        return PatternRule(pattern=pattern)

    @staticmethod
    def _is_regex_pattern(pattern: str) -> bool:
        """Patterns written as ``re:<expr>`` are regular expressions"""
        return pattern.startswith('re:')

    def should_skip_file(self, name: str) -> bool:
        return self._check(('f', name), self.file_rules, name)

    def should_skip_directory(self, name: str) -> bool:
        return self._check(('d', name), self.directory_rules, name)

    def _check(self, key: tuple, rules: List[PatternRule], name: str) -> bool:
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        result = any(rule.matches(name) for rule in rules)
        if len(self.cache) >= self.cache_max_size:
            # Drop the oldest tenth
            for stale in list(self.cache.keys())[:self.cache_max_size // 10]:
                del self.cache[stale]
        self.cache[key] = result
        return result
