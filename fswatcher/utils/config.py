# fswatcher/utils/config.py

"""
Configuration management for fswatcher
"""
import os
import json
import yaml
from pathlib import Path
from typing import Dict, Any, List, Optional, Union, get_args, get_origin, get_type_hints
from dataclasses import dataclass, field, asdict, fields, is_dataclass
import logging

from ..watcher.errors import ConfigError

logger = logging.getLogger(__name__)


DEFAULT_HANDLERS = ["log", "images", "json", "text", "archive", "replace"]


@dataclass
class WatcherConfig:
    """Polling engine configuration"""
    roots: List[str] = field(default_factory=list)
    tick_interval: float = 1.0  # seconds
    suppression_window: float = 10.0  # seconds
    max_files: int = 100_000
    max_depth: int = 32
    loopback_policy: str = "tag"  # tag or discard
    ignore_patterns: List[str] = field(default_factory=lambda: [
        "*.swp", "*.swo", "*~", ".#*",
        ".DS_Store", "Thumbs.db", "desktop.ini",
    ])
    ignore_directories: List[str] = field(default_factory=lambda: [
        ".git", ".svn", ".hg", "@eaDir", ".Trash-*",
    ])


@dataclass
class RetryConfig:
    """Retry policy override for one handler"""
    max_attempts: int = 1
    backoff: List[float] = field(default_factory=list)  # seconds


@dataclass
class ImageHandlerConfig:
    jpeg_quality: int = 80
    png_compression: int = 9  # 0-9
    webp_quality: int = 80


@dataclass
class JsonHandlerConfig:
    endpoint_url: str = "https://fswatcher.requestcatcher.com/"
    timeout: float = 10.0


@dataclass
class TextHandlerConfig:
    api_url: str = "https://baconipsum.com/api/?type=all-meat&sentences=1"
    timeout: float = 10.0


@dataclass
class ArchiveHandlerConfig:
    extract_path: str = "./storage/extracted"


@dataclass
class ReplaceHandlerConfig:
    api_url: str = "https://meme-api.com/gimme"
    alternative_urls: List[str] = field(default_factory=lambda: [
        "https://meme-api.herokuapp.com/gimme",
        "https://api.imgflip.com/get_memes",
    ])
    max_retries: int = 3
    retry_delay: float = 2.0  # seconds
    timeout: float = 10.0


@dataclass
class HandlersConfig:
    """Which handlers run, in registration order, and their settings"""
    enabled: List[str] = field(default_factory=lambda: list(DEFAULT_HANDLERS))
    images: ImageHandlerConfig = field(default_factory=ImageHandlerConfig)
    json: JsonHandlerConfig = field(default_factory=JsonHandlerConfig)
    text: TextHandlerConfig = field(default_factory=TextHandlerConfig)
    archive: ArchiveHandlerConfig = field(default_factory=ArchiveHandlerConfig)
    replace: ReplaceHandlerConfig = field(default_factory=ReplaceHandlerConfig)


@dataclass
class Config:
    """Main configuration class"""
    watcher: WatcherConfig = field(default_factory=WatcherConfig)
    handlers: HandlersConfig = field(default_factory=HandlersConfig)
    # handler name -> retry policy override
    retry: Dict[str, RetryConfig] = field(default_factory=dict)

    log_level: str = "INFO"
    log_file: Optional[str] = None
    log_format: str = "text"  # text, json, or color

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary"""
        return asdict(self)

    def to_yaml(self) -> str:
        """Convert config to YAML string"""
        return yaml.dump(self.to_dict(), default_flow_style=False)

    def save(self, path: Union[str, Path]):
        """Save config to file"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if path.suffix.lower() in ['.yaml', '.yml']:
            with open(path, 'w', encoding='utf-8') as f:
                yaml.dump(self.to_dict(), f, default_flow_style=False)
        else:  # default to JSON
            with open(path, 'w', encoding='utf-8') as f:
                json.dump(self.to_dict(), f, indent=2, default=str)

        logger.info(f"Configuration saved to {path}")

    def update_from_dict(self, data: Dict[str, Any]):
        """Update config from a nested dictionary"""
        for key, value in (data or {}).items():
            if key == 'retry':
                if not isinstance(value or {}, dict):
                    raise ConfigError("Section 'retry' must be a mapping")
                self.retry = {
                    name: _build(RetryConfig, policy or {}, f"retry.{name}")
                    for name, policy in (value or {}).items()
                }
            elif key in ('watcher', 'handlers'):
                _merge(getattr(self, key), value or {}, key)
            elif key in _field_names(self):
                setattr(self, key, value)
            else:
                logger.warning(f"Ignoring unknown configuration key: {key}")

    def apply_env(self, environ: Optional[Dict[str, str]] = None):
        """Apply FSWATCHER_* environment overrides"""
        environ = os.environ if environ is None else environ

        roots = environ.get('FSWATCHER_ROOTS')
        if roots:
            self.watcher.roots = [r for r in roots.split(os.pathsep) if r]
        log_level = environ.get('FSWATCHER_LOG_LEVEL')
        if log_level:
            self.log_level = log_level

    def validate(self):
        """
        Check settings that would make the watcher unusable

        Raises:
            ConfigError: on the first problem found
        """
        _check_types(self, "")

        watcher = self.watcher
        if not watcher.roots:
            raise ConfigError("No watched directories configured (watcher.roots)")
        for root in watcher.roots:
            path = Path(root).expanduser()
            if path.exists() and not path.is_dir():
                raise ConfigError(f"Watched path is not a directory: {root}")
        if watcher.tick_interval <= 0:
            raise ConfigError("watcher.tick_interval must be positive")
        if watcher.suppression_window <= 0:
            raise ConfigError("watcher.suppression_window must be positive")
        if watcher.max_files < 1 or watcher.max_depth < 0:
            raise ConfigError("watcher.max_files must be >= 1 and watcher.max_depth >= 0")
        if watcher.loopback_policy not in ('tag', 'discard'):
            raise ConfigError(f"Unknown loopback policy: {watcher.loopback_policy}")

        for name, policy in self.retry.items():
            if policy.max_attempts < 1:
                raise ConfigError(f"retry.{name}.max_attempts must be at least 1")
            if any(delay < 0 for delay in policy.backoff):
                raise ConfigError(f"retry.{name}.backoff must not contain negative delays")

        if self.log_format not in ('text', 'json', 'color'):
            raise ConfigError(f"Unknown log format: {self.log_format}")


def _field_names(obj) -> List[str]:
    return [f.name for f in fields(obj)]


def _matches(value, hint) -> bool:
    """isinstance for the annotations used by the config dataclasses"""
    if hint is float:
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    if hint is int:
        return isinstance(value, int) and not isinstance(value, bool)
    origin = get_origin(hint)
    if origin is Union:
        return any(_matches(value, arg) for arg in get_args(hint))
    if origin is list:
        (item,) = get_args(hint)
        return isinstance(value, list) and all(_matches(v, item) for v in value)
    if origin is dict:
        key_hint, value_hint = get_args(hint)
        return isinstance(value, dict) and all(
            _matches(k, key_hint) and _matches(v, value_hint) for k, v in value.items()
        )
    return isinstance(value, hint)


def _type_name(hint) -> str:
    if isinstance(hint, type):
        return hint.__name__
    return str(hint).replace('typing.', '')


def _check_types(section, prefix: str):
    """Raise ConfigError for values whose type does not match the dataclass field"""
    hints = get_type_hints(type(section))
    for f in fields(section):
        name = f"{prefix}{f.name}"
        value = getattr(section, f.name)
        hint = hints[f.name]
        if not _matches(value, hint):
            raise ConfigError(
                f"{name} must be of type {_type_name(hint)}, got {type(value).__name__}: {value!r}"
            )
        if is_dataclass(hint):
            _check_types(value, f"{name}.")
        elif get_origin(hint) is dict:
            for key, item in value.items():
                if is_dataclass(item):
                    _check_types(item, f"{name}.{key}.")


def _merge(target, data: Dict[str, Any], prefix: str):
    """Recursively copy known keys from data onto a config dataclass"""
    if not isinstance(data, dict):
        raise ConfigError(f"Section '{prefix}' must be a mapping")
    for key, value in data.items():
        if key not in _field_names(target):
            logger.warning(f"Ignoring unknown configuration key: {prefix}.{key}")
            continue
        current = getattr(target, key)
        if is_dataclass(current):
            _merge(current, value or {}, f"{prefix}.{key}")
        else:
            setattr(target, key, value)


def _build(cls, data: Dict[str, Any], prefix: str):
    instance = cls()
    _merge(instance, data, prefix)
    return instance


def _read_file(path: Path) -> Dict[str, Any]:
    with open(path, 'r', encoding='utf-8') as f:
        if path.suffix.lower() in ['.yaml', '.yml']:
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")
    return data


def get_default_config_paths() -> List[Path]:
    return [
        Path("config.yaml"),
        Path("config.yml"),
        Path("config.json"),
        Path.home() / ".config" / "fswatcher" / "config.yaml",
    ]


def load_config(path: Union[str, Path, None] = None,
                environ: Optional[Dict[str, str]] = None) -> Config:
    """
    Load configuration from file (YAML or JSON) plus environment overrides

    Args:
        path: Explicit config file; must exist if given
        environ: Environment mapping, os.environ if None

    Raises:
        ConfigError: explicit file missing or unreadable
    """
    config = Config()

    if path is not None:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        candidates = [config_path]
    else:
        candidates = [p for p in get_default_config_paths() if p.exists()][:1]

    for config_path in candidates:
        logger.info(f"Loading configuration from {config_path}")
        try:
            config.update_from_dict(_read_file(config_path))
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigError(f"Error loading configuration from {config_path}: {e}") from e

    if not candidates:
        logger.info("No configuration file found, using defaults")

    config.apply_env(environ)
    return config
