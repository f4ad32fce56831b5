# fswatcher/handlers/__init__.py

"""
fswatcher Handlers
Side effects triggered by finalized change records
"""
import logging
from typing import Callable, Dict, List, Optional, Type

import httpx

from .base import EventHandler, AsyncEventHandler, ProcessedCache
from .log_changes import LogChangeHandler
from .images import ImageOptimizeHandler
from .json_forward import JsonForwardHandler
from .text import TextAugmentHandler
from .archive import ArchiveExtractHandler
from .replace_deleted import ReplaceDeletedImageHandler
from ..watcher.dispatch import HandlerRegistry, RetryPolicy
from ..watcher.errors import ConfigError

logger = logging.getLogger(__name__)

# Registration order follows this mapping when handlers.enabled is not reordered
HANDLER_CLASSES: Dict[str, Type[EventHandler]] = {
    'log': LogChangeHandler,
    'images': ImageOptimizeHandler,
    'json': JsonForwardHandler,
    'text': TextAugmentHandler,
    'archive': ArchiveExtractHandler,
    'replace': ReplaceDeletedImageHandler,
}


def build_handlers(config, mark_self_modified: Callable,
                   client: Optional[httpx.AsyncClient] = None) -> List[EventHandler]:
    """
    Instantiate the enabled handlers in configured order

    Args:
        config: fswatcher.utils.config.Config
        mark_self_modified: Ledger hook given to every handler
        client: Shared HTTP client for the network handlers; each creates
            its own if None

    Raises:
        ConfigError: unknown handler name
    """
    handlers = []
    for name in config.handlers.enabled:
        handler_class = HANDLER_CLASSES.get(name)
        if handler_class is None:
            raise ConfigError(f"Unknown handler: {name}")

        settings = getattr(config.handlers, name, None)
        kwargs = {}
        if client is not None and issubclass(handler_class, AsyncEventHandler):
            kwargs['client'] = client
        handlers.append(handler_class(mark_self_modified, settings, **kwargs))

    return handlers


def build_registry(config, handlers: List[EventHandler]) -> HandlerRegistry:
    """
    Register handlers, applying retry overrides from ``config.retry``

    Raises:
        ConfigError: invalid retry override
    """
    registry = HandlerRegistry()
    for handler in handlers:
        override = config.retry.get(handler.name)
        policy = None
        if override is not None:
            try:
                policy = RetryPolicy(max_attempts=override.max_attempts,
                                     backoff=tuple(override.backoff))
            except ValueError as e:
                raise ConfigError(f"Invalid retry policy for {handler.name}: {e}") from e
        registry.register(handler, policy)

    unknown = set(config.retry) - set(registry.names())
    for name in sorted(unknown):
        logger.warning(f"Retry policy configured for handler that is not enabled: {name}")

    return registry


async def close_handlers(handlers: List[EventHandler]):
    """Release network clients held by async handlers"""
    for handler in handlers:
        if isinstance(handler, AsyncEventHandler):
            await handler.aclose()


__all__ = [
    'EventHandler',
    'AsyncEventHandler',
    'ProcessedCache',
    'LogChangeHandler',
    'ImageOptimizeHandler',
    'JsonForwardHandler',
    'TextAugmentHandler',
    'ArchiveExtractHandler',
    'ReplaceDeletedImageHandler',
    'HANDLER_CLASSES',
    'build_handlers',
    'build_registry',
    'close_handlers',
]
