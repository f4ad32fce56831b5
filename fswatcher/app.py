# fswatcher/app.py

"""
fswatcher - polling file system change detector
"""
import sys
import signal
import asyncio
import argparse
import logging
from typing import List, Optional

import httpx

from .handlers import build_handlers, build_registry, close_handlers
from .utils.config import Config, load_config
from .utils.logger import setup_logging
from .watcher.errors import ConfigError
from .watcher.ledger import SelfModificationLedger
from .watcher.monitor import FileMonitor

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fswatcher",
        description="Watch directories by polling and react to file changes",
    )
    parser.add_argument("--config", "-c", help="Path to a YAML or JSON configuration file")
    parser.add_argument("--log-level", help="Override the configured log level")
    return parser.parse_args(argv)


def _install_signal_handlers(stop_event: asyncio.Event):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Windows event loops: Ctrl+C arrives as KeyboardInterrupt instead
            logger.debug(f"Signal handler for {sig.name} not supported on this platform")


async def run(config: Config, stop_event: Optional[asyncio.Event] = None):
    """
    Build the engine from configuration and run it until stop_event is set

    Args:
        config: Validated configuration
        stop_event: Set to request shutdown; SIGINT/SIGTERM set it when None
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    ledger = SelfModificationLedger(window=config.watcher.suppression_window)

    # Shared by the HTTP handlers; each request carries its handler's own timeout
    async with httpx.AsyncClient(follow_redirects=True) as client:
        handlers = build_handlers(config, ledger.mark_self_modified, client=client)
        try:
            registry = build_registry(config, handlers)
            monitor = FileMonitor.from_config(config, registry, ledger)

            try:
                await monitor.start()
                logger.info("fswatcher is running. Press Ctrl+C to stop.")
                await stop_event.wait()
                logger.info("Shutting down...")
            finally:
                await monitor.stop()
        finally:
            await close_handlers(handlers)

    return monitor


def main(argv: Optional[List[str]] = None) -> int:
    """Console entry point"""
    args = parse_args(argv)

    try:
        config = load_config(args.config)
        if args.log_level:
            config.log_level = args.log_level
        config.validate()
    except ConfigError as e:
        setup_logging()
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(
        log_level=config.log_level,
        log_file=config.log_file,
        log_format=config.log_format,
    )

    try:
        asyncio.run(run(config))
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted")

    return 0


if __name__ == "__main__":
    sys.exit(main())
