# fswatcher/handlers/log_changes.py

import logging

from .base import EventHandler
from ..watcher.events import ChangeKind, Origin

logger = logging.getLogger(__name__)


class LogChangeHandler(EventHandler):
    """Write one log line per external change"""

    name = "log"
    external_only = True

    def process(self, path: str, kind: ChangeKind, origin: Origin):
        logger.info(f"File {kind.value}: {path}")
