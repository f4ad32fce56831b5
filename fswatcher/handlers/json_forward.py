# fswatcher/handlers/json_forward.py

"""
Forward the content of JSON files to a remote endpoint
"""
import json
import logging
from pathlib import Path
from typing import Optional

import httpx

from .base import AsyncEventHandler
from ..watcher.errors import FatalHandlerError, TransientHandlerError
from ..watcher.events import ChangeKind, Origin
from ..utils.config import JsonHandlerConfig

logger = logging.getLogger(__name__)


class JsonForwardHandler(AsyncEventHandler):
    """POST parsed JSON documents to ``endpoint_url`` when they appear or change"""

    name = "json"
    extensions = {'.json'}
    kinds = {ChangeKind.CREATED, ChangeKind.MODIFIED}

    def __init__(self, mark_self_modified=None, settings: JsonHandlerConfig = None,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(mark_self_modified, settings or JsonHandlerConfig())
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.settings.timeout)

    async def process(self, path: str, kind: ChangeKind, origin: Origin):
        try:
            content = Path(path).read_text(encoding='utf-8')
        except FileNotFoundError:
            logger.warning(f"JSON file vanished before it could be sent: {path}")
            return
        except OSError as e:
            raise TransientHandlerError(f"Cannot read JSON file {path}: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise FatalHandlerError(f"Invalid JSON in {path}: {e}") from e

        url = self.settings.endpoint_url
        try:
            response = await self.client.post(url, json=data, timeout=self.settings.timeout)
        except httpx.HTTPError as e:
            raise TransientHandlerError(f"Failed to send JSON file {path} to {url}: {e}") from e

        if response.is_success:
            logger.info(f"JSON file sent successfully: {path} ({kind.value})")
            return

        message = (f"Failed to send JSON file: {path} ({kind.value}) - "
                   f"{response.status_code} - {response.text[:200]}")
        if response.status_code >= 500 or response.status_code == 429:
            raise TransientHandlerError(message)
        raise FatalHandlerError(message)
