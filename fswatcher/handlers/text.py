# fswatcher/handlers/text.py

"""
Append remotely fetched text to text files
"""
import logging
from typing import Optional

import httpx

from .base import AsyncEventHandler, ProcessedCache
from ..watcher.errors import TransientHandlerError
from ..watcher.events import ChangeKind, Origin
from ..utils.config import TextHandlerConfig
from ..utils.file_utils import get_state_key

logger = logging.getLogger(__name__)


class TextAugmentHandler(AsyncEventHandler):
    """
    Appends one fetched sentence to every externally created or modified
    ``.txt`` file. The file is marked self-modified before the append, and the
    resulting state is remembered, so the handler's own write never triggers
    another append.
    """

    name = "text"
    extensions = {'.txt'}
    kinds = {ChangeKind.CREATED, ChangeKind.MODIFIED}
    external_only = True

    def __init__(self, mark_self_modified=None, settings: TextHandlerConfig = None,
                 client: Optional[httpx.AsyncClient] = None):
        super().__init__(mark_self_modified, settings or TextHandlerConfig())
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.settings.timeout)
        self.augmented = ProcessedCache()

    async def process(self, path: str, kind: ChangeKind, origin: Origin):
        state_key = get_state_key(path)
        if state_key is None:
            logger.warning(f"Text file vanished before it could be augmented: {path}")
            return
        if state_key in self.augmented:
            logger.debug(f"Text file already augmented, skipping: {path}")
            return

        text = await self._fetch_text()

        self.mark_self_modified(path)
        try:
            with open(path, 'a', encoding='utf-8') as f:
                f.write("\n\n" + text)
        except OSError as e:
            raise TransientHandlerError(f"Cannot append to {path}: {e}") from e

        self.augmented.add(state_key)
        self.augmented.add(get_state_key(path))
        logger.info(f"Text added to file: {path} ({kind.value})")

    async def _fetch_text(self) -> str:
        url = self.settings.api_url
        try:
            response = await self.client.get(url, timeout=self.settings.timeout)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransientHandlerError(f"Failed to fetch text from {url}: {e}") from e

        if isinstance(payload, list) and payload:
            return str(payload[0])
        if isinstance(payload, str):
            return payload
        return ""
