# fswatcher/handlers/replace_deleted.py

"""
Put a replacement picture where an image file was deleted
"""
import asyncio
import logging
import random
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

import httpx

from .base import AsyncEventHandler
from ..watcher.errors import TransientHandlerError
from ..watcher.events import ChangeKind, Origin
from ..utils.config import ReplaceHandlerConfig
from ..utils.file_utils import IMAGE_EXTENSIONS, ensure_parent_directory
from ..utils.image_utils import create_placeholder_image, is_valid_image

logger = logging.getLogger(__name__)


def _is_http_url(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    parsed = urlparse(value)
    return parsed.scheme in ('http', 'https') and bool(parsed.netloc)


class ReplaceDeletedImageHandler(AsyncEventHandler):
    """
    Replaces externally deleted images with a random meme.

    The primary API is tried ``max_retries`` times, then every alternative API
    once. When none of them yields a usable image a locally rendered
    placeholder is written instead.
    """

    name = "replace"
    extensions = IMAGE_EXTENSIONS
    kinds = {ChangeKind.DELETED}
    external_only = True

    def __init__(self, mark_self_modified=None, settings: ReplaceHandlerConfig = None,
                 client: Optional[httpx.AsyncClient] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 choice: Callable = random.choice):
        """
        Initialize handler

        Args:
            mark_self_modified: Ledger hook
            settings: Handler configuration
            client: HTTP client, created from settings if None
            sleep: Coroutine used between primary API tries
            choice: Picks one meme from a list response
        """
        super().__init__(mark_self_modified, settings or ReplaceHandlerConfig())
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.settings.timeout,
                                                  follow_redirects=True)
        self._sleep = sleep
        self._choice = choice

        self.stats.update({
            'replaced': 0,
            'placeholders': 0,
        })

    async def process(self, path: str, kind: ChangeKind, origin: Origin):
        content = await self._fetch_meme()
        if content is not None:
            self._write(path, content)
            self.stats['replaced'] += 1
            logger.info(f"Deleted image file replaced with meme: {path}")
            return

        content = create_placeholder_image(path)
        self._write(path, content)
        self.stats['placeholders'] += 1
        logger.info(f"Created fallback image for: {path}")

    def _write(self, path: str, content: bytes):
        try:
            ensure_parent_directory(path)
            self.mark_self_modified(path)
            Path(path).write_bytes(content)
        except OSError as e:
            raise TransientHandlerError(f"Failed to write replacement image {path}: {e}") from e

    async def _fetch_meme(self) -> Optional[bytes]:
        settings = self.settings
        url = settings.api_url

        for attempt in range(1, settings.max_retries + 1):
            content = await self._try_api(url)
            if content is not None:
                return content
            logger.warning(f"Meme API attempt {attempt} failed: {url}")
            if attempt < settings.max_retries:
                await self._sleep(settings.retry_delay)

        for alternative in settings.alternative_urls:
            content = await self._try_api(alternative)
            if content is not None:
                logger.info(f"Meme fetched from alternative API: {alternative}")
                return content
            logger.warning(f"Alternative meme API failed: {alternative}")

        return None

    async def _try_api(self, api_url: str) -> Optional[bytes]:
        try:
            response = await self.client.get(api_url, timeout=self.settings.timeout)
            if not response.is_success:
                logger.debug(f"Meme API {api_url} returned {response.status_code}")
                return None
            meme_url = self._extract_url(response.json())
            if meme_url is None:
                return None

            image = await self.client.get(meme_url, timeout=self.settings.timeout)
            if not image.is_success or not is_valid_image(image.content):
                logger.debug(f"Meme image unusable: {meme_url}")
                return None
            return image.content

        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Meme API exception: {api_url} - {e}")
            return None

    def _extract_url(self, data: Any) -> Optional[str]:
        """Understands ``{"url": ...}`` and imgflip's ``{"data": {"memes": [...]}}``"""
        if not isinstance(data, dict):
            return None
        if 'url' in data:
            url = data['url']
        else:
            inner = data.get('data')
            memes = inner.get('memes') if isinstance(inner, dict) else None
            if not isinstance(memes, list) or not memes:
                return None
            meme = self._choice(memes)
            url = meme.get('url') if isinstance(meme, dict) else None
        return url if _is_http_url(url) else None
