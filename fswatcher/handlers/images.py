# fswatcher/handlers/images.py

"""
Re-encode images in place with the configured compression settings
"""
import logging
from pathlib import Path

from PIL import UnidentifiedImageError

from .base import EventHandler, ProcessedCache
from ..watcher.dispatch import RetryPolicy
from ..watcher.errors import FatalHandlerError, TransientHandlerError
from ..watcher.events import ChangeKind, Origin
from ..utils.config import ImageHandlerConfig
from ..utils.file_utils import OPTIMIZABLE_IMAGE_EXTENSIONS, get_state_key
from ..utils.image_utils import encode_optimized

logger = logging.getLogger(__name__)


class ImageOptimizeHandler(EventHandler):
    """
    Optimizes created or modified images once per file state.

    The state key (path + mtime) of the original and of our own output are
    both remembered, so neither a repeated record nor the record caused by our
    write triggers a second re-encode.
    """

    name = "images"
    retry_policy = RetryPolicy(max_attempts=3, backoff=(5, 15, 30))
    extensions = OPTIMIZABLE_IMAGE_EXTENSIONS
    kinds = {ChangeKind.CREATED, ChangeKind.MODIFIED}
    external_only = True

    def __init__(self, mark_self_modified=None, settings: ImageHandlerConfig = None):
        super().__init__(mark_self_modified, settings or ImageHandlerConfig())
        self.optimized = ProcessedCache()
        self.stats['skipped_duplicates'] = 0

    def process(self, path: str, kind: ChangeKind, origin: Origin):
        file_path = Path(path)
        if not file_path.exists():
            logger.warning(f"File does not exist, cannot optimize: {path}")
            return

        state_key = get_state_key(path)
        if state_key in self.optimized:
            self.stats['skipped_duplicates'] += 1
            logger.info(f"Image already processed, skipping: {path}")
            return

        settings = self.settings
        try:
            data = encode_optimized(
                path,
                jpeg_quality=settings.jpeg_quality,
                png_compression=settings.png_compression,
                webp_quality=settings.webp_quality,
            )
        except UnidentifiedImageError as e:
            raise FatalHandlerError(f"Not a readable image: {path}") from e
        except OSError as e:
            raise TransientHandlerError(f"Failed to load image {path}: {e}") from e

        try:
            self.mark_self_modified(path)
            file_path.write_bytes(data)
        except OSError as e:
            raise TransientHandlerError(f"Failed to write optimized image {path}: {e}") from e

        self.optimized.add(state_key)
        self.optimized.add(get_state_key(path))
        logger.info(f"Successfully optimized image: {path} ({len(data)} bytes)")
