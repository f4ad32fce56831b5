# fswatcher/handlers/archive.py

"""
Extract newly created ZIP archives
"""
import logging
import shutil
import zipfile
from pathlib import Path
from typing import List

from .base import EventHandler
from ..watcher.errors import FatalHandlerError, TransientHandlerError
from ..watcher.events import ChangeKind, Origin
from ..utils.config import ArchiveHandlerConfig
from ..utils.file_utils import ARCHIVE_EXTENSIONS, ensure_parent_directory, is_within_directory

logger = logging.getLogger(__name__)


class ArchiveExtractHandler(EventHandler):
    """
    Unpacks created ``.zip`` files into ``extract_path``.

    Every member is checked before anything is written; an archive with a
    member pointing outside the target directory is refused as a whole.
    """

    name = "archive"
    extensions = ARCHIVE_EXTENSIONS
    kinds = {ChangeKind.CREATED}

    def __init__(self, mark_self_modified=None, settings: ArchiveHandlerConfig = None):
        super().__init__(mark_self_modified, settings or ArchiveHandlerConfig())
        self.stats['extracted_files'] = 0

    def process(self, path: str, kind: ChangeKind, origin: Origin):
        if not Path(path).exists():
            logger.warning(f"Archive vanished before extraction: {path}")
            return

        target = Path(self.settings.extract_path).expanduser().resolve()
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise TransientHandlerError(f"Cannot create extraction directory {target}: {e}") from e

        try:
            with zipfile.ZipFile(path) as archive:
                extracted = self._extract(archive, target)
        except zipfile.BadZipFile as e:
            raise FatalHandlerError(f"Failed to open ZIP file {path}: {e}") from e
        except OSError as e:
            raise TransientHandlerError(f"Failed to extract ZIP file {path}: {e}") from e

        self.stats['extracted_files'] += len(extracted)
        logger.info(f"ZIP file extracted: {path} -> {target} ({len(extracted)} files)")

    def _extract(self, archive: zipfile.ZipFile, target: Path) -> List[Path]:
        members = archive.infolist()
        for member in members:
            destination = target / member.filename
            if not is_within_directory(target, destination):
                raise FatalHandlerError(
                    f"Refusing to extract {archive.filename}: member escapes target: {member.filename}"
                )

        extracted = []
        for member in members:
            destination = target / member.filename
            if member.is_dir():
                destination.mkdir(parents=True, exist_ok=True)
                continue

            ensure_parent_directory(destination)
            self.mark_self_modified(destination)
            with archive.open(member) as source, open(destination, 'wb') as out:
                shutil.copyfileobj(source, out)
            extracted.append(destination)

        return extracted
