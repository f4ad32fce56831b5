"""
Shared test doubles
"""
import asyncio
import errno
import io
import os
import threading
from pathlib import Path
from typing import List, Optional, Tuple, Union

from PIL import Image

from fswatcher.watcher.errors import TransientHandlerError
from fswatcher.watcher.events import ChangeKind, Origin

BASE_MTIME_NS = 1_600_000_000 * 1_000_000_000


class FakeClock:
    """Monotonic clock that only moves when told to"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSleep:
    """Records requested delays and returns immediately"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float):
        self.delays.append(delay)


class GatedSleep(FakeSleep):
    """Records delays and waits until the test opens the gate"""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def __call__(self, delay: float):
        self.delays.append(delay)
        await self.gate.wait()


class RecordingHandler:
    """
    Sync handler that remembers every call and fails the first
    ``fail_times`` calls with ``error``
    """

    def __init__(self, name: str = "recorder", fail_times: int = 0,
                 error: Optional[Exception] = None, retry_policy=None,
                 journal: Optional[list] = None):
        self.name = name
        self.fail_times = fail_times
        self.error = error
        self.retry_policy = retry_policy
        self.journal = journal
        self.calls: List[Tuple[str, ChangeKind, Origin]] = []
        self.threads: List[str] = []

    def _record(self, path, kind, origin):
        self.calls.append((path, kind, origin))
        self.threads.append(threading.current_thread().name)
        if self.journal is not None:
            self.journal.append((self.name, path))
        if len(self.calls) <= self.fail_times:
            raise self.error or TransientHandlerError(f"{self.name} failed")

    def handle(self, path, kind, origin):
        self._record(path, kind, origin)


class AsyncRecordingHandler(RecordingHandler):

    async def handle(self, path, kind, origin):
        self._record(path, kind, origin)


def write_file(path: Union[str, Path], content: Union[str, bytes] = "",
               mtime_ns: Optional[int] = None) -> Path:
    """Create or overwrite a file and pin its modification time"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(content, bytes):
        path.write_bytes(content)
    else:
        path.write_text(content, encoding='utf-8')
    if mtime_ns is not None:
        set_mtime(path, mtime_ns)
    return path


def set_mtime(path: Union[str, Path], mtime_ns: int):
    os.utime(path, ns=(mtime_ns, mtime_ns))


def deny_listing(monkeypatch, *directories):
    """Make os.scandir fail with EACCES for the given directories"""
    denied = {str(d) for d in directories}
    real_scandir = os.scandir

    def scandir(path='.'):
        if os.fsdecode(path) in denied:
            raise PermissionError(errno.EACCES, "Permission denied", os.fsdecode(path))
        return real_scandir(path)

    monkeypatch.setattr(os, "scandir", scandir)
    return denied


def image_bytes(fmt: str = 'PNG', size=(32, 24), color=(200, 30, 30)) -> bytes:
    buffer = io.BytesIO()
    Image.new('RGB', size, color).save(buffer, format=fmt)
    return buffer.getvalue()
