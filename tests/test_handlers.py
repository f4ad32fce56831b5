"""Tests for the handler collaborators"""
import io
import json
import logging
import os
import zipfile

import httpx
import pytest
from PIL import Image

from fswatcher.handlers import (
    ArchiveExtractHandler, ImageOptimizeHandler, JsonForwardHandler, LogChangeHandler,
    ProcessedCache, ReplaceDeletedImageHandler, TextAugmentHandler,
)
from fswatcher.utils.config import (
    ArchiveHandlerConfig, JsonHandlerConfig, ReplaceHandlerConfig, TextHandlerConfig,
)
from fswatcher.watcher.errors import FatalHandlerError, TransientHandlerError
from fswatcher.watcher.events import ChangeKind, Origin
from tests.helpers import BASE_MTIME_NS, FakeSleep, image_bytes, write_file

CREATED = ChangeKind.CREATED
MODIFIED = ChangeKind.MODIFIED
DELETED = ChangeKind.DELETED
EXTERNAL = Origin.EXTERNAL
INTERNAL = Origin.INTERNAL


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestProcessedCache:

    def test_bounded(self):
        cache = ProcessedCache(max_size=2)
        for key in ("a", "b", "c"):
            cache.add(key)
        assert len(cache) == 2
        assert "a" not in cache
        assert "c" in cache

    def test_none_is_never_contained(self):
        cache = ProcessedCache()
        cache.add(None)
        assert None not in cache
        assert len(cache) == 0


class TestLogChangeHandler:

    def test_logs_external_changes_only(self, caplog):
        handler = LogChangeHandler()
        with caplog.at_level(logging.INFO, logger="fswatcher.handlers.log_changes"):
            handler.handle("/r/a.txt", CREATED, EXTERNAL)
            handler.handle("/r/a.txt", MODIFIED, INTERNAL)

        assert [r.getMessage() for r in caplog.records] == ["File created: /r/a.txt"]
        assert handler.get_stats() == {'received': 2, 'processed': 1, 'ignored': 1}


class TestImageOptimizeHandler:

    @pytest.fixture
    def handler(self, ledger):
        return ImageOptimizeHandler(ledger.mark_self_modified)

    def test_optimizes_once_per_state(self, handler, ledger, root):
        path = write_file(root / "photo.png", image_bytes('PNG', size=(64, 64)), BASE_MTIME_NS)

        handler.handle(str(path), CREATED, EXTERNAL)
        after_first = os.stat(path).st_mtime_ns

        assert after_first != BASE_MTIME_NS
        assert ledger.was_self_modified(path)
        with Image.open(path) as img:
            assert img.size == (64, 64)

        # Same delivery again, then the record caused by our own write
        handler.handle(str(path), CREATED, EXTERNAL)
        handler.handle(str(path), MODIFIED, EXTERNAL)

        assert os.stat(path).st_mtime_ns == after_first
        assert handler.stats['skipped_duplicates'] == 2

    def test_jpeg_with_alpha_source_converted(self, handler, root):
        buffer = io.BytesIO()
        Image.new('RGBA', (10, 10), (0, 0, 255, 128)).save(buffer, format='PNG')
        # PNG bytes under a .jpg name: re-encoded as JPEG
        path = write_file(root / "odd.jpg", buffer.getvalue(), BASE_MTIME_NS)

        handler.handle(str(path), CREATED, EXTERNAL)

        with Image.open(path) as img:
            assert img.format == 'JPEG'

    def test_ignores_internal_deleted_and_other_extensions(self, handler, root):
        path = write_file(root / "photo.png", image_bytes(), BASE_MTIME_NS)

        handler.handle(str(path), MODIFIED, INTERNAL)
        handler.handle(str(path), DELETED, EXTERNAL)
        handler.handle(str(root / "notes.txt"), CREATED, EXTERNAL)

        assert os.stat(path).st_mtime_ns == BASE_MTIME_NS
        assert handler.stats['ignored'] == 3

    def test_unreadable_image_is_fatal(self, handler, root):
        path = write_file(root / "broken.png", "not an image")
        with pytest.raises(FatalHandlerError):
            handler.handle(str(path), CREATED, EXTERNAL)

    def test_vanished_file_is_noop(self, handler, root):
        handler.handle(str(root / "gone.png"), CREATED, EXTERNAL)
        assert handler.stats['processed'] == 1

    def test_declares_retry_policy(self):
        assert ImageOptimizeHandler.retry_policy.max_attempts == 3
        assert ImageOptimizeHandler.retry_policy.backoff == (5.0, 15.0, 30.0)


class TestJsonForwardHandler:

    @pytest.mark.asyncio
    async def test_posts_parsed_content(self, root):
        requests = []

        def respond(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, text="ok")

        settings = JsonHandlerConfig(endpoint_url="https://collector.test/hook")
        handler = JsonForwardHandler(settings=settings, client=mock_client(respond))
        path = write_file(root / "data.json", json.dumps({"a": 1, "b": [1, 2]}))

        await handler.handle(str(path), CREATED, EXTERNAL)
        await handler.aclose()

        (request,) = requests
        assert request.method == "POST"
        assert str(request.url) == "https://collector.test/hook"
        assert json.loads(request.content) == {"a": 1, "b": [1, 2]}

    @pytest.mark.asyncio
    async def test_deleted_and_other_extensions_ignored(self, root):
        def respond(request):
            raise AssertionError("no request expected")

        handler = JsonForwardHandler(client=mock_client(respond))
        await handler.handle(str(root / "data.json"), DELETED, EXTERNAL)
        await handler.handle(str(root / "data.txt"), CREATED, EXTERNAL)
        assert handler.stats['ignored'] == 2

    @pytest.mark.asyncio
    async def test_invalid_json_is_fatal(self, root):
        handler = JsonForwardHandler(client=mock_client(lambda r: httpx.Response(200)))
        path = write_file(root / "bad.json", "{not json")

        with pytest.raises(FatalHandlerError):
            await handler.handle(str(path), MODIFIED, EXTERNAL)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, error", [
        (503, TransientHandlerError),
        (429, TransientHandlerError),
        (400, FatalHandlerError),
    ])
    async def test_error_status(self, root, status, error):
        handler = JsonForwardHandler(client=mock_client(lambda r: httpx.Response(status)))
        path = write_file(root / "data.json", "{}")

        with pytest.raises(error):
            await handler.handle(str(path), CREATED, EXTERNAL)

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self, root):
        def respond(request):
            raise httpx.ConnectError("connection refused", request=request)

        handler = JsonForwardHandler(client=mock_client(respond))
        path = write_file(root / "data.json", "[]")

        with pytest.raises(TransientHandlerError):
            await handler.handle(str(path), CREATED, EXTERNAL)


class TestTextAugmentHandler:

    @pytest.fixture
    def requests(self):
        return []

    @pytest.fixture
    def handler(self, ledger, requests):
        def respond(request):
            requests.append(request)
            return httpx.Response(200, json=["Bacon ipsum dolor amet."])

        settings = TextHandlerConfig(api_url="https://text.test/api")
        return TextAugmentHandler(ledger.mark_self_modified, settings, client=mock_client(respond))

    @pytest.mark.asyncio
    async def test_appends_fetched_text(self, handler, ledger, root):
        path = write_file(root / "a.txt", "hello", BASE_MTIME_NS)

        await handler.handle(str(path), CREATED, EXTERNAL)

        assert path.read_text(encoding='utf-8') == "hello\n\nBacon ipsum dolor amet."
        assert ledger.was_self_modified(path)

    @pytest.mark.asyncio
    async def test_own_write_does_not_append_again(self, handler, requests, root):
        path = write_file(root / "a.txt", "hello", BASE_MTIME_NS)

        await handler.handle(str(path), CREATED, EXTERNAL)
        await handler.handle(str(path), MODIFIED, EXTERNAL)
        await handler.handle(str(path), MODIFIED, INTERNAL)

        assert len(requests) == 1
        assert path.read_text(encoding='utf-8').count("Bacon") == 1

    @pytest.mark.asyncio
    async def test_fetch_failure_is_transient_and_file_untouched(self, ledger, root):
        handler = TextAugmentHandler(ledger.mark_self_modified,
                                     client=mock_client(lambda r: httpx.Response(502)))
        path = write_file(root / "a.txt", "hello", BASE_MTIME_NS)

        with pytest.raises(TransientHandlerError):
            await handler.handle(str(path), CREATED, EXTERNAL)

        assert path.read_text(encoding='utf-8') == "hello"
        assert not ledger.was_self_modified(path)


class TestArchiveExtractHandler:

    @staticmethod
    def make_zip(path, members):
        with zipfile.ZipFile(path, 'w') as archive:
            for name, content in members.items():
                archive.writestr(name, content)
        return path

    def test_extracts_members(self, ledger, root, tmp_path):
        target = tmp_path / "extracted"
        handler = ArchiveExtractHandler(ledger.mark_self_modified,
                                        ArchiveHandlerConfig(extract_path=str(target)))
        archive = self.make_zip(root / "bundle.zip", {"a.txt": "A", "docs/b.txt": "B"})

        handler.handle(str(archive), CREATED, EXTERNAL)

        assert (target / "a.txt").read_text() == "A"
        assert (target / "docs" / "b.txt").read_text() == "B"
        assert ledger.was_self_modified(target / "docs" / "b.txt")
        assert handler.stats['extracted_files'] == 2

    def test_only_created_archives(self, root, tmp_path):
        target = tmp_path / "extracted"
        handler = ArchiveExtractHandler(settings=ArchiveHandlerConfig(extract_path=str(target)))
        archive = self.make_zip(root / "bundle.zip", {"a.txt": "A"})

        handler.handle(str(archive), MODIFIED, EXTERNAL)

        assert not target.exists()

    def test_refuses_path_traversal(self, root, tmp_path):
        target = tmp_path / "extracted"
        handler = ArchiveExtractHandler(settings=ArchiveHandlerConfig(extract_path=str(target)))
        archive = self.make_zip(root / "evil.zip", {"ok.txt": "fine", "../escaped.txt": "bad"})

        with pytest.raises(FatalHandlerError):
            handler.handle(str(archive), CREATED, EXTERNAL)

        assert not (tmp_path / "escaped.txt").exists()
        assert not (target / "ok.txt").exists()

    def test_corrupt_archive_is_fatal(self, root, tmp_path):
        handler = ArchiveExtractHandler(
            settings=ArchiveHandlerConfig(extract_path=str(tmp_path / "extracted")))
        archive = write_file(root / "broken.zip", "definitely not a zip")

        with pytest.raises(FatalHandlerError):
            handler.handle(str(archive), CREATED, EXTERNAL)


class TestReplaceDeletedImageHandler:

    PRIMARY = "https://memes.test/gimme"
    ALTERNATIVE = "https://alt.test/gimme"
    IMGFLIP = "https://imgflip.test/get_memes"

    def make_handler(self, ledger, routes, sleep=None):
        def respond(request):
            url = str(request.url)
            if url not in routes:
                return httpx.Response(404)
            return routes[url]

        settings = ReplaceHandlerConfig(
            api_url=self.PRIMARY,
            alternative_urls=[self.ALTERNATIVE, self.IMGFLIP],
            max_retries=3,
            retry_delay=2.0,
        )
        return ReplaceDeletedImageHandler(
            ledger.mark_self_modified, settings,
            client=mock_client(respond),
            sleep=sleep or FakeSleep(),
            choice=lambda memes: memes[-1],
        )

    @pytest.mark.asyncio
    async def test_replaces_with_meme(self, ledger, root):
        meme = image_bytes('PNG', color=(1, 2, 3))
        handler = self.make_handler(ledger, {
            self.PRIMARY: httpx.Response(200, json={"url": "https://img.test/meme.png"}),
            "https://img.test/meme.png": httpx.Response(200, content=meme),
        })
        path = root / "photo.png"

        await handler.handle(str(path), DELETED, EXTERNAL)

        assert path.read_bytes() == meme
        assert ledger.was_self_modified(path)
        assert handler.stats['replaced'] == 1

    @pytest.mark.asyncio
    async def test_primary_retried_then_imgflip_shape(self, ledger, root):
        sleep = FakeSleep()
        meme = image_bytes('JPEG')
        handler = self.make_handler(ledger, {
            self.PRIMARY: httpx.Response(500),
            self.ALTERNATIVE: httpx.Response(200, json={"nothing": "useful"}),
            self.IMGFLIP: httpx.Response(200, json={"data": {"memes": [
                {"url": "https://img.test/first.jpg"},
                {"url": "https://img.test/last.jpg"},
            ]}}),
            "https://img.test/last.jpg": httpx.Response(200, content=meme),
        }, sleep=sleep)
        path = root / "sub" / "photo.jpg"

        await handler.handle(str(path), DELETED, EXTERNAL)

        assert sleep.delays == [2.0, 2.0]
        assert path.read_bytes() == meme

    @pytest.mark.asyncio
    async def test_placeholder_when_nothing_works(self, ledger, root):
        handler = self.make_handler(ledger, {
            self.PRIMARY: httpx.Response(200, json={"url": "https://img.test/html"}),
            "https://img.test/html": httpx.Response(200, text="<html>not an image</html>"),
        })
        path = root / "photo.jpg"

        await handler.handle(str(path), DELETED, EXTERNAL)

        with Image.open(path) as img:
            assert img.format == 'JPEG'
            assert img.size == (600, 400)
        assert ledger.was_self_modified(path)
        assert handler.stats['placeholders'] == 1

    @pytest.mark.asyncio
    async def test_placeholder_keeps_original_format(self, ledger, root):
        handler = self.make_handler(ledger, {})
        path = root / "scan.bmp"

        await handler.handle(str(path), DELETED, EXTERNAL)

        with Image.open(path) as img:
            assert img.format == 'BMP'

    @pytest.mark.asyncio
    async def test_only_external_image_deletions(self, ledger, root):
        handler = self.make_handler(ledger, {})

        await handler.handle(str(root / "photo.png"), DELETED, INTERNAL)
        await handler.handle(str(root / "photo.png"), CREATED, EXTERNAL)
        await handler.handle(str(root / "notes.txt"), DELETED, EXTERNAL)

        assert list(root.iterdir()) == []
        assert handler.stats['ignored'] == 3


class TestSharedClient:
    """One client serves every network handler, each with its own timeout"""

    @pytest.mark.asyncio
    async def test_each_handler_applies_its_own_timeout(self, ledger, root):
        timeouts = {}
        meme = image_bytes('PNG')

        def respond(request):
            timeouts[request.url.host] = request.extensions['timeout']['read']
            if request.url.host == "text.test":
                return httpx.Response(200, json=["Short loin."])
            if request.url.host == "memes.test":
                return httpx.Response(200, json={"url": "https://img.test/m.png"})
            if request.url.host == "img.test":
                return httpx.Response(200, content=meme)
            return httpx.Response(200, text="ok")

        client = httpx.AsyncClient(transport=httpx.MockTransport(respond), timeout=3.0)
        json_handler = JsonForwardHandler(
            ledger.mark_self_modified,
            JsonHandlerConfig(endpoint_url="https://collector.test/hook", timeout=7.0),
            client=client,
        )
        text = TextAugmentHandler(
            ledger.mark_self_modified,
            TextHandlerConfig(api_url="https://text.test/api", timeout=30.0),
            client=client,
        )
        replace = ReplaceDeletedImageHandler(
            ledger.mark_self_modified,
            ReplaceHandlerConfig(api_url="https://memes.test/gimme", alternative_urls=[], timeout=60.0),
            client=client, sleep=FakeSleep(),
        )

        await json_handler.handle(str(write_file(root / "d.json", "{}")), CREATED, EXTERNAL)
        await text.handle(str(write_file(root / "a.txt", "x", BASE_MTIME_NS)), CREATED, EXTERNAL)
        await replace.handle(str(root / "gone.png"), DELETED, EXTERNAL)

        assert timeouts == {
            "collector.test": 7.0,
            "text.test": 30.0,
            "memes.test": 60.0,
            "img.test": 60.0,
        }

    @pytest.mark.asyncio
    async def test_shared_client_left_open_by_handlers(self, ledger):
        client = mock_client(lambda request: httpx.Response(200))
        text = TextAugmentHandler(ledger.mark_self_modified, client=client)
        json_handler = JsonForwardHandler(ledger.mark_self_modified, client=client)

        await text.aclose()
        await json_handler.aclose()

        assert not client.is_closed
        await client.aclose()

    @pytest.mark.asyncio
    async def test_own_client_closed(self, ledger):
        text = TextAugmentHandler(ledger.mark_self_modified)

        await text.aclose()

        assert text.client.is_closed
