"""
Tests for streaming asset downloads.
"""

import asyncio
import logging

import httpx
import pytest

from conftest import JPEG_BYTES
from video_renderer.exceptions import FetchError
from video_renderer.render.fetcher import AssetFetcher, local_name_for
from video_renderer.render.workspace import WorkspaceManager


@pytest.fixture
def workspace(tmp_path):
    return WorkspaceManager(tmp_path / "work").acquire("req")


def _fetcher(handler, **kwargs) -> AssetFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("timeout_s", 5.0)
    return AssetFetcher(client, **kwargs)


class BrokenStream(httpx.AsyncByteStream):
    """Body that dies after the first chunk."""

    async def __aiter__(self):
        yield b"partial"
        raise httpx.ReadError("connection reset by peer")


class TestLocalNameFor:
    @pytest.mark.parametrize(
        "url,expected",
        [
            ("https://x/a.JPG", "asset-000.jpg"),
            ("https://x/clip.mp4?sig=abc", "asset-000.mp4"),
            ("https://x/../../etc/passwd", "asset-000.bin"),
            ("https://x/script.sh", "asset-000.bin"),
            ("https://x/", "asset-000.bin"),
        ],
    )
    def test_only_safe_extensions_survive(self, url, expected):
        assert local_name_for(url, 0) == expected

    def test_ordinal_and_default_extension(self):
        assert local_name_for("https://x/image", 12, ".jpg") == "asset-012.jpg"


class TestFetchAll:
    """Tests for AssetFetcher.fetch_all."""

    @pytest.mark.asyncio
    async def test_downloads_in_request_order(self, workspace):
        delays = {"/a.jpg": 0.15, "/b.jpg": 0.05, "/c.jpg": 0.0}

        async def handler(request):
            await asyncio.sleep(delays[request.url.path])
            return httpx.Response(200, content=JPEG_BYTES + request.url.path.encode())

        fetcher = _fetcher(handler, concurrency=3)
        urls = ["https://x/a.jpg", "https://x/b.jpg", "https://x/c.jpg"]

        assets = await fetcher.fetch_all(urls, workspace, default_ext=".jpg")

        assert [a.source_url for a in assets] == urls
        assert [a.ordinal for a in assets] == [0, 1, 2]
        assert [a.local_path.name for a in assets] == ["asset-000.jpg", "asset-001.jpg", "asset-002.jpg"]
        for asset in assets:
            assert asset.local_path.parent == workspace.assets_dir
            assert asset.local_path.read_bytes().endswith(urls[asset.ordinal][9:].encode())
            assert asset.byte_size == asset.local_path.stat().st_size

    @pytest.mark.asyncio
    async def test_empty_url_list(self, workspace):
        fetcher = _fetcher(lambda request: httpx.Response(500))

        assert await fetcher.fetch_all([], workspace) == []

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, workspace):
        active = 0
        peak = 0

        async def handler(request):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return httpx.Response(200, content=JPEG_BYTES)

        fetcher = _fetcher(handler, concurrency=2)
        await fetcher.fetch_all([f"https://x/{i}.jpg" for i in range(6)], workspace)

        assert peak <= 2

    @pytest.mark.asyncio
    async def test_http_error_aborts_batch(self, workspace):
        """A 404 on one image fails fast and cancels the slow downloads."""
        slow_cancelled = asyncio.Event()

        async def handler(request):
            if request.url.path == "/missing.jpg":
                return httpx.Response(404)
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                slow_cancelled.set()
                raise
            return httpx.Response(200, content=JPEG_BYTES)

        fetcher = _fetcher(handler, concurrency=4)
        urls = ["https://x/slow.jpg", "https://x/missing.jpg", "https://x/slow2.jpg"]

        with pytest.raises(FetchError) as exc_info:
            await asyncio.wait_for(fetcher.fetch_all(urls, workspace), timeout=5)

        error = exc_info.value
        assert error.http_status == 404
        assert error.ordinal == 1
        assert error.url == "https://x/missing.jpg"
        assert "HTTP 404" in error.message
        assert slow_cancelled.is_set()

    @pytest.mark.asyncio
    async def test_timeout(self, workspace):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, content=JPEG_BYTES)

        fetcher = _fetcher(handler, timeout_s=0.1)

        with pytest.raises(FetchError, match="timed out"):
            await fetcher.fetch_all(["https://x/a.jpg"], workspace)


class TestFetchOne:
    """Tests for single downloads and integrity checks."""

    @pytest.mark.asyncio
    async def test_transport_error(self, workspace):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        fetcher = _fetcher(handler)

        with pytest.raises(FetchError) as exc_info:
            await fetcher.fetch_one("https://x/a.jpg", workspace.assets_dir / "a.jpg")

        assert exc_info.value.cause == "ConnectError"
        assert exc_info.value.http_status is None

    @pytest.mark.asyncio
    async def test_signed_url_credentials_stay_out_of_errors_and_logs(self, workspace, caplog):
        url = "https://bucket.s3.amazonaws.com/a.jpg?X-Amz-Credential=AKIAEXAMPLE&X-Amz-Signature=deadbeef"
        fetcher = _fetcher(lambda request: httpx.Response(403))

        with caplog.at_level(logging.INFO, logger="video_renderer.render.fetcher"):
            with pytest.raises(FetchError) as exc_info:
                await fetcher.fetch_one(url, workspace.assets_dir / "a.jpg")

        assert "https://bucket.s3.amazonaws.com/a.jpg" in exc_info.value.message
        assert "X-Amz-Signature" not in exc_info.value.message
        assert "[FETCH] HTTP 403" in caplog.text
        assert "AKIAEXAMPLE" not in caplog.text
        assert "deadbeef" not in caplog.text

    @pytest.mark.asyncio
    async def test_stream_broken_midway(self, workspace):
        fetcher = _fetcher(lambda request: httpx.Response(200, stream=BrokenStream()))

        with pytest.raises(FetchError, match="ReadError"):
            await fetcher.fetch_one("https://x/a.mp4", workspace.assets_dir / "a.mp4")

    @pytest.mark.asyncio
    async def test_body_shorter_than_content_length(self, workspace):
        fetcher = _fetcher(
            lambda request: httpx.Response(200, headers={"Content-Length": "100"}, content=b"short")
        )

        with pytest.raises(FetchError, match="ended early"):
            await fetcher.fetch_one("https://x/a.mp4", workspace.assets_dir / "a.mp4")

    @pytest.mark.asyncio
    async def test_empty_body(self, workspace):
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b""))

        with pytest.raises(FetchError, match="empty response body"):
            await fetcher.fetch_one("https://x/a.mp4", workspace.assets_dir / "a.mp4")

    @pytest.mark.asyncio
    async def test_too_large(self, workspace):
        fetcher = _fetcher(lambda request: httpx.Response(200, content=b"x" * 1024), max_bytes=100)

        with pytest.raises(FetchError, match="too large"):
            await fetcher.fetch_one("https://x/a.mp4", workspace.assets_dir / "a.mp4")

    @pytest.mark.asyncio
    async def test_follows_redirects(self, workspace):
        def handler(request):
            if request.url.path == "/old.jpg":
                return httpx.Response(302, headers={"Location": "https://x/new.jpg"})
            return httpx.Response(200, content=JPEG_BYTES)

        fetcher = _fetcher(handler)
        asset = await fetcher.fetch_one("https://x/old.jpg", workspace.assets_dir / "a.jpg")

        assert asset.local_path.read_bytes() == JPEG_BYTES
