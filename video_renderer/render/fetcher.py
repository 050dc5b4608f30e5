"""Streaming download of remote media into a request workspace."""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence
from urllib.parse import urlparse

import httpx

from video_renderer.exceptions import FetchError, redact_url
from video_renderer.render.workspace import Workspace

logger = logging.getLogger(__name__)

_SAFE_EXTENSIONS = {
    ".mp4", ".mov", ".m4v", ".webm", ".mkv",
    ".jpg", ".jpeg", ".png", ".gif", ".webp", ".bmp",
}


@dataclass(frozen=True)
class FetchedAsset:
    """One downloaded input, in caller order."""

    source_url: str
    local_path: Path
    ordinal: int
    byte_size: int


def local_name_for(url: str, ordinal: int, default_ext: str = ".bin") -> str:
    """Build a workspace file name from the ordinal and the URL's extension.

    Only the extension is taken from the URL; the rest of the remote path
    never reaches the filesystem.
    """
    ext = os.path.splitext(urlparse(url).path)[1].lower()
    if ext not in _SAFE_EXTENSIONS:
        ext = default_ext
    return f"asset-{ordinal:03d}{ext}"


class AssetFetcher:
    """Downloads assets with a shared ``httpx.AsyncClient``.

    The client is owned by the application lifespan and injected here.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        timeout_s: float = 120.0,
        concurrency: int = 4,
        chunk_size: int = 1024 * 1024,
        max_bytes: int | None = None,
    ) -> None:
        self.client = client
        self.timeout_s = timeout_s
        self.concurrency = max(1, concurrency)
        self.chunk_size = chunk_size
        self.max_bytes = max_bytes

    async def fetch_all(
        self,
        urls: Sequence[str],
        workspace: Workspace,
        default_ext: str = ".bin",
    ) -> list[FetchedAsset]:
        """Download every URL, preserving input order in the result.

        The first failure cancels the remaining downloads and is raised.
        """
        if not urls:
            return []

        dest_dir = workspace.assets_dir
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(ordinal: int, url: str) -> FetchedAsset:
            async with semaphore:
                dest = dest_dir / local_name_for(url, ordinal, default_ext)
                return await self.fetch_one(url, dest, ordinal)

        tasks = [asyncio.create_task(bounded(i, url)) for i, url in enumerate(urls)]
        try:
            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
            for task in tasks:
                if task in done and task.exception() is not None:
                    raise task.exception()
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            # Let cancelled downloads close their files before the workspace goes away.
            await asyncio.gather(*tasks, return_exceptions=True)

        assets = [task.result() for task in tasks]
        total = sum(a.byte_size for a in assets)
        logger.info(f"[FETCH] Downloaded {len(assets)} asset(s), {total / 1024**2:.1f} MB total")
        return assets

    async def fetch_one(self, url: str, dest: Path, ordinal: int = 0) -> FetchedAsset:
        """Stream one URL to ``dest``."""
        try:
            byte_size = await asyncio.wait_for(self._download(url, dest, ordinal), self.timeout_s)
        except asyncio.TimeoutError as e:
            logger.error(f"[FETCH] Timed out after {self.timeout_s}s: {redact_url(url)}")
            raise FetchError(url, cause=f"timed out after {self.timeout_s:g}s", ordinal=ordinal) from e
        return FetchedAsset(source_url=url, local_path=dest, ordinal=ordinal, byte_size=byte_size)

    async def _download(self, url: str, dest: Path, ordinal: int) -> int:
        written = 0
        try:
            async with self.client.stream("GET", url, follow_redirects=True) as response:
                if not response.is_success:
                    logger.error(f"[FETCH] HTTP {response.status_code} for asset {ordinal}: {redact_url(url)}")
                    raise FetchError(url, http_status=response.status_code, ordinal=ordinal)

                expected = response.headers.get("content-length")
                expected_size = int(expected) if expected and expected.isdigit() else None
                if self.max_bytes and expected_size and expected_size > self.max_bytes:
                    raise FetchError(url, cause="asset too large", ordinal=ordinal)

                with dest.open("wb") as f:
                    async for chunk in response.aiter_bytes(self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        written += len(chunk)
                        if self.max_bytes and written > self.max_bytes:
                            raise FetchError(url, cause="asset too large", ordinal=ordinal)
        except httpx.HTTPError as e:
            logger.error(f"[FETCH] Transport error for asset {ordinal} ({redact_url(url)}): {type(e).__name__}")
            raise FetchError(url, cause=type(e).__name__, ordinal=ordinal) from e

        # aiter_bytes decodes content-encoding, so only compare raw transfers.
        if expected_size is not None and "content-encoding" not in response.headers:
            if written != expected_size:
                raise FetchError(
                    url,
                    cause=f"stream ended early ({written} of {expected_size} bytes)",
                    ordinal=ordinal,
                )
        if written == 0:
            raise FetchError(url, cause="empty response body", ordinal=ordinal)

        logger.info(f"[FETCH] Asset {ordinal}: {written} bytes from {redact_url(url)}")
        return written
