"""Delivery of a finished render.

Exactly one strategy is active per deployment:

- ``UploadPublisher`` stores the MP4 in object storage and returns its URL.
- ``StreamPublisher`` sends the MP4 bytes as the HTTP response body. The
  workspace is released only once the body has been fully sent or the client
  went away, never while the file is still being read.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Callable, Optional, Protocol

from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from video_renderer.exceptions import PublishError
from video_renderer.render.supervisor import RenderResult
from video_renderer.render.workspace import Workspace, WorkspaceManager
from video_renderer.services.storage_service import ObjectStorage, StorageError

logger = logging.getLogger(__name__)

VIDEO_CONTENT_TYPE = "video/mp4"


def output_filename(identifier: str) -> str:
    return f"{identifier}-final-video.mp4"


@dataclass
class PublishedArtifact:
    """Either a storage URL or a streaming response, never both."""

    url: Optional[str] = None
    response: Optional[StreamingResponse] = None

    def __post_init__(self) -> None:
        if (self.url is None) == (self.response is None):
            raise ValueError("PublishedArtifact needs exactly one of url or response")


class Publisher(Protocol):
    mode: str

    async def publish(
        self,
        result: RenderResult,
        identifier: str,
        workspace: Workspace,
        workspace_manager: WorkspaceManager,
    ) -> PublishedArtifact: ...


class UploadPublisher:
    """Uploads the render to object storage."""

    mode = "upload"

    def __init__(self, storage: ObjectStorage, key_prefix: str = "") -> None:
        self.storage = storage
        self.key_prefix = key_prefix.strip("/")

    def key_for(self, identifier: str) -> str:
        name = output_filename(identifier)
        return f"{self.key_prefix}/{name}" if self.key_prefix else name

    async def publish(
        self,
        result: RenderResult,
        identifier: str,
        workspace: Workspace,
        workspace_manager: WorkspaceManager,
    ) -> PublishedArtifact:
        key = self.key_for(identifier)
        logger.info(f"[PUBLISH] Uploading {key} ({result.byte_size / 1024**2:.1f} MB)")
        try:
            url = await asyncio.to_thread(self._upload, result.output_path, key)
        except StorageError as e:
            logger.error(f"[PUBLISH] Upload of {key} failed: {e}")
            raise PublishError(f"Failed to upload rendered video: {e}") from e
        except OSError as e:
            logger.error(f"[PUBLISH] Could not read render output for {key}: {e}")
            raise PublishError(f"Failed to upload rendered video: {e.strerror or type(e).__name__}") from e
        logger.info(f"[PUBLISH] Upload successful: {url}")
        return PublishedArtifact(url=url)

    def _upload(self, path: Path, key: str) -> str:
        with path.open("rb") as f:
            return self.storage.upload(key, f, VIDEO_CONTENT_TYPE)


class StreamPublisher:
    """Streams the render back as the response body."""

    mode = "stream"

    def __init__(self, chunk_size: int = 64 * 1024) -> None:
        self.chunk_size = chunk_size

    async def publish(
        self,
        result: RenderResult,
        identifier: str,
        workspace: Workspace,
        workspace_manager: WorkspaceManager,
    ) -> PublishedArtifact:
        path = result.output_path
        try:
            size = path.stat().st_size
        except OSError as e:
            raise PublishError("Rendered video disappeared before streaming") from e

        release = _once(workspace_manager.detach(workspace))
        response = StreamingResponse(
            self._iter_file(path, release),
            media_type=VIDEO_CONTENT_TYPE,
            headers={
                "Content-Length": str(size),
                "Content-Disposition": f'inline; filename="{output_filename(identifier)}"',
            },
            background=BackgroundTask(release),
        )
        logger.info(f"[PUBLISH] Streaming {size / 1024**2:.1f} MB to client")
        return PublishedArtifact(response=response)

    async def _iter_file(self, path: Path, release: Callable[[], None]) -> AsyncIterator[bytes]:
        try:
            with path.open("rb") as f:
                while True:
                    chunk = await asyncio.to_thread(f.read, self.chunk_size)
                    if not chunk:
                        break
                    yield chunk
        finally:
            await asyncio.to_thread(release)


def _once(func: Callable[[], None]) -> Callable[[], None]:
    called = False
    lock = threading.Lock()

    def wrapper() -> None:
        nonlocal called
        with lock:
            if called:
                return
            called = True
        func()

    return wrapper


def create_publisher(mode: str, storage: Optional[ObjectStorage], *, key_prefix: str = "", chunk_size: int = 64 * 1024) -> Publisher:
    if mode == "stream":
        return StreamPublisher(chunk_size=chunk_size)
    if storage is None:
        raise ValueError("Upload mode requires a storage backend")
    return UploadPublisher(storage, key_prefix=key_prefix)
