"""
Render pipeline controller.

This module runs one render request end to end:
1. Validate the request body (before anything touches the disk)
2. Acquire a private workspace
3. Download the background video or the images
4. Compose the FFmpeg job
5. Run and supervise FFmpeg
6. Publish (upload to storage, or stream back)

Whatever happens, the workspace is released: on success, on any stage
failure, and on cancellation. In stream mode the publisher takes over the
release and runs it once the response body has been sent.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError as PydanticValidationError
from starlette.responses import StreamingResponse

from video_renderer.exceptions import (
    CompositionError,
    EncodeError,
    InternalError,
    RendererError,
    ValidationError,
)
from video_renderer.render.composer import JobComposer, caption_slots
from video_renderer.render.fetcher import AssetFetcher
from video_renderer.render.supervisor import EncoderSupervisor, ProgressCallback
from video_renderer.render.workspace import WorkspaceManager
from video_renderer.schemas.render import (
    ImageSequenceRequest,
    RenderRequest,
    RenderResponse,
    TextOverlayRequest,
)
from video_renderer.services.publisher import PublishedArtifact, Publisher, output_filename

logger = logging.getLogger(__name__)

_TEXT_ONLY_FIELDS = ("title", "backgroundVideoUrl")
_IMAGE_ONLY_FIELDS = ("images", "captions")


def parse_render_request(payload: Any) -> RenderRequest:
    """Pick the request shape from the fields present and validate it.

    Raises:
        ValidationError: Missing/invalid fields, or fields of both shapes.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    has_text = any(name in payload for name in _TEXT_ONLY_FIELDS)
    has_images = any(name in payload for name in _IMAGE_ONLY_FIELDS)
    if has_text and has_images:
        raise ValidationError("Send either a text overlay request or an image sequence request, not both")
    if not has_text and not has_images and "videoId" not in payload:
        raise ValidationError("Missing background video URL or videoId.")

    model = ImageSequenceRequest if has_images else TextOverlayRequest
    try:
        return model.model_validate(payload)
    except PydanticValidationError as e:
        first_error = e.errors()[0]
        loc = ".".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        raise ValidationError(f"{loc}: {msg}" if loc else msg) from e


@dataclass
class PipelineOutcome:
    """What the HTTP layer needs to answer one render request."""

    request_id: str
    response: RenderResponse
    status_code: int = 200
    stream: Optional[StreamingResponse] = None
    elapsed_ms: int = 0


class RenderPipeline:
    """Sequences workspace, fetch, compose, encode and publish."""

    def __init__(
        self,
        *,
        workspaces: WorkspaceManager,
        fetcher: AssetFetcher,
        composer: JobComposer,
        supervisor: EncoderSupervisor,
        publisher: Publisher,
    ) -> None:
        self.workspaces = workspaces
        self.fetcher = fetcher
        self.composer = composer
        self.supervisor = supervisor
        self.publisher = publisher

    async def render(
        self,
        payload: Any,
        request_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> PipelineOutcome:
        """Run the full pipeline for a raw request body.

        Never raises for render failures; they come back as a failure
        envelope. Cancellation is propagated after cleanup.
        """
        request_id = request_id or uuid4().hex[:12]
        start = time.perf_counter()

        try:
            request = parse_render_request(payload)
            logger.info(f"[RENDER] {request_id}: starting {request.kind} render")
            self._precheck(request)
            artifact = await self._execute(request, request_id, on_progress)
        except RendererError as e:
            return self._failure(request_id, e, start)
        except asyncio.CancelledError:
            logger.warning(f"[RENDER] {request_id}: cancelled")
            raise
        except Exception:
            logger.exception(f"[RENDER] {request_id}: unexpected error")
            return self._failure(request_id, InternalError(), start)

        elapsed_ms = int((time.perf_counter() - start) * 1000)
        logger.info(f"[RENDER] {request_id}: done in {elapsed_ms} ms")
        return PipelineOutcome(
            request_id=request_id,
            response=RenderResponse(success=True, video_url=artifact.url),
            stream=artifact.response,
            elapsed_ms=elapsed_ms,
        )

    def _precheck(self, request: RenderRequest) -> None:
        # Reject unrenderable image sets before downloading anything.
        if isinstance(request, ImageSequenceRequest):
            if not request.images:
                raise CompositionError("No images provided")
            caption_slots(request.captions, len(request.images))

    async def _execute(
        self,
        request: RenderRequest,
        request_id: str,
        on_progress: Optional[ProgressCallback],
    ) -> PublishedArtifact:
        if isinstance(request, TextOverlayRequest):
            urls = [str(request.background_video_url)]
            default_ext = ".mp4"
        else:
            urls = [str(url) for url in request.images]
            default_ext = ".jpg"
        identifier = request.video_id or request_id

        async with self.workspaces.scoped(request_id) as workspace:
            assets = await self.fetcher.fetch_all(urls, workspace, default_ext=default_ext)

            output_path = workspace.output_file(output_filename(identifier))
            job = self.composer.compose(request, assets, output_path)

            result = await self.supervisor.run(job, on_progress)
            if not result.ok:
                raise EncodeError(result.message, exit_code=result.exit_code)

            return await self.publisher.publish(result, identifier, workspace, self.workspaces)

    def _failure(self, request_id: str, error: RendererError, start: float) -> PipelineOutcome:
        stage = (error.stage or "render").upper()
        log = logger.error if error.status_code >= 500 else logger.warning
        log(f"[{stage}] {request_id}: {error.message}")
        return PipelineOutcome(
            request_id=request_id,
            response=error.to_response(),
            status_code=error.status_code,
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
