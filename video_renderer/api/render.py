"""Render API endpoint."""

import asyncio
import json
import logging
from uuid import uuid4

from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from video_renderer.api.deps import Pipeline
from video_renderer.exceptions import ValidationError
from video_renderer.render.pipeline import PipelineOutcome

router = APIRouter()
logger = logging.getLogger(__name__)

# Seconds between client-disconnect checks while a render is running.
DISCONNECT_POLL_INTERVAL_S = 1.0

# nginx's "client closed request".
CLIENT_CLOSED_REQUEST = 499


@router.post("/render", response_model=None)
async def render_video(request: Request, pipeline: Pipeline) -> Response:
    """
    Render a video and publish it.

    Accepts either ``{title, backgroundVideoUrl, videoId}`` or
    ``{images, captions}``. Depending on the deployment this returns
    ``{"success": true, "videoUrl": ...}`` or the MP4 bytes themselves.
    """
    request_id = uuid4().hex[:12]
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        error = ValidationError("Request body must be valid JSON")
        return JSONResponse(
            status_code=error.status_code,
            content=error.to_response().to_json(),
            headers={"X-Request-ID": request_id},
        )

    task = asyncio.create_task(pipeline.render(payload, request_id=request_id))
    watcher = asyncio.create_task(_cancel_on_disconnect(request, task))
    try:
        outcome: PipelineOutcome = await task
    except asyncio.CancelledError:
        if task.cancelled() and watcher.done():
            logger.warning(f"[RENDER] {request_id}: client disconnected, render aborted")
            return Response(status_code=CLIENT_CLOSED_REQUEST)
        task.cancel()
        raise
    finally:
        watcher.cancel()

    if outcome.stream is not None:
        outcome.stream.headers["X-Request-ID"] = outcome.request_id
        return outcome.stream

    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.response.to_json(),
        headers={"X-Request-ID": outcome.request_id},
    )


async def _cancel_on_disconnect(request: Request, task: asyncio.Task) -> None:
    while not task.done():
        if await request.is_disconnected():
            task.cancel()
            return
        await asyncio.sleep(DISCONNECT_POLL_INTERVAL_S)
