from typing import Annotated, Optional

import httpx
from fastapi import Depends, Request

from video_renderer.config import Settings
from video_renderer.render.composer import JobComposer
from video_renderer.render.fetcher import AssetFetcher
from video_renderer.render.pipeline import RenderPipeline
from video_renderer.render.supervisor import EncoderSupervisor
from video_renderer.render.workspace import WorkspaceManager
from video_renderer.services.publisher import create_publisher
from video_renderer.services.storage_service import ObjectStorage


def build_pipeline(
    settings: Settings,
    http_client: httpx.AsyncClient,
    storage: Optional[ObjectStorage],
) -> RenderPipeline:
    """Wire the render pipeline from settings and the shared clients."""
    return RenderPipeline(
        workspaces=WorkspaceManager(settings.workspace_root, prefix=settings.workspace_prefix),
        fetcher=AssetFetcher(
            http_client,
            timeout_s=settings.fetch_timeout_s,
            concurrency=settings.fetch_concurrency,
            chunk_size=settings.fetch_chunk_size,
            max_bytes=settings.max_asset_bytes,
        ),
        composer=JobComposer(settings),
        supervisor=EncoderSupervisor(
            settings.ffmpeg_path,
            timeout_s=settings.encode_timeout_s,
            terminate_grace_s=settings.terminate_grace_s,
            max_concurrent=settings.max_concurrent_renders,
        ),
        publisher=create_publisher(
            settings.publish_mode,
            storage,
            key_prefix=settings.storage_key_prefix,
            chunk_size=settings.stream_chunk_size,
        ),
    )


def get_pipeline(request: Request) -> RenderPipeline:
    return request.app.state.pipeline


def get_storage(request: Request) -> Optional[ObjectStorage]:
    return request.app.state.storage


Pipeline = Annotated[RenderPipeline, Depends(get_pipeline)]
Storage = Annotated[Optional[ObjectStorage], Depends(get_storage)]
