from video_renderer.render.composer import EncodeInput, EncodeJob, JobComposer
from video_renderer.render.fetcher import AssetFetcher, FetchedAsset
from video_renderer.render.pipeline import PipelineOutcome, RenderPipeline, parse_render_request
from video_renderer.render.supervisor import EncodeState, EncoderSupervisor, RenderResult
from video_renderer.render.workspace import Workspace, WorkspaceManager

__all__ = [
    "RenderPipeline",
    "PipelineOutcome",
    "parse_render_request",
    "WorkspaceManager",
    "Workspace",
    "AssetFetcher",
    "FetchedAsset",
    "JobComposer",
    "EncodeJob",
    "EncodeInput",
    "EncoderSupervisor",
    "EncodeState",
    "RenderResult",
]
