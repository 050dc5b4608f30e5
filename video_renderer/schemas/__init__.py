from video_renderer.schemas.render import (
    ImageSequenceRequest,
    RenderRequest,
    RenderResponse,
    TextOverlayRequest,
)

__all__ = [
    "TextOverlayRequest",
    "ImageSequenceRequest",
    "RenderRequest",
    "RenderResponse",
]
