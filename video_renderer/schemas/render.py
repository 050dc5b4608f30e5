from typing import ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, HttpUrl

# videoId becomes part of the storage key.
VIDEO_ID_PATTERN = r"^[A-Za-z0-9_-]{1,128}$"

RenderStage = Literal["validate", "workspace", "fetch", "compose", "encode", "publish"]


class TextOverlayRequest(BaseModel):
    """Background video with a single caption burned in."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: ClassVar[str] = "text_overlay"

    title: str = Field(max_length=500)
    background_video_url: HttpUrl = Field(alias="backgroundVideoUrl")
    video_id: str = Field(alias="videoId", pattern=VIDEO_ID_PATTERN)


class ImageSequenceRequest(BaseModel):
    """Still images shown in order, each with an optional caption."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    kind: ClassVar[str] = "image_sequence"

    images: list[HttpUrl]
    captions: list[str] = Field(default_factory=list)
    video_id: str | None = Field(default=None, alias="videoId", pattern=VIDEO_ID_PATTERN)


RenderRequest = Union[TextOverlayRequest, ImageSequenceRequest]


class RenderResponse(BaseModel):
    """Uniform result envelope returned by POST /render."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool
    video_url: str | None = Field(default=None, serialization_alias="videoUrl")
    error: str | None = None
    code: str | None = None
    stage: RenderStage | None = None
    retryable: bool | None = None
    suggested_fix: str | None = Field(default=None, serialization_alias="suggestedFix")

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
