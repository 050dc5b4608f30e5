"""Custom exceptions for the video renderer.

Every render stage raises a subclass of RendererError. The pipeline
controller catches them at one boundary and turns them into the uniform
response envelope, so each class carries the machine-readable code, the
HTTP status, and the stage tag used in logs and responses.
"""

from urllib.parse import urlsplit, urlunsplit

from video_renderer.constants.error_codes import get_error_spec
from video_renderer.schemas.render import RenderResponse, RenderStage


class RendererError(Exception):
    """Base exception for all renderer errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    stage: RenderStage | None = None
    message: str = "Video rendering failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    @property
    def public_message(self) -> str:
        """Message that is safe to return to the caller."""
        return self.message

    def to_response(self) -> RenderResponse:
        """Convert exception to the failure envelope."""
        spec = get_error_spec(self.code)
        return RenderResponse(
            success=False,
            error=self.public_message,
            code=self.code,
            stage=self.stage,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
        )


# =============================================================================
# Caller errors (400)
# =============================================================================


class ValidationError(RendererError):
    """Request body is missing fields or mixes both request shapes."""

    code = "VALIDATION_ERROR"
    status_code = 400
    stage = "validate"
    message = "Invalid render request"


class CompositionError(RendererError):
    """The request is well-formed but cannot be turned into an encode job."""

    code = "COMPOSITION_ERROR"
    status_code = 400
    stage = "compose"
    message = "Nothing to render"


# =============================================================================
# Upstream / environment errors
# =============================================================================


def redact_url(url: str) -> str:
    """Reduce a URL to scheme, host and path.

    Query strings and userinfo are dropped; presigned URLs carry credentials there.
    """
    try:
        parts = urlsplit(url)
        host = parts.hostname or ""
        if ":" in host:
            host = f"[{host}]"
        if parts.port is not None:
            host = f"{host}:{parts.port}"
    except ValueError:
        return "<invalid url>"
    return urlunsplit((parts.scheme, host, parts.path, "", ""))


class FetchError(RendererError):
    """A remote asset could not be downloaded."""

    code = "FETCH_ERROR"
    status_code = 502
    stage = "fetch"
    message = "Failed to download asset"

    def __init__(
        self,
        url: str,
        *,
        http_status: int | None = None,
        cause: str | None = None,
        ordinal: int | None = None,
    ):
        self.url = url
        self.http_status = http_status
        self.cause = cause
        self.ordinal = ordinal
        label = f"asset {ordinal}" if ordinal is not None else "asset"
        if http_status is not None:
            detail = f"HTTP {http_status}"
        else:
            detail = cause or "download failed"
        super().__init__(f"Failed to download {label} from {redact_url(url)}: {detail}")


class EncodeError(RendererError):
    """FFmpeg failed, timed out, or produced no output."""

    code = "ENCODE_ERROR"
    status_code = 500
    stage = "encode"
    message = "Video encoding failed"

    def __init__(self, diagnostic: str | None = None, *, exit_code: int | None = None):
        self.diagnostic = diagnostic or ""
        self.exit_code = exit_code
        detail = f"Video encoding failed: {diagnostic}" if diagnostic else self.message
        super().__init__(detail)

    @property
    def public_message(self) -> str:
        # Encoder output is logged in full; callers get an opaque message.
        if self.exit_code is not None:
            return f"Video encoding failed (exit code {self.exit_code})"
        return "Video encoding failed"


class PublishError(RendererError):
    """The storage backend rejected the upload."""

    code = "PUBLISH_ERROR"
    status_code = 502
    stage = "publish"
    message = "Failed to publish rendered video"


class WorkspaceError(RendererError):
    """Scratch directory could not be created."""

    code = "WORKSPACE_ERROR"
    status_code = 500
    stage = "workspace"
    message = "Render workspace unavailable"

    @property
    def public_message(self) -> str:
        return self.__class__.message


class InternalError(RendererError):
    """Unexpected error (500)."""

    code = "INTERNAL_ERROR"
    status_code = 500
    message = "Video rendering failed"
