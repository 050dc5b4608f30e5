"""Error codes dictionary for the render API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery actions. Used by the pipeline and the exception
handlers to generate machine-readable error responses.
"""

from typing import Any, TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str
    parameters: dict[str, Any]


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Request errors (caller fault, never retried)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": (
            "Send either {title, backgroundVideoUrl, videoId} "
            "or {images, captions}"
        ),
    },
    "COMPOSITION_ERROR": {
        "retryable": False,
        "suggested_fix": "Provide at least one image and no more captions than images",
    },
    # ==========================================================================
    # Remote asset errors (retryable once the source is reachable)
    # ==========================================================================
    "FETCH_ERROR": {
        "retryable": True,
        "suggested_fix": "Check that every asset URL is publicly reachable",
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    # ==========================================================================
    # Render errors (deterministic for a given job, not retried)
    # ==========================================================================
    "ENCODE_ERROR": {
        "retryable": False,
        "suggested_fix": "Verify the input media is a decodable video or image",
    },
    # ==========================================================================
    # System errors (retryable with backoff)
    # ==========================================================================
    "PUBLISH_ERROR": {
        "retryable": True,
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
    "WORKSPACE_ERROR": {
        "retryable": True,
        "parameters": {"delay_ms": 5000, "max_retries": 1},
    },
    "INTERNAL_ERROR": {
        "retryable": True,
        "parameters": {"delay_ms": 2000, "max_retries": 2},
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification by code.

    Args:
        code: The error code

    Returns:
        ErrorCodeSpec with retryable flag and suggested fix
    """
    return ERROR_CODES.get(code, {"retryable": False})


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    spec = get_error_spec(code)
    return spec.get("retryable", False)
