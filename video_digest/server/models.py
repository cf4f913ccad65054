"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and the OpenAPI docs under /docs.

HOW: One model per request body and per response shape. Digest payloads
that the editor consumes verbatim (GET /digests/{id}/data) bypass these
models and are returned as the cached JSON string.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- state values are DigestState values ("created", "cleaning", ...)
- Error bodies always carry a human-readable ``detail``
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LookupRequest(BaseModel):
    url: str = Field(description="YouTube watch URL, e.g. https://www.youtube.com/watch?v=abc123.")


class AdvanceRequest(BaseModel):
    """Confirmation that the uploaded transcript should be processed."""

    confirm: bool = Field(
        default=True,
        description="Must be true; processing never starts without confirmation.",
    )


class DigestDocumentRequest(BaseModel):
    object: Dict[str, Any] = Field(
        description="The editor's digest document (title, sections, chapters, ...)."
    )


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class VideoInfoResponse(BaseModel):
    video_id: str = Field(description="YouTube video id.")
    title: str = Field(description="Video title.")
    duration: Optional[float] = Field(default=None, description="Video length in seconds.")
    iurl: Optional[str] = Field(default=None, description="Thumbnail URL.")


class DigestCreatedResponse(BaseModel):
    """Returned when a digest has been registered.

    RULES:
    - state is always 'created'
    - has_caption_alignment is true when auto captions supplied a
      preliminary word alignment
    """

    id: str = Field(description="Digest id used by every other endpoint.")
    state: str = Field(description="Digest state (always 'created').")
    video_id: str = Field(description="YouTube video id.")
    title: str = Field(description="Digest title.")
    video_length: Optional[float] = Field(default=None, description="Video length in seconds.")
    has_caption_alignment: bool = Field(
        default=False, description="Whether a caption-derived alignment is stored."
    )


class AcceptedResponse(BaseModel):
    id: str = Field(description="Digest id.")
    state: str = Field(description="Digest state after the request was accepted.")
    message: str = Field(description="Human-readable status message.")


class StatusResponse(BaseModel):
    id: str = Field(description="Digest id.")
    state: str = Field(description="Current digest state.")
    message: str = Field(description="Human-readable status message.")
    failure: Optional[Dict[str, str]] = Field(
        default=None,
        description="Failed stage and reason, only present when state is 'failed'.",
    )


class SegmentsResponse(BaseModel):
    breaks: List[int] = Field(description="Suggested section breaks as sentence numbers.")
    raw_line: str = Field(description="The segmenter output line the breaks were read from.")


class MessageResponse(BaseModel):
    status: str = Field(description="Always 'success'.")
    message: str = Field(description="Human-readable confirmation.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - detail is always a human-readable error message
    - category is a stable identifier (see video_digest.errors)
    """

    detail: str = Field(description="Human-readable error description.")
    category: Optional[str] = Field(default=None, description="Error category.")
    digest_id: Optional[str] = Field(default=None, description="Digest the error belongs to.")
    stage: Optional[str] = Field(default=None, description="Pipeline stage that failed.")


class HealthResponse(BaseModel):
    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
