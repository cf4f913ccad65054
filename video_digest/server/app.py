"""FastAPI application exposing the digest pipeline over HTTP.

WHY: The editor front end (and scripts, and curl) need to look up a video,
create a digest, start processing, poll for status, load and save the
digest document, and ask for section suggestions.

HOW: A single FastAPI app. Every endpoint resolves the PipelineOrchestrator
through the ``get_orchestrator`` dependency so tests can swap in one built
on a fake process runner. Pipeline errors are DigestError subclasses and
are turned into JSON error bodies by one exception handler, using each
error's ``category`` to pick the status code.

RULES:
- No authentication; the API is meant to sit behind the editor's backend
- advance and align return 202 immediately; clients poll /status
- GET /digests/{id}/data returns the cached payload string verbatim
- Upload size is checked before anything is written to disk
"""

from __future__ import annotations

import logging
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from video_digest import __version__
from video_digest.core.ir import DigestState
from video_digest.errors import DigestError, DigestNotFound, SourceTooLarge
from video_digest.pipeline.orchestrator import MSG_NOT_FOUND, MSG_PROCESSING, PipelineOrchestrator
from video_digest.server.models import (
    AcceptedResponse,
    AdvanceRequest,
    DigestCreatedResponse,
    DigestDocumentRequest,
    ErrorResponse,
    HealthResponse,
    LookupRequest,
    MessageResponse,
    SegmentsResponse,
    StatusResponse,
    VideoInfoResponse,
)
from video_digest.tools.video_source import extract_video_id

logger = logging.getLogger(__name__)

STATUS_BY_CATEGORY = {
    "source_not_found": 404,
    "digest_not_found": 404,
    "source_too_large": 413,
    "unsupported_format": 415,
    "precondition_not_met": 409,
    "external_tool_failure": 502,
    "output_parse_error": 502,
    "persistence_failure": 500,
}

# ---------------------------------------------------------------------------
# Orchestrator wiring
# ---------------------------------------------------------------------------

_orchestrator: Optional[PipelineOrchestrator] = None


def get_orchestrator() -> PipelineOrchestrator:
    """Process-wide orchestrator, built from the environment on first use."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = PipelineOrchestrator()
    return _orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Let running pipeline stages finish on shutdown."""
    yield
    if _orchestrator is not None:
        _orchestrator.shutdown(wait=True)


app = FastAPI(
    lifespan=lifespan,
    title="Video Digest API",
    description=(
        "Create word-aligned, segmented transcripts of YouTube videos. "
        "Look up a video, create a digest from an uploaded transcript or the "
        "video's captions, start processing, poll for status, then load the "
        "digest in the editor."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

Orchestrator = Annotated[PipelineOrchestrator, Depends(get_orchestrator)]

_ERRORS = {
    404: {"model": ErrorResponse, "description": "Video or digest not found"},
    409: {"model": ErrorResponse, "description": "Digest not in the right state"},
}


@app.exception_handler(DigestError)
async def digest_error_handler(request: Request, exc: DigestError) -> JSONResponse:
    status_code = STATUS_BY_CATEGORY.get(exc.category, 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


# ---------------------------------------------------------------------------
# Endpoints: Digests
# ---------------------------------------------------------------------------


@app.post(
    "/digests/lookup",
    response_model=VideoInfoResponse,
    tags=["digests"],
    summary="Look up a YouTube video",
    description="Resolve a YouTube URL to its title, length and thumbnail.",
    responses={
        404: _ERRORS[404],
        413: {"model": ErrorResponse, "description": "Video too long"},
    },
)
def lookup_video(body: LookupRequest, orchestrator: Orchestrator) -> VideoInfoResponse:
    info = orchestrator.lookup_video(body.url)
    return VideoInfoResponse(
        video_id=info.video_id,
        title=info.title,
        duration=info.duration_s,
        iurl=info.thumbnail_url,
    )


@app.post(
    "/digests",
    response_model=DigestCreatedResponse,
    status_code=201,
    tags=["digests"],
    summary="Create a digest",
    description=(
        "Download the video and register a new digest. Supply either a "
        "transcript file (plain text or SRT) or use_captions=true to build "
        "the transcript from the video's auto captions."
    ),
    responses={
        404: _ERRORS[404],
        413: {"model": ErrorResponse, "description": "Video or transcript too large"},
        415: {"model": ErrorResponse, "description": "No usable transcript"},
    },
)
def create_digest(
    orchestrator: Orchestrator,
    url: Annotated[str, Form(description="YouTube watch URL.")],
    title: Annotated[Optional[str], Form(description="Digest title; defaults to the video title.")] = None,
    use_captions: Annotated[bool, Form(description="Build the transcript from auto captions.")] = False,
    transcript: Annotated[
        Optional[UploadFile],
        File(description="Transcript file (.txt or .srt)."),
    ] = None,
) -> DigestCreatedResponse:
    video_id = extract_video_id(url)

    if transcript is None:
        record = orchestrator.ingest(video_id, title=title, use_captions=use_captions)
    else:
        limit = orchestrator.settings.max_transcript_upload_bytes
        content = transcript.file.read(limit + 1 if limit > 0 else -1)
        if limit > 0 and len(content) > limit:
            raise SourceTooLarge("transcript exceeds {} bytes".format(limit))
        with tempfile.TemporaryDirectory() as tmp:
            upload_path = Path(tmp) / "transcript.txt"
            upload_path.write_bytes(content)
            record = orchestrator.ingest(video_id, title=title, transcript_path=upload_path)

    return DigestCreatedResponse(
        id=record.id,
        state=record.state.value,
        video_id=record.video_id,
        title=record.title,
        video_length=record.video_length,
        has_caption_alignment=record.align_trans is not None,
    )


@app.post(
    "/digests/{digest_id}/advance",
    response_model=AcceptedResponse,
    status_code=202,
    tags=["digests"],
    summary="Start processing a digest",
    description=(
        "Clean the transcript and extract the audio in parallel, then run "
        "forced alignment. Returns immediately; poll /status."
    ),
    responses=_ERRORS,
)
def advance_digest(
    digest_id: str,
    orchestrator: Orchestrator,
    body: Optional[AdvanceRequest] = None,
) -> AcceptedResponse:
    confirm = body.confirm if body is not None else True
    orchestrator.advance(digest_id, confirm=confirm)
    return AcceptedResponse(id=digest_id, state=DigestState.CLEANING.value, message=MSG_PROCESSING)


@app.post(
    "/digests/{digest_id}/align",
    response_model=AcceptedResponse,
    status_code=202,
    tags=["digests"],
    summary="Retry forced alignment",
    description="Re-run alignment for a digest whose alignment failed.",
    responses=_ERRORS,
)
def retry_alignment(digest_id: str, orchestrator: Orchestrator) -> AcceptedResponse:
    orchestrator.retry_alignment(digest_id)
    return AcceptedResponse(id=digest_id, state=DigestState.ALIGNING.value, message=MSG_PROCESSING)


@app.get(
    "/digests/{digest_id}/status",
    response_model=StatusResponse,
    tags=["digests"],
    summary="Get digest status",
    responses={404: _ERRORS[404]},
)
def get_status(digest_id: str, orchestrator: Orchestrator) -> StatusResponse:
    report = orchestrator.status(digest_id)
    if report.state is None:
        raise DigestNotFound(MSG_NOT_FOUND, digest_id=digest_id)
    return StatusResponse(
        id=digest_id,
        state=report.state.value,
        message=report.message,
        failure=report.failure.to_dict() if report.failure else None,
    )


@app.get(
    "/digests/{digest_id}/data",
    tags=["digests"],
    summary="Load the digest for the editor",
    description="Returns {digest, transcript, ytid, videoLength} for a ready digest.",
    responses=_ERRORS,
)
def get_digest_data(digest_id: str, orchestrator: Orchestrator) -> Response:
    return Response(content=orchestrator.digest_data(digest_id), media_type="application/json")


@app.put(
    "/digests/{digest_id}/data",
    response_model=MessageResponse,
    tags=["digests"],
    summary="Save the editor's digest document",
    responses={404: _ERRORS[404]},
)
def save_digest_data(
    digest_id: str,
    body: DigestDocumentRequest,
    orchestrator: Orchestrator,
) -> MessageResponse:
    orchestrator.save_digest_document(digest_id, body.object)
    return MessageResponse(status="success", message="saved the video digest data")


@app.get(
    "/digests/{digest_id}/segments",
    response_model=SegmentsResponse,
    tags=["digests"],
    summary="Suggest section breaks",
    description="Run the statistical segmenter over the digest's sentences.",
    responses={
        **_ERRORS,
        502: {"model": ErrorResponse, "description": "Segmenter failed"},
    },
)
def get_segments(digest_id: str, orchestrator: Orchestrator) -> SegmentsResponse:
    result = orchestrator.segment(digest_id)
    return SegmentsResponse(breaks=result.breaks, raw_line=result.raw_line)


# ---------------------------------------------------------------------------
# Endpoints: Health
# ---------------------------------------------------------------------------


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Entry point for the video-digest-api console script."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
