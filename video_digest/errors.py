"""Typed failures raised by the digest pipeline.

WHY: A digest can fail in many places: the video cannot be found, the
caption track is missing, ffmpeg or the aligner exits non-zero, the aligner
writes garbage, the record cannot be saved. Callers (CLI, HTTP layer) need
to tell these apart to show a stage-scoped message and to know whether a
retry makes sense.

HOW: One base class, ``DigestError``, carrying the user-facing message plus
the digest id and pipeline stage when known. Each subclass sets a
``category`` string that the HTTP layer maps to a status code.

RULES:
- Every exception carries enough context (digest id, stage) to resume
- ``category`` values are stable identifiers, safe to expose to clients
- Malformed caption timing lines are NOT errors (parsers skip them)
"""

from __future__ import annotations

from typing import Optional


class DigestError(Exception):
    """Base class for all pipeline failures."""

    category = "digest_error"

    def __init__(
        self,
        message: str,
        digest_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.message = message
        self.digest_id = digest_id
        self.stage = stage
        super().__init__(message)

    def with_context(
        self,
        digest_id: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> DigestError:
        """Fill in digest id / stage if they are not already set."""
        if self.digest_id is None:
            self.digest_id = digest_id
        if self.stage is None:
            self.stage = stage
        return self

    def to_dict(self) -> dict:
        return {
            "category": self.category,
            "detail": self.message,
            "digest_id": self.digest_id,
            "stage": None if self.stage is None else str(self.stage),
        }


class SourceNotFound(DigestError):
    """The video, caption track or transcript could not be located."""

    category = "source_not_found"


class DigestNotFound(SourceNotFound):
    """No digest record exists under the requested id."""

    category = "digest_not_found"


class SourceTooLarge(DigestError):
    """The video is too long or the uploaded transcript too big."""

    category = "source_too_large"


class UnsupportedFormat(DigestError):
    """The caption or transcript content cannot be used."""

    category = "unsupported_format"


class ExternalToolFailure(DigestError):
    """An external program exited non-zero, crashed, or timed out.

    RULES:
    - returncode is None when the process timed out or never started
    - stderr is truncated to the last 2,000 characters
    """

    category = "external_tool_failure"

    def __init__(
        self,
        stage: str,
        message: str,
        returncode: Optional[int] = None,
        stderr: str = "",
        timed_out: bool = False,
        digest_id: Optional[str] = None,
    ) -> None:
        self.returncode = returncode
        self.stderr = stderr[-2000:] if stderr else ""
        self.timed_out = timed_out
        super().__init__(message, digest_id=digest_id, stage=stage)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["returncode"] = self.returncode
        data["timed_out"] = self.timed_out
        return data


class OutputParseError(DigestError):
    """A tool succeeded but its output is missing or malformed."""

    category = "output_parse_error"

    def __init__(
        self,
        stage: str,
        message: str,
        digest_id: Optional[str] = None,
    ) -> None:
        super().__init__(message, digest_id=digest_id, stage=stage)


class PersistenceFailure(DigestError):
    """A digest record or artifact could not be written."""

    category = "persistence_failure"


class PreconditionNotMet(DigestError):
    """The requested operation needs something that is not there yet."""

    category = "precondition_not_met"
