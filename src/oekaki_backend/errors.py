"""
Error taxonomy for the submission workflow.

Every failure the coordinator can report derives from SubmissionError and
carries the HTTP status and the client-facing reason string. The API layer
turns these into ``{"success": false, "reason": ...}`` responses; internal
detail stays in the logs.
"""

from __future__ import annotations

INTERNAL_ERROR_REASON = "internal server error"


class SubmissionError(Exception):
    """Base class for errors that map onto a client response."""

    status_code: int = 500
    reason: str = INTERNAL_ERROR_REASON

    def __init__(self, message: str | None = None, *, status_code: int | None = None, reason: str | None = None) -> None:
        if status_code is not None:
            self.status_code = status_code
        if reason is not None:
            self.reason = reason
        super().__init__(message or self.reason)


class ValidationError(SubmissionError):
    """Malformed or oversized request fields, or a bad payload header."""

    status_code = 400
    reason = "bad request"


class NotFoundError(SubmissionError):
    """The referenced artifact does not exist."""

    status_code = 400
    reason = "invalid image id"


class LockedError(SubmissionError):
    """The artifact has reached its revision cap."""

    status_code = 423
    reason = "this image is already completed"


class UpstreamError(SubmissionError):
    """The preview host rejected a call, timed out or was unreachable."""


class StoreError(SubmissionError):
    """A metadata or blob store read/write failed."""
