"""
Validation of incoming drawing submissions.

The validator is pure: it never touches a store. It turns a decoded JSON body
into a NormalizedSubmission or raises errors.ValidationError.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError as SchemaError

from .errors import ValidationError
from .models import SubmissionRequest

logger = logging.getLogger(__name__)

# Format tag that prefixes every payload produced by the drawing client
PAYLOAD_MAGIC = bytes((0x23, 0x52, 0xFF, 0xAC))
DEFAULT_AUTHOR = "名無し"
FIELD_MAX_LENGTH = 20


@dataclass(frozen=True)
class NormalizedSubmission:
    """
    A submission that passed validation.

    Attributes:
        author: Display name, the placeholder when the client sent none
        description: Optional caption
        image_data: Base64 preview image as sent (data-URI prefix untouched)
        payload: Drawing bytes with the 4-byte format tag removed
        artifact_id: Artifact to revise, None to create a new one
    """

    author: str
    description: Optional[str]
    image_data: str
    payload: bytes
    artifact_id: Optional[str] = None


def validate_submission(raw: Any, max_length: int = FIELD_MAX_LENGTH) -> NormalizedSubmission:
    """
    Check a raw submission body and normalize it.

    Rules are applied in order: image data present, payload tagged with
    PAYLOAD_MAGIC, description within ``max_length``, author within
    ``max_length`` (absent author becomes DEFAULT_AUTHOR).

    Raises:
        ValidationError: If any rule fails
    """
    if not isinstance(raw, dict):
        raise ValidationError("submission body must be a JSON object")

    try:
        request = SubmissionRequest.model_validate(raw)
    except SchemaError as exc:
        logger.info(f"Rejected submission with {exc.error_count()} schema error(s)")
        raise ValidationError("submission does not match schema") from exc

    header = bytes(request.payload[: len(PAYLOAD_MAGIC)])
    if header != PAYLOAD_MAGIC:
        logger.info("Rejected submission with missing or mismatched payload tag")
        raise ValidationError("payload tag mismatch")

    if request.description is not None and len(request.description) > max_length:
        raise ValidationError("description too long")

    author = DEFAULT_AUTHOR if request.author is None else request.author
    if len(author) > max_length:
        raise ValidationError("author too long")

    return NormalizedSubmission(
        author=author,
        description=request.description,
        image_data=request.image_data,
        payload=bytes(request.payload[len(PAYLOAD_MAGIC):]),
        artifact_id=request.id,
    )
