from __future__ import annotations

from fastapi import HTTPException, status

from src.transcriptor.errors import (
    ArtifactNotFoundError,
    PayloadTooLargeError,
    TranscriptorError,
    TranslationError,
    ValidationError,
)


def status_for(exc: TranscriptorError) -> int:
    if isinstance(exc, PayloadTooLargeError):
        return status.HTTP_413_REQUEST_ENTITY_TOO_LARGE
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, ArtifactNotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, TranslationError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: TranscriptorError) -> HTTPException:
    """Map a pipeline error onto an HTTPException with a structured detail."""

    return HTTPException(status_code=status_for(exc), detail=exc.to_dict())
