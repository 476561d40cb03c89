"""Exception hierarchy for the audio job pipeline.

Every error carries the name of the stage that produced it so both ingress
paths can report which step failed.
"""

from __future__ import annotations


class TranscriptorError(Exception):
    """Base exception for all pipeline and storage errors."""

    stage: str = "internal"

    def __init__(self, message: str, *, stage: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    def to_dict(self) -> dict:
        return {"error": type(self).__name__, "stage": self.stage, "message": self.message}


class ValidationError(TranscriptorError):
    """Raised for missing or malformed input, including bad filenames."""

    stage = "validation"


class StorageError(TranscriptorError):
    """Raised when the local filesystem cannot be read or written."""

    stage = "storage"


class ArtifactNotFoundError(StorageError):
    """Raised when a validated artifact name has no corresponding file."""


class ConversionError(TranscriptorError):
    """Raised when the external transcoder fails or times out."""

    stage = "conversion"


class TranscriptionError(TranscriptorError):
    """Raised when the speech recognition backend fails."""

    stage = "transcription"


class TranslationError(TranscriptorError):
    """Raised when the translation service fails. Non-fatal inside a job."""

    stage = "translation"


class InternalError(TranscriptorError):
    """Catch-all for anything unanticipated."""

    stage = "internal"


class PayloadTooLargeError(ValidationError):
    """Raised when an audio payload exceeds the configured size limit."""
