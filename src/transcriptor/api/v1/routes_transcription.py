from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from src.transcriptor.api.v1.errors import to_http_exception
from src.transcriptor.config import settings
from src.transcriptor.domain.models.audio_job import JobOrigin
from src.transcriptor.domain.models.results import UploadTranscriptionResponse, UploadTranslation
from src.transcriptor.errors import TranscriptorError, ValidationError
from src.transcriptor.infra.storage.audio import safe_suffix
from src.transcriptor.services.audit.service import audit_service
from src.transcriptor.services.pipeline.service import AudioPipelineService, get_pipeline_service

router = APIRouter(tags=["transcription"])


@router.post("/transcribe", response_model=UploadTranscriptionResponse)
async def transcribe_upload(
    audio: Optional[UploadFile] = File(None),
    target_language: Optional[str] = Form("en", alias="targetLanguage"),
    pipeline: AudioPipelineService = Depends(get_pipeline_service),
) -> UploadTranscriptionResponse:
    """Convert, transcribe and optionally translate an uploaded audio file.

    The upload is staged, converted to the canonical MP3 and transcribed in
    one request. Translation is attempted when ``targetLanguage`` is set and
    is not ``auto``; if it fails the response still carries the transcript,
    with ``translation`` set to null.
    """

    if audio is None:
        raise to_http_exception(ValidationError("No audio file provided"))

    if not (audio.content_type or "").startswith("audio/"):
        audit_service.log_event(
            action="upload_rejected",
            resource_type="audio_job",
            extra={"content_type": audio.content_type, "filename": audio.filename},
        )
        raise to_http_exception(ValidationError("Invalid file type; only audio files are allowed."))

    job = pipeline.new_job(origin=JobOrigin.UPLOAD, target_language=target_language)
    try:
        await pipeline.run_upload_job(
            job,
            audio,
            suffix=safe_suffix(audio.filename),
            max_bytes=settings.max_upload_bytes,
        )
    except TranscriptorError as exc:
        raise to_http_exception(exc) from exc
    finally:
        await audio.close()

    translation = None
    if job.translated_text is not None:
        translation = UploadTranslation(translated_text=job.translated_text, target_language=job.target_language)

    return UploadTranscriptionResponse(
        transcription=job.transcript_text or "",
        audio_file=job.audio_file,
        translation=translation,
        original_file=audio.filename,
    )
