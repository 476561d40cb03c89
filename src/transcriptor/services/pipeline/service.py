from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Union

from src.transcriptor.config import settings
from src.transcriptor.domain.models.audio_job import AUTO_DETECT, AudioJob, AudioJobState, JobOrigin
from src.transcriptor.domain.models.results import ModelInfo
from src.transcriptor.errors import InternalError, TranscriptorError, TranslationError, ValidationError
from src.transcriptor.infra.storage.audio import (
    STREAM_PREFIX,
    UPLOAD_PREFIX,
    AsyncReadable,
    AudioPayload,
    AudioStorageBackend,
    audio_storage_backend,
)
from src.transcriptor.services.audit.service import audit_service
from src.transcriptor.services.transcoding.service import Transcoder, transcoder as default_transcoder
from src.transcriptor.services.transcription.backends import ASRBackend, get_asr_backend_from_env
from src.transcriptor.services.translation.backends import TranslationBackend, get_translation_backend_from_env

logger = logging.getLogger("pipeline")

TranscribedHook = Callable[[AudioJob], Awaitable[None]]

_PREFIXES = {JobOrigin.STREAM: STREAM_PREFIX, JobOrigin.UPLOAD: UPLOAD_PREFIX}


class AudioPipelineService:
    """Drives audio jobs through stage → convert → transcribe → translate.

    Both ingress paths share this class; they differ only in how the payload is
    staged and how results are delivered. The staging file is released exactly
    once when the job reaches a terminal state, whichever stage failed. The
    canonical artifact is never removed here.
    """

    def __init__(
        self,
        *,
        storage: Optional[AudioStorageBackend] = None,
        transcoder: Optional[Transcoder] = None,
        asr_backend: Optional[ASRBackend] = None,
        translation_backend: Optional[TranslationBackend] = None,
        max_concurrent_jobs: Optional[int] = None,
    ) -> None:
        self._storage = storage or audio_storage_backend
        self._transcoder = transcoder or default_transcoder
        self._asr_backend = asr_backend or get_asr_backend_from_env()
        self._translation_backend = translation_backend or get_translation_backend_from_env()
        self._admission = asyncio.Semaphore(max(1, max_concurrent_jobs or settings.max_concurrent_jobs))

    @property
    def storage(self) -> AudioStorageBackend:
        return self._storage

    def new_job(
        self,
        *,
        origin: JobOrigin,
        session_id: Optional[Union[str, int]] = None,
        target_language: Optional[str] = None,
        source_language: Optional[str] = None,
    ) -> AudioJob:
        return AudioJob(
            origin=origin,
            session_id=session_id,
            target_language=target_language,
            source_language=source_language or AUTO_DETECT,
        )

    async def run_job(
        self,
        job: AudioJob,
        payload: AudioPayload,
        *,
        suffix: str = ".wav",
        on_transcribed: Optional[TranscribedHook] = None,
    ) -> AudioJob:
        """Run a job whose whole payload is already in memory (streaming ingress)."""

        return await self._execute(job, lambda: self._storage.stage(payload, suffix=suffix), on_transcribed)

    async def run_upload_job(
        self,
        job: AudioJob,
        upload: AsyncReadable,
        *,
        suffix: str = ".wav",
        max_bytes: Optional[int] = None,
    ) -> AudioJob:
        """Run a job whose payload is read from an uploaded request body."""

        return await self._execute(
            job,
            lambda: self._storage.stage_stream(upload, suffix=suffix, max_bytes=max_bytes),
            None,
        )

    async def _execute(
        self,
        job: AudioJob,
        stage: Callable[[], Awaitable[Path]],
        on_transcribed: Optional[TranscribedHook],
    ) -> AudioJob:
        current = "storage"
        async with self._admission:
            try:
                job.source_path = await stage()
                job.advance(AudioJobState.STAGED)

                current = "conversion"
                canonical = self._storage.reserve_canonical_name(_PREFIXES[job.origin])
                await self._transcoder.convert(job.source_path, canonical)
                job.canonical_path = canonical
                job.advance(AudioJobState.CONVERTED)

                current = "transcription"
                job.transcript_text = await self._asr_backend.transcribe(canonical)
                job.advance(AudioJobState.TRANSCRIBED)
                if on_transcribed is not None:
                    await on_transcribed(job)

                current = "translation"
                await self._translate_job(job)
                job.advance(AudioJobState.COMPLETED)
            except TranscriptorError as exc:
                self._record_failure(job, exc)
                raise
            except asyncio.CancelledError:
                self._record_failure(job, InternalError("Job cancelled", stage=current))
                raise
            except Exception as exc:
                logger.exception("Unexpected error in %s stage of job %s", current, job.id)
                error = InternalError(str(exc) or type(exc).__name__, stage=current)
                self._record_failure(job, error)
                raise error from exc
            finally:
                self._storage.release(job.source_path)

        logger.info("Audio processing completed. MP3 saved as: %s", job.audio_file)
        audit_service.log_event(
            action="job_completed",
            resource_type="audio_job",
            resource_id=str(job.id),
            extra={
                "origin": job.origin.value,
                "session_id": job.session_id,
                "audio_file": job.audio_file,
                "translated": job.translated_text is not None,
            },
        )
        return job

    async def _translate_job(self, job: AudioJob) -> None:
        if not job.wants_translation or not (job.transcript_text or "").strip():
            return
        try:
            job.translated_text = await self._translation_backend.translate(
                job.transcript_text,
                source_language=job.source_language,
                target_language=job.target_language,
            )
        except TranslationError as exc:
            # Translation is an enhancement; the job still completes without it.
            job.translation_error = exc.message
            logger.warning("Translation failed for job %s: %s", job.id, exc.message)
            return
        job.advance(AudioJobState.TRANSLATED)

    def _record_failure(self, job: AudioJob, exc: TranscriptorError) -> None:
        if not job.is_terminal:
            job.fail(exc.stage, exc.message)
        logger.error("Job %s failed in %s stage: %s", job.id, exc.stage, exc.message)
        audit_service.log_event(
            action="job_failed",
            resource_type="audio_job",
            resource_id=str(job.id),
            extra={"origin": job.origin.value, "session_id": job.session_id, "stage": exc.stage},
        )

    async def translate_text(
        self,
        text: Optional[str],
        *,
        source_language: Optional[str] = None,
        target_language: Optional[str] = None,
    ) -> str:
        """Translate ad-hoc text. Unlike inside a job, failures propagate."""

        if not isinstance(text, str) or not text.strip():
            raise ValidationError("No text provided")
        return await self._translation_backend.translate(
            text,
            source_language=source_language or AUTO_DETECT,
            target_language=target_language or "en",
        )

    async def list_models(self) -> List[ModelInfo]:
        return await self._translation_backend.list_models()


pipeline_service = AudioPipelineService()


def get_pipeline_service() -> AudioPipelineService:
    """FastAPI dependency returning the process-wide pipeline."""

    return pipeline_service
