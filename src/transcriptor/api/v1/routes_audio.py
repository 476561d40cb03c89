from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from pydantic import BaseModel

from src.transcriptor.api.v1.errors import to_http_exception
from src.transcriptor.domain.models.stored_artifact import StoredArtifact
from src.transcriptor.errors import TranscriptorError
from src.transcriptor.services.audit.service import audit_service
from src.transcriptor.services.pipeline.service import AudioPipelineService, get_pipeline_service

router = APIRouter(prefix="/audio", tags=["audio"])

_MEDIA_TYPES = {".mp3": "audio/mpeg", ".wav": "audio/wav"}


class ListAudioResponse(BaseModel):
    files: List[StoredArtifact]


@router.get("", response_model=ListAudioResponse)
async def list_audio(pipeline: AudioPipelineService = Depends(get_pipeline_service)) -> ListAudioResponse:
    """List persisted audio artifacts, newest first."""

    try:
        files = pipeline.storage.list_artifacts()
    except TranscriptorError as exc:
        raise to_http_exception(exc) from exc
    return ListAudioResponse(files=files)


@router.get("/{filename}", response_class=FileResponse)
async def download_audio(
    filename: str,
    pipeline: AudioPipelineService = Depends(get_pipeline_service),
) -> FileResponse:
    """Download a persisted artifact by name.

    The name is checked against the allow-list pattern before anything on
    disk is touched; a malformed name is a 400, a well-formed but unknown
    name a 404.
    """

    try:
        path = pipeline.storage.resolve(filename)
    except TranscriptorError as exc:
        raise to_http_exception(exc) from exc

    audit_service.log_event(
        action="artifact_downloaded",
        resource_type="audio_artifact",
        resource_id=filename,
    )

    return FileResponse(
        path,
        media_type=_MEDIA_TYPES.get(path.suffix, "audio/mpeg"),
        filename=filename,
        content_disposition_type="attachment",
    )
