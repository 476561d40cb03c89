from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from src.transcriptor.api.v1.errors import to_http_exception
from src.transcriptor.domain.models.audio_job import AUTO_DETECT
from src.transcriptor.domain.models.results import ModelsResponse, TranslationNotification
from src.transcriptor.errors import TranscriptorError
from src.transcriptor.services.pipeline.service import AudioPipelineService, get_pipeline_service

router = APIRouter(tags=["translation"])

SUPPORTED_LANGUAGES = [
    {"code": "es", "name": "Español"},
    {"code": "en", "name": "English"},
    {"code": "fr", "name": "Français"},
    {"code": "de", "name": "Deutsch"},
    {"code": "it", "name": "Italiano"},
    {"code": "pt", "name": "Português"},
    {"code": "ru", "name": "Русский"},
    {"code": "ja", "name": "日本語"},
    {"code": "ko", "name": "한국어"},
    {"code": "zh", "name": "中文"},
]


class TranslateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    text: Optional[str] = None
    target_language: str = Field("en", alias="targetLanguage")
    source_language: str = Field(AUTO_DETECT, alias="sourceLanguage")


class Language(BaseModel):
    code: str
    name: str


@router.post("/translate", response_model=TranslationNotification)
async def translate_text(
    request: TranslateRequest,
    pipeline: AudioPipelineService = Depends(get_pipeline_service),
) -> TranslationNotification:
    try:
        translated = await pipeline.translate_text(
            request.text,
            source_language=request.source_language,
            target_language=request.target_language,
        )
    except TranscriptorError as exc:
        raise to_http_exception(exc) from exc

    return TranslationNotification(
        original_text=request.text,
        translated_text=translated,
        source_language=request.source_language,
        target_language=request.target_language,
    )


@router.get("/models", response_model=ModelsResponse)
async def list_models(pipeline: AudioPipelineService = Depends(get_pipeline_service)) -> ModelsResponse:
    """List the models exposed by the translation service."""

    try:
        models = await pipeline.list_models()
    except TranscriptorError as exc:
        raise to_http_exception(exc) from exc
    return ModelsResponse(models=models)


@router.get("/languages", response_model=List[Language])
async def list_languages() -> List[Language]:
    return [Language(**lang) for lang in SUPPORTED_LANGUAGES]
