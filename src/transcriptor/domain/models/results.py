from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    """Base for payloads whose JSON keys are camelCase on the wire."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class TranscriptionNotification(_WireModel):
    type: Literal["transcription"] = "transcription"
    text: str
    audio_file: str = Field(alias="audioFile")
    timestamp: datetime = Field(default_factory=utcnow)
    session_id: Union[str, int] = Field(alias="sessionId")


class TranslationNotification(_WireModel):
    type: Literal["translation"] = "translation"
    original_text: str = Field(alias="originalText")
    translated_text: str = Field(alias="translatedText")
    source_language: str = Field(alias="sourceLanguage")
    target_language: str = Field(alias="targetLanguage")
    timestamp: datetime = Field(default_factory=utcnow)
    # Present for translations produced by an audio job; absent for ad-hoc requests.
    session_id: Optional[Union[str, int]] = Field(default=None, alias="sessionId")


class UploadTranslation(_WireModel):
    translated_text: str = Field(alias="translatedText")
    target_language: str = Field(alias="targetLanguage")


class UploadTranscriptionResponse(_WireModel):
    transcription: str
    audio_file: str = Field(alias="audioFile")
    translation: Optional[UploadTranslation] = None
    timestamp: datetime = Field(default_factory=utcnow)
    original_file: Optional[str] = Field(default=None, alias="originalFile")


class ModelInfo(BaseModel):
    name: str
    size: Optional[int] = None
    modified_at: Optional[str] = None


class ModelsResponse(BaseModel):
    models: List[ModelInfo] = Field(default_factory=list)
