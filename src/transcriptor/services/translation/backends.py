from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from src.transcriptor.config import settings
from src.transcriptor.domain.models.audio_job import AUTO_DETECT
from src.transcriptor.domain.models.results import ModelInfo
from src.transcriptor.errors import TranslationError

logger = logging.getLogger("translation")

PROMPT_TEMPLATE = (
    "Translate the following text from {source_language} to {target_language}. "
    "Only return the translation, no explanations:\n"
    "\n"
    'Text to translate: "{text}"\n'
    "\n"
    "Translation:"
)


def build_prompt(text: str, source_language: str, target_language: str) -> str:
    return PROMPT_TEMPLATE.format(text=text, source_language=source_language, target_language=target_language)


class TranslationBackend(Protocol):
    """Protocol for text translation backends."""

    async def translate(
        self,
        text: str,
        source_language: str = AUTO_DETECT,
        target_language: str = "en",
    ) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    async def list_models(self) -> List[ModelInfo]:  # pragma: no cover - interface
        raise NotImplementedError


class OllamaTranslationBackend:
    """Translation through a local Ollama-compatible generation service.

    One non-streamed ``/api/generate`` call per translation, no retries. The
    number of in-flight calls is capped by a semaphore.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._base_url = (base_url or settings.ollama_url).rstrip("/")
        self._model = model or settings.ollama_model
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.translation_timeout_seconds
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency or settings.max_concurrent_translations))
        self._transport = transport

    @property
    def model(self) -> str:
        return self._model

    async def _request(self, method: str, path: str, *, json: Optional[Dict[str, Any]] = None) -> Any:
        async with self._semaphore:
            try:
                async with httpx.AsyncClient(
                    base_url=self._base_url, timeout=self._timeout, transport=self._transport
                ) as client:
                    response = await client.request(method, path, json=json)
                    response.raise_for_status()
                    return response.json()
            except httpx.TimeoutException as exc:
                raise TranslationError(f"Translation service timed out after {self._timeout:g}s") from exc
            except httpx.HTTPStatusError as exc:
                raise TranslationError(
                    f"Translation service returned {exc.response.status_code}: {exc.response.text[:500]}"
                ) from exc
            except httpx.HTTPError as exc:
                raise TranslationError(f"Translation service request failed: {exc}") from exc
            except ValueError as exc:
                raise TranslationError("Translation service returned a non-JSON response") from exc

    async def translate(
        self,
        text: str,
        source_language: str = AUTO_DETECT,
        target_language: str = "en",
    ) -> str:
        payload = {
            "model": self._model,
            "prompt": build_prompt(text, source_language, target_language),
            "stream": False,
        }
        data = await self._request("POST", "/api/generate", json=payload)
        completion = data.get("response") if isinstance(data, dict) else None
        if not isinstance(completion, str):
            raise TranslationError("Translation service returned no completion")
        return completion.strip()

    async def list_models(self) -> List[ModelInfo]:
        data = await self._request("GET", "/api/tags")
        models = data.get("models") if isinstance(data, dict) else None
        if not models:
            return []
        try:
            return [
                ModelInfo(name=m["name"], size=m.get("size"), modified_at=m.get("modified_at"))
                for m in models
            ]
        except (KeyError, TypeError, ValueError) as exc:
            raise TranslationError(f"Unexpected model listing format: {exc}") from exc


def get_translation_backend_from_env() -> TranslationBackend:
    return OllamaTranslationBackend()
