from __future__ import annotations

import asyncio
import logging
import random
from pathlib import Path
from typing import Optional, Protocol

import httpx

from src.transcriptor.config import settings
from src.transcriptor.errors import StorageError, TranscriptionError

logger = logging.getLogger("transcription")


class ASRBackend(Protocol):
    """Protocol for automatic speech recognition backends.

    Implementations take the path of a canonical artifact and return its
    transcript. Exactly one backend is active per deployment.
    """

    async def transcribe(self, audio_path: Path) -> str:  # pragma: no cover - interface
        raise NotImplementedError


def _require_file(audio_path: Path) -> int:
    try:
        return audio_path.stat().st_size
    except FileNotFoundError as exc:
        raise StorageError(f"Audio file not found: {audio_path.name}") from exc
    except OSError as exc:
        raise StorageError(f"Cannot read audio file {audio_path.name}: {exc}") from exc


PLACEHOLDER_SENTENCES = (
    "Hello, this is an example of an audio transcription.",
    "Audio transcribed successfully from the MP3 file.",
    "The transcription system is working correctly.",
    "Processing the audio file to generate text.",
    "Automatic transcription generated successfully.",
)


class PlaceholderASRBackend:
    """Stand-in backend used when no speech service is configured.

    It never listens to the audio: it waits a little in proportion to the file
    size and returns one of a few canned sentences tagged with the size.
    """

    def __init__(
        self,
        *,
        delay_per_kb: float = 0.01,
        max_delay: float = 2.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._delay_per_kb = delay_per_kb
        self._max_delay = max_delay
        self._rng = rng or random.Random()

    async def transcribe(self, audio_path: Path) -> str:
        size_kb = round(_require_file(audio_path) / 1024)
        delay = min(self._max_delay, size_kb * self._delay_per_kb)
        if delay > 0:
            await asyncio.sleep(delay)
        sentence = self._rng.choice(PLACEHOLDER_SENTENCES)
        return f"{sentence} (File: {size_kb}KB)"


class OpenAIWhisperASRBackend:
    """ASR backend for the OpenAI transcription API and compatible providers.

    The canonical MP3 is uploaded as multipart form data to
    ``<base_url>/audio/transcriptions``; the ``text`` field of the JSON reply is
    the transcript.
    """

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._api_key = api_key or settings.openai_api_key
        if not self._api_key:
            raise TranscriptionError("OPENAI_API_KEY must be set to use the openai ASR backend")
        self._base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._model = model or settings.whisper_model_name
        self._language = language if language is not None else settings.asr_language
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.transcription_timeout_seconds
        self._transport = transport

    async def transcribe(self, audio_path: Path) -> str:
        _require_file(audio_path)
        try:
            content = await asyncio.to_thread(audio_path.read_bytes)
        except OSError as exc:
            raise StorageError(f"Cannot read audio file {audio_path.name}: {exc}") from exc

        data = {"model": self._model}
        if self._language:
            data["language"] = self._language
        files = {"file": (audio_path.name, content, "audio/mpeg")}
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/audio/transcriptions",
                    data=data,
                    files=files,
                    headers=headers,
                )
                response.raise_for_status()
                payload = response.json()
        except httpx.TimeoutException as exc:
            raise TranscriptionError(f"Speech service timed out after {self._timeout:g}s") from exc
        except httpx.HTTPStatusError as exc:
            raise TranscriptionError(
                f"Speech service returned {exc.response.status_code}: {exc.response.text[:500]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TranscriptionError(f"Speech service request failed: {exc}") from exc
        except ValueError as exc:
            raise TranscriptionError("Speech service returned a non-JSON response") from exc

        text = payload.get("text") if isinstance(payload, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise TranscriptionError("Speech service returned no transcript")
        return text.strip()


def get_asr_backend_from_env() -> ASRBackend:
    """Select an ASR backend based on the ASR_BACKEND environment variable.

    - ASR_BACKEND=openai → OpenAIWhisperASRBackend
    - Anything else (or unset) → PlaceholderASRBackend
    """

    backend_name = settings.asr_backend.lower()
    if backend_name == "openai":
        return OpenAIWhisperASRBackend()
    if backend_name != "placeholder":
        logger.warning("Unknown ASR_BACKEND %r; using the placeholder backend", settings.asr_backend)
    return PlaceholderASRBackend()
