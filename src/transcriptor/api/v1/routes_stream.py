from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Dict, Optional, Set, Union

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from pydantic import ValidationError as PydanticValidationError

from src.transcriptor.config import settings
from src.transcriptor.domain.models.audio_job import AudioJob, JobOrigin
from src.transcriptor.domain.models.results import TranscriptionNotification, TranslationNotification
from src.transcriptor.errors import PayloadTooLargeError, TranscriptorError, ValidationError
from src.transcriptor.services.audit.service import audit_service
from src.transcriptor.services.pipeline.service import AudioPipelineService, get_pipeline_service

logger = logging.getLogger("stream")

router = APIRouter(tags=["stream"])


def _payload_size(audio: Any) -> int:
    # Base64 text is roughly 4/3 the size of the audio it carries.
    if isinstance(audio, str):
        return len(audio) * 3 // 4
    return len(audio)


def _session_id(data: Dict[str, Any]) -> Optional[Union[str, int]]:
    session_id = data.get("sessionId")
    # bool is an int subclass but never a meaningful correlation token.
    if session_id is None or (isinstance(session_id, (str, int)) and not isinstance(session_id, bool)):
        return session_id
    raise ValidationError("sessionId must be a string or an integer")


def _language(data: Dict[str, Any], key: str, default: Optional[str]) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string")
    return value


class StreamConnection:
    """Per-connection handle for the streaming protocol.

    Each inbound message runs as its own task so a slow job does not hold up
    later messages on the same socket. Outbound sends are serialized with a
    lock; once the peer is gone further sends are dropped.
    """

    def __init__(self, websocket: WebSocket, pipeline: AudioPipelineService) -> None:
        self._websocket = websocket
        self._pipeline = pipeline
        self._send_lock = asyncio.Lock()
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False

    async def send(self, payload: Dict[str, Any]) -> None:
        if self._closed:
            return
        async with self._send_lock:
            try:
                await self._websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError):
                logger.debug("Dropping %s message for closed connection", payload.get("type"))
                self._closed = True

    async def send_error(self, message: str, stage: Optional[str] = None) -> None:
        payload: Dict[str, Any] = {"type": "error", "message": message}
        if stage:
            payload["stage"] = stage
        await self.send(payload)

    def spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Stream handler task failed", exc_info=task.exception())

    async def dispatch_text(self, raw: str) -> None:
        try:
            data = json.loads(raw)
        except ValueError:
            await self.send_error("Invalid JSON message", stage="validation")
            return
        if not isinstance(data, dict):
            await self.send_error("Message must be a JSON object", stage="validation")
            return

        message_type = data.get("type")
        logger.debug("Received message type: %s", message_type)
        if message_type == "audio-chunk":
            self.spawn(self.handle_audio(data))
        elif message_type == "translate":
            self.spawn(self.handle_translate(data))
        elif message_type == "get-models":
            self.spawn(self.handle_get_models())
        else:
            await self.send_error("Unknown message type", stage="validation")

    async def handle_audio(self, data: Dict[str, Any]) -> None:
        audio = data.get("audioData")

        async def notify_transcribed(done: AudioJob) -> None:
            await self.send(
                TranscriptionNotification(
                    text=done.transcript_text or "",
                    audio_file=done.audio_file,
                    session_id=done.session_id,
                ).to_wire()
            )

        try:
            job = self._pipeline.new_job(
                origin=JobOrigin.STREAM,
                session_id=_session_id(data),
                target_language=_language(data, "targetLanguage", "en"),
                source_language=_language(data, "sourceLanguage", None),
            )
            if not audio:
                raise ValidationError("No audio data provided")
            if not isinstance(audio, (str, bytes, bytearray)):
                raise ValidationError("Invalid audio data format")
            if _payload_size(audio) > settings.max_ws_bytes:
                raise PayloadTooLargeError("Maximum stream size exceeded.")
            await self._pipeline.run_job(job, audio, on_transcribed=notify_transcribed)

            if job.translated_text is not None:
                await self.send(
                    TranslationNotification(
                        original_text=job.transcript_text,
                        translated_text=job.translated_text,
                        source_language=job.source_language,
                        target_language=job.target_language,
                        session_id=job.session_id,
                    ).to_wire()
                )
            elif job.translation_error:
                await self.send_error(f"Translation failed: {job.translation_error}", stage="translation")
        except TranscriptorError as exc:
            await self.send_error(f"Transcription failed: {exc.message}", stage=exc.stage)
        except PydanticValidationError as exc:
            await self.send_error(f"Transcription failed: invalid message: {exc.error_count()} field error(s)", stage="validation")
        except Exception:
            logger.exception("Unexpected error handling audio-chunk")
            await self.send_error("Transcription failed: internal error", stage="internal")

    async def handle_translate(self, data: Dict[str, Any]) -> None:
        try:
            source_language = _language(data, "sourceLanguage", "auto")
            target_language = _language(data, "targetLanguage", "en")
            translated = await self._pipeline.translate_text(
                data.get("text"),
                source_language=source_language,
                target_language=target_language,
            )
            notification = TranslationNotification(
                original_text=data["text"],
                translated_text=translated,
                source_language=source_language,
                target_language=target_language,
            )
        except TranscriptorError as exc:
            await self.send_error(f"Translation failed: {exc.message}", stage=exc.stage)
            return
        except PydanticValidationError as exc:
            await self.send_error(f"Translation failed: invalid message: {exc.error_count()} field error(s)", stage="validation")
            return
        except Exception:
            logger.exception("Unexpected error handling translate")
            await self.send_error("Translation failed: internal error", stage="internal")
            return

        await self.send(notification.to_wire())

    async def handle_get_models(self) -> None:
        try:
            models = await self._pipeline.list_models()
        except TranscriptorError as exc:
            await self.send_error(f"Failed to fetch models: {exc.message}", stage=exc.stage)
            return
        await self.send({"type": "models", "models": [m.model_dump() for m in models]})

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


@router.websocket("/ws")
async def stream_audio(
    websocket: WebSocket,
    pipeline: AudioPipelineService = Depends(get_pipeline_service),
) -> None:
    """Bidirectional JSON channel for audio jobs, translations and model listing.

    Text frames carry JSON envelopes keyed by ``type``. A binary frame is
    treated as an ``audio-chunk`` carrying raw audio bytes with default
    options.
    """

    await websocket.accept()
    connection = StreamConnection(websocket, pipeline)
    logger.info("Client connected")
    audit_service.log_event(action="stream_connected", resource_type="stream_connection")
    await connection.send({"type": "connected", "message": "WebSocket connected successfully"})

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            if message.get("bytes") is not None:
                connection.spawn(connection.handle_audio({"audioData": message["bytes"]}))
            elif message.get("text") is not None:
                await connection.dispatch_text(message["text"])
    except WebSocketDisconnect:
        pass
    finally:
        await connection.close()
        logger.info("Client disconnected")
        audit_service.log_event(action="stream_disconnected", resource_type="stream_connection")
