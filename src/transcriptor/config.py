from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass
class Settings:
    """Centralized application settings.

    This keeps environment-variable handling in one place so other modules can
    depend on strongly-typed attributes instead of calling os.getenv
    directly.
    """

    # Ollama-compatible text generation service used for translation.
    ollama_url: str = os.getenv("OLLAMA_URL", "http://localhost:11434")
    ollama_model: str = os.getenv("OLLAMA_MODEL", "llama3.2")

    # Listening address for the HTTP/WebSocket server.
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "3000"))

    # Persistent directory for canonical MP3 artifacts, and the transient
    # staging area for pre-conversion input.
    audio_dir: Path = Path(os.getenv("AUDIO_DIR", "audio"))
    staging_dir: Path = Path(os.getenv("STAGING_DIR", "uploads"))

    # ASR backend selection: "placeholder" (default) or "openai".
    asr_backend: str = os.getenv("ASR_BACKEND", "placeholder")

    # Settings for the OpenAI-compatible speech recognition API.
    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    whisper_model_name: str = os.getenv("WHISPER_MODEL_NAME", "whisper-1")
    # Language hint passed to the speech API. Unset lets the service detect it.
    asr_language: Optional[str] = os.getenv("ASR_LANGUAGE") or None

    ffmpeg_binary: str = os.getenv("FFMPEG_BINARY", "ffmpeg")

    # Per-call timeouts (seconds) for the external collaborators.
    conversion_timeout_seconds: float = float(os.getenv("CONVERSION_TIMEOUT_SECONDS", "120"))
    transcription_timeout_seconds: float = float(os.getenv("TRANSCRIPTION_TIMEOUT_SECONDS", "120"))
    translation_timeout_seconds: float = float(os.getenv("TRANSLATION_TIMEOUT_SECONDS", "60"))

    # Admission limits. Jobs beyond the limit wait for a free slot.
    max_concurrent_jobs: int = int(os.getenv("MAX_CONCURRENT_JOBS", "4"))
    max_concurrent_translations: int = int(os.getenv("MAX_CONCURRENT_TRANSLATIONS", "4"))

    # Request size limits (in bytes).
    max_upload_bytes: int = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))
    max_ws_bytes: int = int(os.getenv("MAX_WS_BYTES", str(50 * 1024 * 1024)))

    # CORS configuration: comma-separated origins (e.g. "https://app.example.com,https://admin.example.com").
    # Default is "*" (allow all) which is acceptable for local development but
    # should be tightened in production.
    cors_allow_origins: str = os.getenv("CORS_ALLOW_ORIGINS", "*")

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
