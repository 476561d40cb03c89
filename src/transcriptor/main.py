import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.transcriptor.api.v1.routes_audio import router as audio_router_v1
from src.transcriptor.api.v1.routes_stream import router as stream_router_v1
from src.transcriptor.api.v1.routes_transcription import router as transcription_router_v1
from src.transcriptor.api.v1.routes_translation import router as translation_router_v1
from src.transcriptor.config import settings
from src.transcriptor.logging_config import configure_logging

logger = logging.getLogger("transcriptor")

app = FastAPI(title="Audio Transcription & Translation API")


@app.on_event("startup")
async def on_startup() -> None:
    """Application startup hook.

    Installs the logging configuration and reports which collaborators the
    process is wired to.
    """

    configure_logging()
    logger.info("Ollama URL: %s", settings.ollama_url)
    logger.info("Default model: %s", settings.ollama_model)
    logger.info("ASR backend: %s", settings.asr_backend)
    logger.info("Audio directory: %s", settings.audio_dir.resolve())


# CORS configuration – permissive by default for development. Tighten via
# CORS_ALLOW_ORIGINS in production deployments.
allow_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()] or ["*"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Basic liveness probe for the API root."""
    return {"status": "ok"}


# Versioned API routers
app.include_router(transcription_router_v1, prefix="/api/v1")
app.include_router(translation_router_v1, prefix="/api/v1")
app.include_router(audio_router_v1, prefix="/api/v1")
app.include_router(stream_router_v1, prefix="/api/v1")
