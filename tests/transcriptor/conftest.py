import os
import random
import shutil
import tempfile
from pathlib import Path

import httpx
import pytest

# Keep the module-level storage singleton out of the working tree.
_SCRATCH = tempfile.mkdtemp(prefix="transcriptor-tests-")
os.environ.setdefault("AUDIO_DIR", os.path.join(_SCRATCH, "audio"))
os.environ.setdefault("STAGING_DIR", os.path.join(_SCRATCH, "uploads"))

from src.transcriptor.errors import ConversionError  # noqa: E402
from src.transcriptor.infra.storage.audio import LocalAudioStorageBackend  # noqa: E402
from src.transcriptor.main import app  # noqa: E402
from src.transcriptor.services.pipeline.service import AudioPipelineService, get_pipeline_service  # noqa: E402
from src.transcriptor.services.transcription.backends import PlaceholderASRBackend  # noqa: E402
from src.transcriptor.services.translation.backends import OllamaTranslationBackend  # noqa: E402


class CopyTranscoder:
    """Stands in for ffmpeg: the canonical artifact is a byte copy of the input."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.sources_seen: list[Path] = []
        self.source_existed: list[bool] = []

    async def convert(self, source: Path, canonical: Path) -> Path:
        self.sources_seen.append(source)
        self.source_existed.append(source.exists())
        if self.error is not None:
            raise self.error
        shutil.copyfile(source, canonical)
        return canonical


class StubASRBackend:
    def __init__(self, text: str = "hola mundo", error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[Path] = []

    async def transcribe(self, audio_path: Path) -> str:
        self.calls.append(audio_path)
        if self.error is not None:
            raise self.error
        return self.text


def ollama_backend(*, reply: dict | None = None, status_code: int = 200, requests: list | None = None, exc: Exception | None = None):
    """Build an Ollama backend whose HTTP traffic is answered in-process."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        if exc is not None:
            raise exc
        if request.url.path == "/api/tags":
            return httpx.Response(status_code, json=reply if reply is not None else {"models": []})
        return httpx.Response(status_code, json=reply if reply is not None else {"response": "  hello world \n"})

    return OllamaTranslationBackend(
        base_url="http://ollama.test",
        model="llama3.2",
        timeout_seconds=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.fixture
def storage(tmp_path: Path) -> LocalAudioStorageBackend:
    return LocalAudioStorageBackend(audio_dir=tmp_path / "audio", staging_dir=tmp_path / "staging")


@pytest.fixture
def copy_transcoder() -> CopyTranscoder:
    return CopyTranscoder()


@pytest.fixture
def make_transcoder():
    return CopyTranscoder


@pytest.fixture
def make_asr():
    return StubASRBackend


@pytest.fixture
def make_translation_backend():
    return ollama_backend


@pytest.fixture
def pipeline(storage: LocalAudioStorageBackend, copy_transcoder: CopyTranscoder) -> AudioPipelineService:
    return AudioPipelineService(
        storage=storage,
        transcoder=copy_transcoder,
        asr_backend=PlaceholderASRBackend(delay_per_kb=0, rng=random.Random(7)),
        translation_backend=ollama_backend(),
    )


@pytest.fixture
def use_pipeline():
    """Route the app's pipeline dependency to a test-built pipeline."""

    def _install(pipeline: AudioPipelineService) -> AudioPipelineService:
        app.dependency_overrides[get_pipeline_service] = lambda: pipeline
        return pipeline

    yield _install
    app.dependency_overrides.pop(get_pipeline_service, None)


@pytest.fixture
def failing_transcoder() -> CopyTranscoder:
    return CopyTranscoder(error=ConversionError("Invalid data found when processing input"))
