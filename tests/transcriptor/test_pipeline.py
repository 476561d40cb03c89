import asyncio
import base64
import logging

import pytest

from src.transcriptor.domain.models.audio_job import AudioJobState, JobOrigin
from src.transcriptor.errors import ConversionError, InternalError, StorageError, TranscriptionError, ValidationError
from src.transcriptor.services.pipeline.service import AudioPipelineService

AUDIO = b"RIFF\x24\x00\x00\x00WAVEfmt fake-audio"


def build(storage, transcoder, asr, translation):
    return AudioPipelineService(
        storage=storage,
        transcoder=transcoder,
        asr_backend=asr,
        translation_backend=translation,
        max_concurrent_jobs=2,
    )


async def test_stream_job_completes_and_keeps_only_canonical(storage, copy_transcoder, make_asr, make_translation_backend):
    pipeline = build(storage, copy_transcoder, make_asr("hola"), make_translation_backend())
    job = pipeline.new_job(origin=JobOrigin.STREAM, target_language="en", session_id="s-1")

    await pipeline.run_job(job, base64.b64encode(AUDIO).decode())

    assert job.state is AudioJobState.COMPLETED
    assert job.transcript_text == "hola"
    assert job.translated_text == "hello world"
    assert job.session_id == "s-1"
    assert job.audio_file.startswith("audio_") and job.audio_file.endswith(".mp3")
    assert job.canonical_path.read_bytes() == AUDIO
    assert copy_transcoder.source_existed == [True]
    assert not job.source_path.exists()
    assert list(storage.staging_dir.iterdir()) == []


async def test_upload_job_uses_upload_prefix(storage, copy_transcoder, make_asr, make_translation_backend):
    class Body:
        def __init__(self):
            self.sent = False

        async def read(self, size=-1):
            if self.sent:
                return b""
            self.sent = True
            return AUDIO

    pipeline = build(storage, copy_transcoder, make_asr("hola"), make_translation_backend())
    job = pipeline.new_job(origin=JobOrigin.UPLOAD, target_language="auto")

    await pipeline.run_upload_job(job, Body(), suffix=".webm", max_bytes=1024)

    assert job.state is AudioJobState.COMPLETED
    assert job.audio_file.startswith("uploaded_")
    assert job.translated_text is None
    assert copy_transcoder.sources_seen[0].suffix == ".webm"


@pytest.mark.parametrize(
    "transcoder_error, asr_error, expected, stage",
    [
        (ConversionError("moov atom not found"), None, ConversionError, "conversion"),
        (None, TranscriptionError("service unavailable"), TranscriptionError, "transcription"),
        (None, StorageError("Audio file not found"), StorageError, "storage"),
        (RuntimeError("engine crashed"), None, InternalError, "conversion"),
    ],
)
async def test_failures_mark_job_failed_and_release_staging(
    storage, make_transcoder, make_asr, make_translation_backend, transcoder_error, asr_error, expected, stage
):
    transcoder = make_transcoder(error=transcoder_error)
    pipeline = build(storage, transcoder, make_asr(error=asr_error), make_translation_backend())
    job = pipeline.new_job(origin=JobOrigin.STREAM, target_language="en")

    with pytest.raises(expected) as info:
        await pipeline.run_job(job, AUDIO)

    assert info.value.stage == stage
    assert job.state is AudioJobState.FAILED
    assert job.failed_stage == stage
    assert job.translated_text is None
    assert transcoder.source_existed == [True]
    assert not transcoder.sources_seen[0].exists()
    assert list(storage.staging_dir.iterdir()) == []


async def test_staging_failure_fails_job(storage, copy_transcoder, make_asr, make_translation_backend):
    pipeline = build(storage, copy_transcoder, make_asr(), make_translation_backend())
    job = pipeline.new_job(origin=JobOrigin.STREAM)

    with pytest.raises(StorageError):
        await pipeline.run_job(job, "%%% not base64 %%%")

    assert job.state is AudioJobState.FAILED
    assert job.failed_stage == "storage"
    assert copy_transcoder.sources_seen == []


async def test_translation_failure_is_not_fatal(storage, copy_transcoder, make_asr, make_translation_backend, caplog):
    pipeline = build(storage, copy_transcoder, make_asr("hola"), make_translation_backend(status_code=500))
    job = pipeline.new_job(origin=JobOrigin.UPLOAD, target_language="en")

    with caplog.at_level(logging.WARNING, logger="pipeline"):
        await pipeline.run_job(job, AUDIO)

    assert job.state is AudioJobState.COMPLETED
    assert job.transcript_text == "hola"
    assert job.translated_text is None
    assert job.translation_error
    assert "Translation failed" in caplog.text
    assert list(storage.staging_dir.iterdir()) == []


async def test_blank_transcript_skips_translation(storage, copy_transcoder, make_asr, make_translation_backend):
    requests = []
    pipeline = build(storage, copy_transcoder, make_asr("   "), make_translation_backend(requests=requests))
    job = pipeline.new_job(origin=JobOrigin.STREAM, target_language="en")

    await pipeline.run_job(job, AUDIO)

    assert job.state is AudioJobState.COMPLETED
    assert requests == []


async def test_release_runs_exactly_once(storage, failing_transcoder, make_asr, make_translation_backend):
    released = []
    original = storage.release

    def spy(path):
        released.append(path)
        original(path)

    storage.release = spy
    pipeline = build(storage, failing_transcoder, make_asr(), make_translation_backend())

    with pytest.raises(ConversionError):
        await pipeline.run_job(pipeline.new_job(origin=JobOrigin.STREAM), AUDIO)

    assert len(released) == 1


async def test_transcribed_hook_runs_before_translation(storage, copy_transcoder, make_asr, make_translation_backend):
    order = []

    class RecordingTranslation:
        async def translate(self, text, source_language="auto", target_language="en"):
            order.append("translate")
            return "hello"

    pipeline = build(storage, copy_transcoder, make_asr("hola"), RecordingTranslation())
    job = pipeline.new_job(origin=JobOrigin.STREAM, target_language="en")

    async def hook(done):
        assert done.state is AudioJobState.TRANSCRIBED
        order.append("transcribed")

    await pipeline.run_job(job, AUDIO, on_transcribed=hook)

    assert order == ["transcribed", "translate"]


async def test_concurrent_jobs_do_not_collide(storage, copy_transcoder, make_asr, make_translation_backend):
    pipeline = build(storage, copy_transcoder, make_asr("hola"), make_translation_backend())
    jobs = [pipeline.new_job(origin=JobOrigin.STREAM, target_language="auto") for _ in range(20)]

    await asyncio.gather(*(pipeline.run_job(job, AUDIO + bytes([i])) for i, job in enumerate(jobs)))

    names = {job.audio_file for job in jobs}
    assert len(names) == 20
    assert len(list(storage.audio_dir.iterdir())) == 20
    assert list(storage.staging_dir.iterdir()) == []


async def test_translate_text_validates_input(pipeline):
    with pytest.raises(ValidationError):
        await pipeline.translate_text("   ")
    assert await pipeline.translate_text("hola", target_language="en") == "hello world"


class GatedTranscoder:
    """Copies like ffmpeg would, but only once the test opens the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.entered = 0
        self.active = 0
        self.peak = 0

    async def convert(self, source, canonical):
        self.entered += 1
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.gate.wait()
            canonical.write_bytes(source.read_bytes())
            return canonical
        finally:
            self.active -= 1


async def _wait_for(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        assert asyncio.get_running_loop().time() < deadline, "condition not reached"
        await asyncio.sleep(0.01)


async def test_cancelled_job_fails_and_releases_staging(storage, make_asr, make_translation_backend):
    transcoder = GatedTranscoder()
    pipeline = build(storage, transcoder, make_asr(), make_translation_backend())
    job = pipeline.new_job(origin=JobOrigin.STREAM, target_language="en")

    task = asyncio.create_task(pipeline.run_job(job, AUDIO))
    await _wait_for(lambda: transcoder.entered == 1)
    assert len(list(storage.staging_dir.iterdir())) == 1

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert job.state is AudioJobState.FAILED
    assert job.failed_stage == "conversion"
    assert list(storage.staging_dir.iterdir()) == []


async def test_admission_limit_holds_extra_jobs(storage, make_asr, make_translation_backend):
    transcoder = GatedTranscoder()
    pipeline = build(storage, transcoder, make_asr("hola"), make_translation_backend())
    jobs = [pipeline.new_job(origin=JobOrigin.STREAM, target_language="auto") for _ in range(3)]

    tasks = [asyncio.create_task(pipeline.run_job(job, AUDIO)) for job in jobs]
    await _wait_for(lambda: transcoder.entered == 2)
    await asyncio.sleep(0.05)

    assert transcoder.entered == 2
    assert sum(job.state is AudioJobState.RECEIVED for job in jobs) == 1

    transcoder.gate.set()
    await asyncio.gather(*tasks)

    assert transcoder.entered == 3
    assert transcoder.peak == 2
    assert all(job.state is AudioJobState.COMPLETED for job in jobs)
