from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import List, Optional, Protocol

from src.transcriptor.config import settings
from src.transcriptor.errors import ConversionError

logger = logging.getLogger("transcoder")

# Canonical artifact format: mono, 16 kHz, 128 kbps MP3.
CANONICAL_CHANNELS = 1
CANONICAL_SAMPLE_RATE = 16_000
CANONICAL_BITRATE = "128k"
CANONICAL_CODEC = "libmp3lame"

_STDERR_TAIL = 2000


class Transcoder(Protocol):
    async def convert(self, source: Path, canonical: Path) -> Path:  # pragma: no cover - interface
        raise NotImplementedError


class FfmpegTranscoder:
    """Converts arbitrary input audio into the canonical MP3 form with ffmpeg.

    Output goes to a hidden ``.part`` sibling and is moved into place only after
    ffmpeg exits cleanly, so the persistent directory never exposes a partial
    artifact.
    """

    def __init__(
        self,
        *,
        binary: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self._binary = binary or settings.ffmpeg_binary
        self._timeout = timeout_seconds if timeout_seconds is not None else settings.conversion_timeout_seconds
        self._semaphore = asyncio.Semaphore(max(1, max_concurrency or settings.max_concurrent_jobs))

    def build_command(self, source: Path, dest: Path) -> List[str]:
        return [
            self._binary,
            "-nostdin",
            "-hide_banner",
            "-loglevel",
            "error",
            "-y",
            "-i",
            str(source),
            "-vn",
            "-ac",
            str(CANONICAL_CHANNELS),
            "-ar",
            str(CANONICAL_SAMPLE_RATE),
            "-codec:a",
            CANONICAL_CODEC,
            "-b:a",
            CANONICAL_BITRATE,
            "-f",
            "mp3",
            str(dest),
        ]

    async def convert(self, source: Path, canonical: Path) -> Path:
        partial = canonical.with_name(f".{canonical.name}.part")
        async with self._semaphore:
            try:
                await self._run(self.build_command(source, partial))
                os.replace(partial, canonical)
            except OSError as exc:
                raise ConversionError(f"Failed to finalize converted audio: {exc}") from exc
            finally:
                if partial.exists():
                    partial.unlink(missing_ok=True)

        logger.info("Audio conversion completed: %s", canonical.name)
        return canonical

    async def _run(self, command: List[str]) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise ConversionError(f"Audio converter not found: {command[0]}") from exc
        except OSError as exc:
            raise ConversionError(f"Cannot start audio converter {command[0]}: {exc}") from exc

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            await self._reap(process)
            raise ConversionError(f"Audio conversion timed out after {self._timeout:g}s") from exc
        except asyncio.CancelledError:
            # The job was abandoned; ffmpeg must not outlive the concurrency slot.
            await self._reap(process)
            raise

        if process.returncode != 0:
            diagnostic = (stderr or b"").decode("utf-8", errors="replace").strip()[-_STDERR_TAIL:]
            logger.error("ffmpeg exited with %s: %s", process.returncode, diagnostic)
            raise ConversionError(diagnostic or f"ffmpeg exited with status {process.returncode}")

    @staticmethod
    async def _reap(process: asyncio.subprocess.Process) -> None:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        await asyncio.shield(process.wait())


transcoder: Transcoder = FfmpegTranscoder()
