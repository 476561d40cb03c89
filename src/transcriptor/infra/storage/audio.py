from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, List, Optional, Protocol, Union
from uuid import uuid4

from src.transcriptor.config import settings
from src.transcriptor.domain.models.stored_artifact import StoredArtifact
from src.transcriptor.errors import (
    ArtifactNotFoundError,
    PayloadTooLargeError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger("storage")

STREAM_PREFIX = "audio"
UPLOAD_PREFIX = "uploaded"
CANONICAL_EXTENSION = ".mp3"
LISTED_EXTENSIONS = (".mp3", ".wav")

# Sole guard against path traversal for caller-supplied names. fullmatch is
# used so a trailing newline cannot slip past "$".
FILENAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+\.(mp3|wav)")

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*?;base64,")
_SAFE_SUFFIX = re.compile(r"\.[A-Za-z0-9]{1,8}")
_CHUNK_SIZE = 1024 * 1024

AudioPayload = Union[bytes, bytearray, str]


class AsyncReadable(Protocol):
    """Anything exposing ``await read(size)``, e.g. FastAPI's UploadFile."""

    def read(self, size: int = -1) -> Awaitable[bytes]:  # pragma: no cover - interface
        ...


def is_valid_filename(filename: str) -> bool:
    return isinstance(filename, str) and FILENAME_PATTERN.fullmatch(filename) is not None


def safe_suffix(filename: Optional[str], default: str = ".wav") -> str:
    """Return the extension of *filename* if it is short and alphanumeric."""

    if not filename:
        return default
    suffix = Path(filename).suffix
    return suffix.lower() if _SAFE_SUFFIX.fullmatch(suffix) else default


def decode_payload(data: AudioPayload) -> bytes:
    """Turn an ingress payload into raw audio bytes.

    Binary payloads pass through. Text payloads are base64, optionally wrapped
    in a ``data:<mime>;base64,`` URL as produced by browser recorders.
    """

    if isinstance(data, (bytes, bytearray)):
        raw = bytes(data)
    elif isinstance(data, str):
        encoded = _DATA_URL_PREFIX.sub("", data.strip(), count=1)
        encoded = "".join(encoded.split())
        try:
            raw = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise StorageError(f"Invalid base64 audio payload: {exc}") from exc
    else:
        raise StorageError(f"Unsupported audio payload type: {type(data).__name__}")

    if not raw:
        raise ValidationError("No audio data provided")
    return raw


class AudioStorageBackend(ABC):
    @abstractmethod
    async def stage(self, data: AudioPayload, *, suffix: str = ".wav") -> Path:
        """Decode a payload and write it to a fresh staging file."""

    @abstractmethod
    async def stage_stream(self, source: AsyncReadable, *, suffix: str = ".wav", max_bytes: Optional[int] = None) -> Path:
        """Copy an uploaded body into a fresh staging file, enforcing a size limit."""

    @abstractmethod
    def reserve_canonical_name(self, prefix: str) -> Path:
        """Return a collision-free path for a new canonical artifact."""

    @abstractmethod
    def list_artifacts(self) -> List[StoredArtifact]:
        """Enumerate persisted artifacts, newest first."""

    @abstractmethod
    def resolve(self, filename: str) -> Path:
        """Validate a caller-supplied name and map it to a persisted artifact."""

    @abstractmethod
    def release(self, path: Optional[Path]) -> None:
        """Best-effort, idempotent deletion of a staging file."""


class LocalAudioStorageBackend(AudioStorageBackend):
    """Filesystem storage split into a persistent and a staging directory.

    Names are unique by construction (millisecond timestamp plus uuid4), so
    concurrent jobs never need to lock either directory.
    """

    def __init__(self, audio_dir: Optional[Path] = None, staging_dir: Optional[Path] = None) -> None:
        self._audio_dir: Path = Path(audio_dir or settings.audio_dir)
        self._staging_dir: Path = Path(staging_dir or settings.staging_dir)
        self._audio_dir.mkdir(parents=True, exist_ok=True)
        self._staging_dir.mkdir(parents=True, exist_ok=True)

    @property
    def audio_dir(self) -> Path:
        return self._audio_dir

    @property
    def staging_dir(self) -> Path:
        return self._staging_dir

    def _staging_path(self, suffix: str) -> Path:
        return self._staging_dir / f"temp_{int(time.time() * 1000)}_{uuid4().hex}{suffix}"

    async def stage(self, data: AudioPayload, *, suffix: str = ".wav") -> Path:
        raw = decode_payload(data)
        dest = self._staging_path(suffix)
        try:
            self._staging_dir.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(dest.write_bytes, raw)
        except OSError as exc:
            self.release(dest)
            raise StorageError(f"Failed to stage audio: {exc}") from exc
        logger.debug("Staged %d bytes at %s", len(raw), dest)
        return dest

    async def stage_stream(self, source: AsyncReadable, *, suffix: str = ".wav", max_bytes: Optional[int] = None) -> Path:
        limit = settings.max_upload_bytes if max_bytes is None else max_bytes
        dest = self._staging_path(suffix)
        total = 0
        try:
            self._staging_dir.mkdir(parents=True, exist_ok=True)
            with dest.open("wb") as fh:
                while True:
                    chunk = await source.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    total += len(chunk)
                    if total > limit:
                        raise PayloadTooLargeError(f"Audio payload exceeds {limit} bytes")
                    await asyncio.to_thread(fh.write, chunk)
        except PayloadTooLargeError:
            self.release(dest)
            raise
        except OSError as exc:
            self.release(dest)
            raise StorageError(f"Failed to stage uploaded audio: {exc}") from exc
        except BaseException:
            self.release(dest)
            raise

        if total == 0:
            self.release(dest)
            raise ValidationError("No audio data provided")
        logger.debug("Staged %d uploaded bytes at %s", total, dest)
        return dest

    def reserve_canonical_name(self, prefix: str) -> Path:
        filename = f"{prefix}_{int(time.time() * 1000)}_{uuid4()}{CANONICAL_EXTENSION}"
        return self._audio_dir / filename

    def list_artifacts(self) -> List[StoredArtifact]:
        try:
            entries = [p for p in self._audio_dir.iterdir() if p.name.endswith(LISTED_EXTENSIONS)]
            artifacts = []
            for path in entries:
                try:
                    stats = path.stat()
                except FileNotFoundError:
                    # Removed out-of-band between listing and stat.
                    continue
                created = getattr(stats, "st_birthtime", stats.st_ctime)
                artifacts.append(
                    StoredArtifact(
                        filename=path.name,
                        size=stats.st_size,
                        created=datetime.fromtimestamp(created, tz=timezone.utc),
                        modified=datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc),
                    )
                )
        except OSError as exc:
            raise StorageError(f"Failed to list audio files: {exc}") from exc

        artifacts.sort(key=lambda a: a.created, reverse=True)
        return artifacts

    def resolve(self, filename: str) -> Path:
        if not is_valid_filename(filename):
            raise ValidationError("Invalid filename")
        path = self._audio_dir / filename
        if not path.is_file():
            raise ArtifactNotFoundError(f"Audio file not found: {filename}")
        return path

    def release(self, path: Optional[Path]) -> None:
        if path is None:
            return
        try:
            Path(path).unlink()
        except FileNotFoundError:
            return
        except OSError:
            logger.warning("Failed to clean up staging file %s", path, exc_info=True)


audio_storage_backend: AudioStorageBackend = LocalAudioStorageBackend()
