from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator

from src.transcriptor.errors import InternalError

AUTO_DETECT = "auto"


class AudioJobState(str, Enum):
    RECEIVED = "RECEIVED"
    STAGED = "STAGED"
    CONVERTED = "CONVERTED"
    TRANSCRIBED = "TRANSCRIBED"
    TRANSLATED = "TRANSLATED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class JobOrigin(str, Enum):
    STREAM = "stream"
    UPLOAD = "upload"


TERMINAL_STATES: FrozenSet[AudioJobState] = frozenset({AudioJobState.COMPLETED, AudioJobState.FAILED})

# FAILED is reachable from every non-terminal state and is handled separately.
_FORWARD: Dict[AudioJobState, FrozenSet[AudioJobState]] = {
    AudioJobState.RECEIVED: frozenset({AudioJobState.STAGED}),
    AudioJobState.STAGED: frozenset({AudioJobState.CONVERTED}),
    AudioJobState.CONVERTED: frozenset({AudioJobState.TRANSCRIBED}),
    AudioJobState.TRANSCRIBED: frozenset({AudioJobState.TRANSLATED, AudioJobState.COMPLETED}),
    AudioJobState.TRANSLATED: frozenset({AudioJobState.COMPLETED}),
}


class AudioJob(BaseModel):
    """Lifecycle record for a single audio submission.

    Jobs are not stored anywhere; the record lives only as long as the request
    or streaming message that created it.
    """

    id: UUID = Field(default_factory=uuid4)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    origin: JobOrigin
    # Opaque caller-supplied correlation token, echoed back as given; falls back to the job id.
    session_id: Optional[Union[str, int]] = None

    source_path: Optional[Path] = None  # Staged, pre-conversion input
    canonical_path: Optional[Path] = None  # Converted artifact, retained after the job

    source_language: str = AUTO_DETECT
    target_language: Optional[str] = None

    state: AudioJobState = AudioJobState.RECEIVED
    transcript_text: Optional[str] = None
    translated_text: Optional[str] = None

    failed_stage: Optional[str] = None
    error_message: Optional[str] = None
    translation_error: Optional[str] = None

    @model_validator(mode="after")
    def _default_session_id(self) -> "AudioJob":
        if self.session_id is None or self.session_id == "":
            self.session_id = str(self.id)
        return self

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def audio_file(self) -> Optional[str]:
        return self.canonical_path.name if self.canonical_path else None

    @property
    def wants_translation(self) -> bool:
        return bool(self.target_language) and self.target_language != AUTO_DETECT

    def advance(self, new_state: AudioJobState) -> None:
        """Move the job forward, refusing re-entry and backwards moves."""

        if self.is_terminal:
            raise InternalError(f"Job {self.id} is already {self.state.value}; cannot move to {new_state.value}")
        if new_state is AudioJobState.FAILED or new_state in _FORWARD[self.state]:
            self.state = new_state
            return
        raise InternalError(f"Illegal job transition {self.state.value} -> {new_state.value}")

    def fail(self, stage: str, message: str) -> None:
        self.failed_stage = stage
        self.error_message = message
        self.advance(AudioJobState.FAILED)
