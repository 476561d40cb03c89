from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class StoredArtifact(BaseModel):
    """Catalog entry for a persisted canonical artifact, derived from a directory listing."""

    filename: str
    size: int
    created: datetime
    modified: datetime
