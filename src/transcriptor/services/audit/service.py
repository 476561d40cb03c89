from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger("audit")


@dataclass
class AuditEvent:
    """Structured representation of an audit event.

    Intentionally keeps payload minimal: IDs, filenames, sizes and stage names,
    never transcript text or audio content.
    """

    timestamp: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class AuditService:
    def log_event(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Log a structured audit event as a single JSON line.

        - `action`: high-level verb, e.g., "job_completed", "artifact_downloaded".
        - `resource_type`: coarse type, e.g., "audio_job", "audio_artifact".
        - `resource_id`: stable identifier (job UUID or filename) when available.
        - `extra`: optional small dict of metadata (counts, flags, stage).
        """

        event = AuditEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            extra=extra,
        )

        payload = asdict(event)
        try:
            logger.info(json.dumps(payload))
        except TypeError:
            # Something in extra is not JSON serializable; keep the envelope.
            payload["extra"] = None
            logger.info(json.dumps(payload))
        return event


audit_service = AuditService()
