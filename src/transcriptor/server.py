from __future__ import annotations

import uvicorn

from src.transcriptor.config import settings
from src.transcriptor.logging_config import configure_logging

# Room for the JSON envelope around a base64 audio payload.
_WS_ENVELOPE_SLACK = 64 * 1024


def ws_frame_limit(max_ws_bytes: int) -> int:
    """Largest WebSocket frame to accept for a payload of ``max_ws_bytes`` audio bytes.

    Frames must get through the server so oversized payloads are answered
    with a validation error instead of a bare close.
    """

    return max_ws_bytes * 4 // 3 + _WS_ENVELOPE_SLACK


def main() -> None:
    """Serve the HTTP and WebSocket API on the configured host and port."""

    configure_logging()
    uvicorn.run(
        "src.transcriptor.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        ws_max_size=ws_frame_limit(settings.max_ws_bytes),
    )


if __name__ == "__main__":
    main()
