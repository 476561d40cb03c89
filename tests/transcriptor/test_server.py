from src.transcriptor import server
from src.transcriptor.config import settings


def test_ws_frame_limit_covers_base64_payload():
    limit = server.ws_frame_limit(3 * 1024 * 1024)

    assert limit > 4 * 1024 * 1024


def test_main_raises_uvicorn_frame_limit(monkeypatch):
    calls = []
    monkeypatch.setattr(server.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))
    monkeypatch.setattr(server, "configure_logging", lambda: None)

    server.main()

    (args, kwargs), = calls
    assert args == ("src.transcriptor.main:app",)
    assert kwargs["port"] == settings.port
    assert kwargs["ws_max_size"] == server.ws_frame_limit(settings.max_ws_bytes)
    assert kwargs["ws_max_size"] > settings.max_ws_bytes * 4 // 3
