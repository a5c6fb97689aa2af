"""HTTP-level tests for the /api/log client error sink."""

import logging

from fastapi import FastAPI
from fastapi.testclient import TestClient

from logbook.api.routers import log_router


def _build_client() -> TestClient:
    app = FastAPI()
    app.include_router(log_router, prefix="/api")
    return TestClient(app)


class TestClientLogEndpoint:
    def test_report_is_logged(self, caplog):
        client = _build_client()

        with caplog.at_level(logging.WARNING, logger="logbook.api.routers.log"):
            resp = client.post(
                "/api/log",
                json={"context": "push:txns", "message": "HTTP 503", "ts": "2024-05-01T10:00:00Z"},
            )

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert "[push:txns] HTTP 503" in caplog.text
        assert "2024-05-01T10:00:00Z" in caplog.text

    def test_unparseable_body_is_still_acknowledged(self, caplog):
        client = _build_client()

        with caplog.at_level(logging.WARNING, logger="logbook.api.routers.log"):
            resp = client.post("/api/log", content=b"plain text crash", headers={"Content-Type": "text/plain"})

        assert resp.status_code == 200
        assert resp.json() == {"ok": True}
        assert "[unknown] plain text crash" in caplog.text

    def test_other_methods_not_allowed(self):
        client = _build_client()

        assert client.get("/api/log").status_code == 405
        assert client.put("/api/log", json={}).status_code == 405
