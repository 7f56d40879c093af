from __future__ import annotations

import http.client
import json
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any

import pytest

from annoku.server import AnnotationServer


@pytest.fixture(autouse=True)
def _isolate_annoku_files(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("ANNOKU_CONFIG", str(tmp_path / "config.json"))
    monkeypatch.setenv("ANNOKU_PORT_FILE", str(tmp_path / "annoku.port"))
    monkeypatch.setenv("ANNOKU_PERSIST_FILE", str(tmp_path / "annotations.json"))
    monkeypatch.setenv("ANNOTATION_PORT", "0")
    for name in (
        "ANNOKU_HOST",
        "ANNOKU_PERSIST",
        "ANNOKU_PORT_ATTEMPTS",
        "ANNOKU_PERSIST_DEBOUNCE_MS",
    ):
        monkeypatch.delenv(name, raising=False)


class Api:
    """Small http.client wrapper bound to one server port."""

    def __init__(self, port: int) -> None:
        self.port = port

    def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, http.client.HTTPResponse, Any]:
        conn = http.client.HTTPConnection("127.0.0.1", self.port, timeout=5)
        try:
            payload: bytes | None = None
            send_headers = dict(headers or {})
            if body is not None:
                payload = body if isinstance(body, bytes) else json.dumps(body).encode("utf-8")
                send_headers.setdefault("Content-Type", "application/json")
            conn.request(method, path, body=payload, headers=send_headers)
            resp = conn.getresponse()
            raw = resp.read()
            content_type = resp.getheader("Content-Type") or ""
            if raw and content_type.startswith("application/json"):
                return resp.status, resp, json.loads(raw.decode("utf-8"))
            return resp.status, resp, raw.decode("utf-8")
        finally:
            conn.close()

    def create(self, **fields: Any) -> str:
        body: dict[str, Any] = {"text": "note", "viewport": {"width": 800, "height": 600}}
        body.update(fields)
        status, _resp, payload = self.request("POST", "/annotations", body)
        assert status == 201, payload
        return payload["id"]


@pytest.fixture
def server() -> Iterator[AnnotationServer]:
    srv = AnnotationServer()
    srv.start()
    try:
        yield srv
    finally:
        srv.shutdown()


@pytest.fixture
def api(server: AnnotationServer) -> Api:
    port = server.get_port()
    assert port is not None
    return Api(port)


@pytest.fixture
def api_for() -> Callable[[int], Api]:
    return Api
