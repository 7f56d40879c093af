from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Iterator

import pytest

from annoku.mcp_server import AnnotationTools, build_server
from annoku.server import AnnotationServer


@pytest.fixture
def tools() -> Iterator[AnnotationTools]:
    server = AnnotationServer()
    try:
        yield AnnotationTools(server)
    finally:
        server.shutdown()


def test_start_port_stop(tools: AnnotationTools) -> None:
    assert tools.port() == {"port": None}
    started = tools.start()
    assert started["started"] is True
    assert tools.port() == {"port": started["port"]}
    assert tools.start()["port"] == started["port"]
    assert tools.stop() == {"stopped": True}
    assert tools.port() == {"port": None}


def test_overlay_script_starts_server_when_needed(tools: AnnotationTools) -> None:
    script = tools.overlay_script()
    port = tools.server.get_port()
    assert port is not None
    assert f"http://127.0.0.1:{port}" in script


def test_overlay_script_with_explicit_port(tools: AnnotationTools) -> None:
    script = tools.overlay_script(4321)
    assert "http://127.0.0.1:4321" in script
    assert tools.server.get_port() is None


def test_annotation_tools_round_trip(tools: AnnotationTools, api_for) -> None:
    port = tools.start()["port"]
    api = api_for(port)
    first = api.create(text="first")
    second = api.create(text="second")

    items = tools.list_annotations()["items"]
    assert [item["id"] for item in items] == [first, second]

    resolved = tools.resolve(first)
    assert resolved["status"] == "resolved"
    assert tools.resolve("missing") == {"error": "Annotation not found", "id": "missing"}

    assert tools.delete(second) == {"success": True, "id": second}
    assert tools.delete(second)["error"] == "Annotation not found"
    assert tools.clear() == {"success": True, "deleted": 1}
    assert tools.list_annotations() == {"items": []}


def test_wait_for_send_returns_open_annotations(tools: AnnotationTools, api_for) -> None:
    port = tools.start()["port"]
    api = api_for(port)
    done_id = api.create(text="already handled")
    open_id = api.create(text="please fix")
    tools.resolve(done_id)

    status, _resp, _payload = api.request("POST", "/annotations/send")
    assert status == 200

    result = tools.wait_for_send(5)
    assert result["sent"] is True
    assert result["count"] == 1
    assert [item["id"] for item in result["annotations"]] == [open_id]


def test_wait_for_send_wakes_on_click(tools: AnnotationTools, api_for) -> None:
    port = tools.start()["port"]
    api = api_for(port)
    api.create(text="pending")

    def click_send() -> None:
        time.sleep(0.2)
        api.request("POST", "/annotations/send")

    clicker = threading.Thread(target=click_send)
    clicker.start()
    started = time.monotonic()
    result = tools.wait_for_send(10)
    clicker.join()
    assert result["sent"] is True
    assert result["count"] == 1
    assert time.monotonic() - started < 5


def test_wait_for_send_clamps_timeout(tools: AnnotationTools, monkeypatch) -> None:
    seen: list[float] = []

    def fake_wait(timeout_ms: float):
        seen.append(timeout_ms)
        return tools.server.latch.wait(0)

    monkeypatch.setattr(tools.server, "wait_for_send", fake_wait)
    tools.wait_for_send(0)
    tools.wait_for_send(100_000)
    assert seen == [1000, 600_000]
    assert tools.server.is_running


def test_build_server_registers_tools() -> None:
    mcp = build_server()
    try:
        registered = asyncio.run(mcp.list_tools())
        names = {tool.name for tool in registered}
        assert names == {
            "start_annotation_server",
            "stop_annotation_server",
            "get_annotation_port",
            "build_overlay_script",
            "list_annotations",
            "resolve_annotation",
            "delete_annotation",
            "clear_annotations",
            "wait_for_send",
        }
    finally:
        mcp.annotation_server.shutdown()


def test_build_server_wires_overlay_route(api_for) -> None:
    annotation_server = AnnotationServer()
    build_server(annotation_server)
    port = annotation_server.start()
    try:
        status, _resp, body = api_for(port).request("GET", "/overlay.js")
        assert status == 200
        assert f"http://127.0.0.1:{port}" in body
    finally:
        annotation_server.shutdown()
