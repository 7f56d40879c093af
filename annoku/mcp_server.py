from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

try:
    from mcp.server.fastmcp import FastMCP
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "mcp package is required for the MCP server. Install with `pip install -e .`"
    ) from exc

from .overlay import build_overlay_script
from .server import AnnotationServer

logger = logging.getLogger(__name__)

DEFAULT_WAIT_TIMEOUT_S = 300
MAX_WAIT_TIMEOUT_S = 600


class AnnotationTools:
    """Tool bodies shared by the MCP wrappers; each returns a JSON-able dict."""

    def __init__(self, server: AnnotationServer) -> None:
        self.server = server

    def start(self) -> Dict[str, Any]:
        return {"started": True, "port": self.server.start()}

    def stop(self) -> Dict[str, Any]:
        self.server.shutdown()
        return {"stopped": True}

    def port(self) -> Dict[str, Any]:
        return {"port": self.server.get_port()}

    def overlay_script(self, port: Optional[int] = None) -> str:
        resolved = port or self.server.get_port() or self.server.start()
        return build_overlay_script(resolved)

    def list_annotations(self) -> Dict[str, Any]:
        return {"items": [item.to_dict() for item in self.server.get_annotations()]}

    def resolve(self, annotation_id: str) -> Dict[str, Any]:
        resolved = self.server.resolve_annotation(annotation_id)
        if resolved is None:
            return {"error": "Annotation not found", "id": annotation_id}
        return resolved.to_dict()

    def delete(self, annotation_id: str) -> Dict[str, Any]:
        if not self.server.delete_annotation(annotation_id):
            return {"error": "Annotation not found", "id": annotation_id}
        return {"success": True, "id": annotation_id}

    def clear(self) -> Dict[str, Any]:
        return {"success": True, "deleted": self.server.clear_annotations()}

    def wait_for_send(self, timeout_s: int = DEFAULT_WAIT_TIMEOUT_S) -> Dict[str, Any]:
        timeout_s = max(1, min(MAX_WAIT_TIMEOUT_S, int(timeout_s)))
        if self.server.get_port() is None:
            self.server.start()
        result = self.server.wait_for_send(timeout_s * 1000)
        if not result.triggered:
            return {"sent": False, "count": 0, "annotations": []}
        open_items = [
            item.to_dict() for item in self.server.get_annotations() if item.status == "open"
        ]
        return {"sent": True, "count": len(open_items), "annotations": open_items}


def _log_send(count: int) -> None:
    if count > 0:
        logger.info("User clicked Send with %d open annotation(s).", count)
    else:
        logger.info("User clicked Send with no open annotations.")


def build_server(annotation_server: AnnotationServer | None = None) -> FastMCP:
    mcp = FastMCP("annoku")
    server = annotation_server or AnnotationServer()
    server.on_overlay_script(build_overlay_script)
    server.on_send_notify(_log_send)
    tools = AnnotationTools(server)

    @mcp.tool()
    def start_annotation_server() -> Dict[str, Any]:
        """Start the local annotation HTTP server (idempotent)."""
        return tools.start()

    @mcp.tool()
    def stop_annotation_server() -> Dict[str, Any]:
        """Stop the local annotation HTTP server."""
        return tools.stop()

    @mcp.tool()
    def get_annotation_port() -> Dict[str, Any]:
        """Get the current annotation server port, or null if not running."""
        return tools.port()

    @mcp.tool(name="build_overlay_script")
    def build_overlay_script_tool(port: Optional[int] = None) -> str:
        """Generate the browser-injected overlay script for the annotation server port."""
        return tools.overlay_script(port)

    @mcp.tool()
    def list_annotations() -> Dict[str, Any]:
        """List annotations currently stored in the local annotation server."""
        return tools.list_annotations()

    @mcp.tool()
    def resolve_annotation(id: str) -> Dict[str, Any]:  # noqa: A002
        """Resolve an annotation by id."""
        return tools.resolve(id)

    @mcp.tool()
    def delete_annotation(id: str) -> Dict[str, Any]:  # noqa: A002
        """Delete an annotation by id."""
        return tools.delete(id)

    @mcp.tool()
    def clear_annotations() -> Dict[str, Any]:
        """Clear all annotations from the server."""
        return tools.clear()

    @mcp.tool()
    async def wait_for_send(timeout: int = DEFAULT_WAIT_TIMEOUT_S) -> Dict[str, Any]:
        """Long-poll until the user clicks Send in the overlay, then return open annotations.

        ``timeout`` is in seconds (1-600).
        """
        return await asyncio.to_thread(tools.wait_for_send, timeout)

    mcp.annotation_server = server  # type: ignore[attr-defined]
    return mcp


def run() -> None:
    mcp = build_server()
    try:
        mcp.run()
    finally:
        mcp.annotation_server.shutdown()  # type: ignore[attr-defined]


if __name__ == "__main__":
    run()
