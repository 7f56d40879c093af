from __future__ import annotations

import asyncio
import dataclasses
import errno
import inspect
import logging
import os
import re
import threading
from collections.abc import Awaitable, Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import unquote, urlparse

from .config import AnnokuConfig, load_config
from .errors import BodyTooLargeError, StoreFullError, ValidationError
from .models import Annotation, RectDict
from .persistence import PersistenceManager
from .port_file import delete_port_file, write_port_file
from .send_latch import SendLatch, SendWaitResult
from .server_http import (
    abort_connection,
    parse_json_object,
    read_request_body,
    send_bytes_response,
    send_empty_response,
    send_json_response,
    send_preflight_response,
)
from .store import MAX_ANNOTATIONS, AnnotationStore
from .validation import validate_create_payload

logger = logging.getLogger(__name__)

MAX_SCREENSHOT_BYTES = 20 * 1024 * 1024

ScreenshotCallback = Callable[[RectDict], "str | None | Awaitable[str | None]"]
OverlayScriptBuilder = Callable[[int], str]
SendNotifyCallback = Callable[[int], None]

_ANNOTATION_PATH = re.compile(r"^/annotations/([^/]+)(/resolve)?$")


def _has_area(rect: RectDict) -> bool:
    width = rect["width"]
    height = rect["height"]
    return width is not None and height is not None and width > 0 and height > 0


class AnnotationHTTPServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, server_address: tuple[str, int], app: AnnotationServer) -> None:
        self.app = app
        super().__init__(server_address, AnnotationRequestHandler)


class AnnotationRequestHandler(BaseHTTPRequestHandler):
    server: AnnotationHTTPServer

    def log_message(self, format: str, *args: object) -> None:  # noqa: A002
        if os.environ.get("ANNOKU_HTTP_LOGS") == "1":
            logger.info("%s - %s", self.address_string(), format % args)

    def do_OPTIONS(self) -> None:  # noqa: N802
        send_preflight_response(self)

    def do_GET(self) -> None:  # noqa: N802
        self._handle("GET")

    def do_POST(self) -> None:  # noqa: N802
        self._handle("POST")

    def do_PATCH(self) -> None:  # noqa: N802
        self._handle("PATCH")

    def do_DELETE(self) -> None:  # noqa: N802
        self._handle("DELETE")

    def do_PUT(self) -> None:  # noqa: N802
        self._handle("PUT")

    def do_HEAD(self) -> None:  # noqa: N802
        # No HEAD routes; headers only, never a body.
        send_empty_response(self, 404)

    def _handle(self, method: str) -> None:
        try:
            self._route(method)
        except BodyTooLargeError as exc:
            logger.warning("%s; dropping connection", exc)
            abort_connection(self)
        except ValidationError as exc:
            send_json_response(self, {"error": exc.message}, status=400)
        except StoreFullError as exc:
            send_json_response(self, {"error": str(exc)}, status=429)
        except Exception:
            logger.exception("annotation server error")
            try:
                send_json_response(self, {"error": "Internal server error"}, status=500)
            except OSError:
                logger.debug("client went away before the error response was sent")

    def _read_json(self) -> dict[str, Any]:
        return parse_json_object(read_request_body(self.rfile, self.headers))

    def _route(self, method: str) -> None:
        app = self.server.app
        path = urlparse(self.path).path

        if method == "GET" and path == "/":
            send_json_response(
                self, {"status": "ok", "count": app.count(), "port": app.get_port()}
            )
            return

        if method == "GET" and path == "/overlay.js":
            script = app.render_overlay_script()
            if script is None:
                send_json_response(self, {"error": "Overlay script not available"}, status=503)
                return
            send_bytes_response(
                self, script.encode("utf-8"), content_type="application/javascript"
            )
            return

        if path == "/annotations":
            if method == "POST":
                self._create_annotation()
                return
            if method == "GET":
                send_json_response(self, [item.to_dict() for item in app.get_annotations()])
                return
            if method == "DELETE":
                deleted = app.clear_annotations()
                send_json_response(self, {"success": True, "deleted": deleted})
                return

        if method == "POST" and path == "/annotations/send":
            app.trigger_send()
            send_json_response(self, {"success": True})
            return

        match = _ANNOTATION_PATH.match(path)
        if match:
            annotation_id = unquote(match.group(1))
            is_resolve = match.group(2) is not None

            if method == "POST" and is_resolve:
                resolved = app.resolve_annotation(annotation_id)
                if resolved is None:
                    send_json_response(self, {"error": "Annotation not found"}, status=404)
                    return
                send_json_response(self, resolved.to_dict())
                return

            if method == "PATCH" and not is_resolve:
                if app.get_annotation(annotation_id) is None:
                    send_json_response(self, {"error": "Annotation not found"}, status=404)
                    return
                body = self._read_json()
                text = body.get("text")
                updated = app.update_annotation_text(
                    annotation_id, text if isinstance(text, str) else None
                )
                if updated is None:
                    send_json_response(self, {"error": "Annotation not found"}, status=404)
                    return
                send_json_response(self, updated.to_dict())
                return

            if method == "DELETE" and not is_resolve:
                if not app.delete_annotation(annotation_id):
                    send_json_response(self, {"error": "Annotation not found"}, status=404)
                    return
                send_json_response(self, {"success": True})
                return

        send_json_response(self, {"error": "Not found"}, status=404)

    def _create_annotation(self) -> None:
        app = self.server.app
        # Cheap early rejection; the store re-checks atomically on insert.
        if app.store.is_full():
            raise StoreFullError(app.store.capacity)
        draft = validate_create_payload(self._read_json())
        if draft.element_rect is not None:
            draft.screenshot = app.capture_screenshot(draft.element_rect.to_dict())
        annotation_id = app.store.create(draft)
        send_json_response(self, {"id": annotation_id}, status=201)


class AnnotationServer:
    """Loopback HTTP server owning one annotation store.

    Instances are independent: each has its own store, send latch, port file
    and snapshot file, so several can run side by side on distinct ports.
    """

    def __init__(self, config: AnnokuConfig | None = None, *, capacity: int = MAX_ANNOTATIONS) -> None:
        self._config = config
        self.store = AnnotationStore(capacity=capacity, on_change=self._on_store_change)
        self.latch = SendLatch()
        self._lifecycle_lock = threading.Lock()
        self._httpd: AnnotationHTTPServer | None = None
        self._thread: threading.Thread | None = None
        self._port: int | None = None
        self._active_config: AnnokuConfig | None = None
        self._persistence: PersistenceManager | None = None
        self._screenshot_callback: ScreenshotCallback | None = None
        self._screenshot_loop: asyncio.AbstractEventLoop | None = None
        self._overlay_builder: OverlayScriptBuilder | None = None
        self._send_notify: SendNotifyCallback | None = None

    # -- collaborator hooks -------------------------------------------------

    def on_screenshot(
        self,
        callback: ScreenshotCallback | None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        """Register the element screenshot capturer.

        Coroutine results run on ``loop`` when given (the loop must be running
        in another thread), otherwise on a private loop in the request thread.
        """

        self._screenshot_callback = callback
        self._screenshot_loop = loop

    def on_overlay_script(self, builder: OverlayScriptBuilder | None) -> None:
        self._overlay_builder = builder

    def on_send_notify(self, callback: SendNotifyCallback | None) -> None:
        self._send_notify = callback

    # -- lifecycle ------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._httpd is not None

    def get_port(self) -> int | None:
        return self._port

    def start(self, *, persist: bool | None = None, port: int | None = None) -> int:
        """Bind and serve in a background thread; returns the bound port.

        Calling ``start`` on a running server returns its current port.
        """

        with self._lifecycle_lock:
            if self._httpd is not None and self._port is not None:
                return self._port

            cfg = dataclasses.replace(self._config or load_config())
            if port is not None:
                cfg.port = port
            if persist is not None:
                cfg.persist = persist

            persistence = PersistenceManager(
                cfg.persist_file_path(),
                self.store.snapshot,
                enabled=cfg.persist,
                debounce_ms=cfg.persist_debounce_ms,
            )
            if persistence.enabled:
                loaded = self.store.load(persistence.load())
                if loaded:
                    logger.info("restored %d annotation(s) from %s", loaded, persistence.path)

            httpd = self._bind(cfg)
            bound_port = int(httpd.server_address[1])
            thread = threading.Thread(
                target=httpd.serve_forever,
                name=f"annoku-http-{bound_port}",
                daemon=True,
            )
            self._httpd = httpd
            self._thread = thread
            self._port = bound_port
            self._active_config = cfg
            self._persistence = persistence
            thread.start()
            write_port_file(bound_port, cfg.port_file_path())
            logger.info("annotation server listening on port %d", bound_port)
            return bound_port

    def _bind(self, cfg: AnnokuConfig) -> AnnotationHTTPServer:
        ports = cfg.candidate_ports()
        for candidate in ports:
            try:
                return AnnotationHTTPServer((cfg.host, candidate), self)
            except OSError as exc:
                if exc.errno == errno.EADDRINUSE:
                    logger.warning("port %d in use, trying next", candidate)
                    continue
                raise
        tried = ", ".join(str(p) for p in ports)
        raise RuntimeError(f"Could not bind annotation server on ports {tried}")

    def shutdown(self) -> None:
        """Stop serving, flush any pending snapshot and remove the port file."""

        with self._lifecycle_lock:
            httpd = self._httpd
            if httpd is None:
                return
            httpd.shutdown()
            httpd.server_close()
            if self._thread is not None:
                self._thread.join(timeout=5)
            if self._persistence is not None:
                self._persistence.close()
            if self._active_config is not None:
                delete_port_file(self._active_config.port_file_path())
            self._httpd = None
            self._thread = None
            self._port = None
            self._persistence = None
            self._active_config = None
            logger.info("annotation server stopped")

    def _on_store_change(self) -> None:
        persistence = self._persistence
        if persistence is not None:
            persistence.schedule()

    # -- annotation operations ---------------------------------------------

    def count(self) -> int:
        return len(self.store)

    def get_annotations(self) -> list[Annotation]:
        return self.store.list()

    def get_annotation(self, annotation_id: str) -> Annotation | None:
        return self.store.get(annotation_id)

    def update_annotation_text(self, annotation_id: str, text: str | None) -> Annotation | None:
        return self.store.update_text(annotation_id, text)

    def resolve_annotation(self, annotation_id: str) -> Annotation | None:
        return self.store.resolve(annotation_id)

    def delete_annotation(self, annotation_id: str) -> bool:
        return self.store.delete(annotation_id)

    def clear_annotations(self) -> int:
        return self.store.clear()

    # -- send latch -----------------------------------------------------------

    def trigger_send(self) -> bool:
        woke_waiter = self.latch.trigger()
        notify = self._send_notify
        if notify is not None:
            open_count = sum(1 for item in self.store.list() if item.status == "open")
            try:
                notify(open_count)
            except Exception:
                logger.exception("send notification callback failed")
        return woke_waiter

    def consume_sent_state(self) -> bool:
        return self.latch.consume()

    def wait_for_send(self, timeout_ms: float) -> SendWaitResult:
        return self.latch.wait(timeout_ms)

    # -- collaborators --------------------------------------------------------

    def render_overlay_script(self) -> str | None:
        builder = self._overlay_builder
        if builder is None or self._port is None:
            return None
        return builder(self._port)

    def capture_screenshot(self, rect: RectDict) -> str | None:
        """Ask the registered callback for a screenshot; any failure means no screenshot."""

        callback = self._screenshot_callback
        if callback is None or not _has_area(rect):
            return None
        try:
            result = callback(rect)
            if inspect.isawaitable(result):
                result = self._resolve_awaitable(result)
        except Exception as exc:
            logger.warning("screenshot capture failed: %s", exc)
            return None
        if result is None:
            return None
        if not isinstance(result, str):
            logger.warning("screenshot callback returned %s, ignoring", type(result).__name__)
            return None
        if len(result) > MAX_SCREENSHOT_BYTES:
            logger.warning("screenshot too large (%d bytes), discarding", len(result))
            return None
        return result

    def _resolve_awaitable(self, awaitable: Awaitable[str | None]) -> str | None:
        async def _await() -> str | None:
            return await awaitable

        loop = self._screenshot_loop
        if loop is not None and loop.is_running():
            return asyncio.run_coroutine_threadsafe(_await(), loop).result()
        return asyncio.run(_await())
