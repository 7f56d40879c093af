from __future__ import annotations

import json
import socket
import struct
from collections.abc import Iterator, Mapping
from http.server import BaseHTTPRequestHandler
from typing import Any, BinaryIO
from urllib.parse import urlparse

from .errors import BodyTooLargeError, InvalidJSONError

MAX_BODY_BYTES = 64 * 1024
READ_CHUNK_BYTES = 16 * 1024
DEFAULT_ALLOWED_ORIGIN = "http://127.0.0.1"
ALLOWED_METHODS = "GET, POST, PATCH, DELETE, OPTIONS"

# urlparse strips the brackets from IPv6 literals, so "[::1]" shows up as "::1".
_ALLOWED_ORIGIN_HOSTS = {"localhost", "127.0.0.1", "::1"}
_ALLOWED_ORIGIN_SCHEMES = {"http", "https"}


def is_allowed_origin(origin: str | None) -> str | None:
    """Return ``origin`` unchanged when it names a loopback http(s) host, else None."""

    if not origin:
        return None
    try:
        parsed = urlparse(origin)
        hostname = parsed.hostname
        _ = parsed.port
    except ValueError:
        return None
    if parsed.scheme not in _ALLOWED_ORIGIN_SCHEMES:
        return None
    if hostname not in _ALLOWED_ORIGIN_HOSTS:
        return None
    return origin


def cors_headers(origin: str | None) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": is_allowed_origin(origin) or DEFAULT_ALLOWED_ORIGIN,
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": "Content-Type",
        "Vary": "Origin",
    }


def _send_cors_headers(handler: BaseHTTPRequestHandler) -> None:
    for name, value in cors_headers(handler.headers.get("Origin")).items():
        handler.send_header(name, value)


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: Any,
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False, allow_nan=False).encode("utf-8")
    handler.send_response(status)
    _send_cors_headers(handler)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def send_bytes_response(
    handler: BaseHTTPRequestHandler,
    body: bytes,
    *,
    content_type: str,
    status: int = 200,
) -> None:
    handler.send_response(status)
    _send_cors_headers(handler)
    handler.send_header("Content-Type", content_type)
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def send_empty_response(handler: BaseHTTPRequestHandler, status: int) -> None:
    handler.send_response(status)
    _send_cors_headers(handler)
    handler.send_header("Content-Length", "0")
    handler.end_headers()


def send_preflight_response(handler: BaseHTTPRequestHandler) -> None:
    send_empty_response(handler, 204)


def abort_connection(handler: BaseHTTPRequestHandler) -> None:
    """Drop the client connection without writing a response."""

    handler.close_connection = True
    try:
        # Zero linger turns the eventual close into a reset instead of a graceful FIN.
        handler.connection.setsockopt(
            socket.SOL_SOCKET, socket.SO_LINGER, struct.pack("ii", 1, 0)
        )
        handler.connection.shutdown(socket.SHUT_RDWR)
    except OSError:
        return


def _iter_fixed_length(rfile: BinaryIO, length: int) -> Iterator[bytes]:
    remaining = length
    while remaining > 0:
        chunk = rfile.read(min(READ_CHUNK_BYTES, remaining))
        if not chunk:
            return
        remaining -= len(chunk)
        yield chunk


def _iter_chunked(rfile: BinaryIO, limit: int) -> Iterator[bytes]:
    while True:
        size_line = rfile.readline(1024)
        if not size_line:
            return
        try:
            size = int(size_line.split(b";", 1)[0].strip() or b"0", 16)
        except ValueError as exc:
            raise InvalidJSONError("Malformed chunked body") from exc
        if size == 0:
            # Drain optional trailers up to the terminating blank line.
            while True:
                trailer = rfile.readline(1024)
                if not trailer or trailer in (b"\r\n", b"\n"):
                    return
        if size > limit:
            raise BodyTooLargeError(limit)
        yield from _iter_fixed_length(rfile, size)
        rfile.readline(2)


def read_request_body(
    rfile: BinaryIO,
    headers: Mapping[str, str],
    *,
    limit: int = MAX_BODY_BYTES,
) -> str:
    """Read a request body, raising BodyTooLargeError as soon as ``limit`` is crossed.

    The body is consumed in bounded chunks so an oversized payload is never
    fully buffered; a declared Content-Length over the limit fails before any
    byte is read.
    """

    transfer_encoding = (headers.get("Transfer-Encoding") or "").lower()
    if "chunked" in transfer_encoding:
        chunks = _iter_chunked(rfile, limit)
    else:
        try:
            length = int(headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        if length > limit:
            raise BodyTooLargeError(limit)
        chunks = _iter_fixed_length(rfile, max(0, length))

    buffer = bytearray()
    for chunk in chunks:
        if len(buffer) + len(chunk) > limit:
            raise BodyTooLargeError(limit)
        buffer.extend(chunk)
    return buffer.decode("utf-8", errors="replace")


def parse_json_object(raw: str) -> dict[str, Any]:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidJSONError() from exc
    if not isinstance(payload, dict):
        raise InvalidJSONError("JSON body must be an object")
    return payload
