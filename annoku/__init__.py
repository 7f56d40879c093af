"""annoku: local annotation server shared by a browser overlay and an agent."""

from __future__ import annotations

from .port_file import PortFileData, read_port_file
from .server import AnnotationServer
from .server_http import is_allowed_origin

__version__ = "0.1.0"

__all__ = [
    "AnnotationServer",
    "PortFileData",
    "__version__",
    "is_allowed_origin",
    "read_port_file",
]
