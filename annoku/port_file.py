from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import load_config
from .fs_paths import write_private_json
from .models import now_iso


@dataclass(frozen=True)
class PortFileData:
    port: int
    pid: int
    started_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"port": self.port, "pid": self.pid, "startedAt": self.started_at}


def get_port_file_path(path: Path | None = None) -> Path:
    if path is not None:
        return path.expanduser()
    return load_config().port_file_path()


def write_port_file(port: int, path: Path | None = None) -> PortFileData:
    data = PortFileData(port=port, pid=os.getpid(), started_at=now_iso())
    write_private_json(get_port_file_path(path), data.to_dict())
    return data


def delete_port_file(path: Path | None = None) -> None:
    try:
        get_port_file_path(path).unlink()
    except FileNotFoundError:
        return


def read_port_file(path: Path | None = None) -> PortFileData | None:
    """Discover the last started server; returns None instead of raising."""

    try:
        raw = get_port_file_path(path).read_text(encoding="utf-8")
        data = json.loads(raw)
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    port = data.get("port")
    pid = data.get("pid")
    started_at = data.get("startedAt")
    if not isinstance(port, int) or isinstance(port, bool):
        return None
    if not isinstance(pid, int) or isinstance(pid, bool):
        return None
    return PortFileData(port=port, pid=pid, started_at=str(started_at or ""))


def pid_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return False
    return True
