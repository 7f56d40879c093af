from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def ensure_path(path: str | Path) -> Path:
    resolved = Path(path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved


def write_private_json(path: str | Path, payload: Any) -> Path:
    """Atomically replace ``path`` with pretty JSON readable only by the owner."""

    target = ensure_path(path)
    tmp_path = target.with_name(f"{target.name}.{os.getpid()}.tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(
                json.dumps(payload, ensure_ascii=False, indent=2, allow_nan=False) + "\n"
            )
        os.replace(tmp_path, target)
    except BaseException:
        try:
            tmp_path.unlink()
        except FileNotFoundError:
            pass
        raise
    return target
