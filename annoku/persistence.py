from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .debounce import DebouncedTask
from .fs_paths import write_private_json
from .models import Annotation

logger = logging.getLogger(__name__)

PERSIST_DEBOUNCE_MS = 300


def load_snapshot(path: Path) -> list[Annotation]:
    """Read a snapshot file; anything missing or malformed yields an empty list."""

    try:
        raw = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except OSError as exc:
        logger.warning("could not read annotation snapshot %s: %s", path, exc)
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("ignoring malformed annotation snapshot %s", path)
        return []
    if not isinstance(data, list):
        logger.warning("ignoring annotation snapshot %s: expected a JSON array", path)
        return []
    records: list[Annotation] = []
    for item in data:
        if not isinstance(item, dict):
            continue
        try:
            records.append(Annotation.from_dict(item))
        except ValueError:
            continue
    return records


class PersistenceManager:
    """Debounced whole-store snapshots to a JSON file.

    ``snapshot`` supplies the full record set at flush time. A disabled
    manager never touches the filesystem.
    """

    def __init__(
        self,
        path: Path,
        snapshot: Callable[[], list[dict[str, Any]]],
        *,
        enabled: bool,
        debounce_ms: int = PERSIST_DEBOUNCE_MS,
    ) -> None:
        self.path = path
        self.enabled = enabled
        self._snapshot = snapshot
        self._write_lock = threading.Lock()
        self._task = DebouncedTask(self.flush, debounce_ms)

    @property
    def pending(self) -> bool:
        return self._task.pending

    def load(self) -> list[Annotation]:
        if not self.enabled:
            return []
        return load_snapshot(self.path)

    def schedule(self) -> None:
        if not self.enabled:
            return
        self._task.arm()

    def flush(self) -> bool:
        """Write the current snapshot now; returns False when disabled or the write failed."""

        if not self.enabled:
            return False
        self._task.cancel()
        with self._write_lock:
            try:
                self._write(self._snapshot())
            except (OSError, ValueError):
                logger.exception("failed to write annotation snapshot %s", self.path)
                return False
        return True

    def close(self) -> None:
        if not self.enabled:
            return
        self._task.cancel()
        self.flush()

    def _write(self, records: list[dict[str, Any]]) -> None:
        write_private_json(self.path, records)
