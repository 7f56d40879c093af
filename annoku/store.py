from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Callable, Iterable

from .errors import StoreFullError
from .models import Annotation, AnnotationDraft, now_iso
from .validation import validate_text

logger = logging.getLogger(__name__)

MAX_ANNOTATIONS = 50


class AnnotationStore:
    """In-memory, insertion-ordered annotation records with a hard capacity.

    Callers only ever receive copies. Every successful mutation invokes
    ``on_change`` after the lock is released so persistence can be scheduled.
    """

    def __init__(
        self,
        *,
        capacity: int = MAX_ANNOTATIONS,
        on_change: Callable[[], None] | None = None,
    ) -> None:
        self.capacity = capacity
        self.on_change = on_change
        self._lock = threading.RLock()
        self._records: dict[str, Annotation] = {}
        self._issued_ids: set[str] = set()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _new_id(self) -> str:
        while True:
            candidate = str(uuid.uuid4())
            if candidate not in self._issued_ids:
                self._issued_ids.add(candidate)
                return candidate

    def is_full(self) -> bool:
        with self._lock:
            return len(self._records) >= self.capacity

    def create(self, draft: AnnotationDraft) -> str:
        with self._lock:
            if len(self._records) >= self.capacity:
                raise StoreFullError(self.capacity)
            now = now_iso()
            annotation = Annotation(
                id=self._new_id(),
                url=draft.url,
                selector=draft.selector,
                selector_confidence=draft.selector_confidence,
                text=draft.text,
                status="open",
                viewport=copy.deepcopy(draft.viewport),
                react_source=copy.deepcopy(draft.react_source),
                screenshot=draft.screenshot,
                created_at=now,
                updated_at=now,
                elements=copy.deepcopy(draft.elements),
                anchor_point=copy.deepcopy(draft.anchor_point),
            )
            self._records[annotation.id] = annotation
        self._changed()
        return annotation.id

    def load(self, records: Iterable[Annotation]) -> int:
        """Hydrate from a snapshot without signalling a change; returns the count kept."""

        loaded = 0
        with self._lock:
            for record in records:
                if record.id in self._records:
                    continue
                if len(self._records) >= self.capacity:
                    logger.warning("snapshot exceeds capacity %d; dropping the rest", self.capacity)
                    break
                self._records[record.id] = copy.deepcopy(record)
                self._issued_ids.add(record.id)
                loaded += 1
        return loaded

    def get(self, annotation_id: str) -> Annotation | None:
        with self._lock:
            record = self._records.get(annotation_id)
            return copy.deepcopy(record) if record is not None else None

    def list(self) -> list[Annotation]:
        with self._lock:
            return [copy.deepcopy(record) for record in self._records.values()]

    def update_text(self, annotation_id: str, text: str | None) -> Annotation | None:
        """Replace the text (or only refresh ``updated_at`` when text is None)."""

        with self._lock:
            record = self._records.get(annotation_id)
            if record is None:
                return None
            if text is not None:
                record.text = validate_text(text)
            record.updated_at = now_iso()
            result = copy.deepcopy(record)
        self._changed()
        return result

    def resolve(self, annotation_id: str) -> Annotation | None:
        with self._lock:
            record = self._records.get(annotation_id)
            if record is None:
                return None
            record.status = "resolved"
            record.updated_at = now_iso()
            result = copy.deepcopy(record)
        self._changed()
        return result

    def delete(self, annotation_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(annotation_id, None)
        if removed is None:
            return False
        self._changed()
        return True

    def clear(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
        if count:
            self._changed()
        return count

    def snapshot(self) -> list[dict]:
        with self._lock:
            return [record.to_dict() for record in self._records.values()]
