from __future__ import annotations

import math
from typing import Any

from .errors import ValidationError
from .models import (
    AnnotationDraft,
    AnnotationElement,
    Point,
    ReactSource,
    Rect,
    Viewport,
    coerce_confidence,
    coerce_number,
)

MAX_TEXT_LENGTH = 10 * 1024
MAX_SELECTOR_LENGTH = 2048
MAX_VIEWPORT_DIM = 100_000


def _as_text(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def validate_text(text: str) -> str:
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(
            "text", f"Text exceeds maximum length of {MAX_TEXT_LENGTH} characters"
        )
    return text


def _validate_selector(selector: str, *, field: str, label: str) -> str:
    if len(selector) > MAX_SELECTOR_LENGTH:
        raise ValidationError(
            field, f"{label} exceeds maximum length of {MAX_SELECTOR_LENGTH} characters"
        )
    return selector


def _validate_viewport(value: object) -> Viewport:
    viewport = Viewport.from_value(value)
    for dim in (viewport.width, viewport.height):
        if not math.isfinite(dim) or dim < 0 or dim > MAX_VIEWPORT_DIM:
            raise ValidationError("viewport", "Invalid viewport dimensions")
    return viewport


def _parse_elements(value: object) -> list[AnnotationElement] | None:
    if not isinstance(value, list):
        return None
    raw_items = [item if isinstance(item, dict) else {} for item in value]
    # Every selector is checked before any element is built.
    for item in raw_items:
        _validate_selector(
            _as_text(item.get("selector")),
            field="elements.selector",
            label="Element selector",
        )
    return [
        AnnotationElement(
            selector=_as_text(item.get("selector")),
            selector_confidence=coerce_confidence(item.get("selectorConfidence")),
            react_source=ReactSource.from_value(item.get("reactSource")),
            element_rect=Rect.from_value(item.get("elementRect")),
        )
        for item in raw_items
    ]


def validate_create_payload(body: dict[str, Any]) -> AnnotationDraft:
    """Turn an untyped create body into a draft, or raise ValidationError.

    Nothing is returned until every field passes, so a failed payload never
    reaches the store.
    """

    text = validate_text(_as_text(body.get("text")))
    url = body.get("url")
    if "url" in body and not isinstance(url, str):
        raise ValidationError("url", "url must be a string")
    selector = _validate_selector(
        _as_text(body.get("selector")), field="selector", label="Selector"
    )
    elements = _parse_elements(body.get("elements"))
    viewport = _validate_viewport(body.get("viewport"))

    raw_rect = body.get("elementRect")
    return AnnotationDraft(
        url=url or "",
        selector=selector,
        selector_confidence=coerce_confidence(body.get("selectorConfidence")),
        text=text,
        viewport=viewport,
        react_source=ReactSource.from_value(body.get("reactSource")),
        elements=elements,
        anchor_point=Point.from_value(body.get("anchorPoint")),
        element_rect=Rect.from_value(raw_rect) if isinstance(raw_rect, dict) else None,
    )
