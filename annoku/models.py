from __future__ import annotations

import datetime as dt
import math
from dataclasses import dataclass, field
from typing import Any, Literal, TypedDict

SelectorConfidence = Literal["stable", "fragile"]
AnnotationStatus = Literal["open", "resolved"]


class RectDict(TypedDict):
    x: float | None
    y: float | None
    width: float | None
    height: float | None


def now_iso() -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""

    stamp = dt.datetime.now(dt.UTC).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def coerce_number(value: object, default: float = 0) -> float:
    """Loose numeric coercion for browser payloads; unparseable values become NaN."""

    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        number = value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        try:
            number = float(text)
        except ValueError:
            return math.nan
    else:
        return math.nan
    if math.isfinite(number) and number.is_integer():
        return int(number)
    return number


def json_number(value: float) -> float | None:
    """Non-finite numbers have no JSON spelling; they serialize as null."""

    return value if math.isfinite(value) else None


def coerce_confidence(value: object) -> SelectorConfidence:
    return "stable" if value == "stable" else "fragile"


@dataclass
class ReactSource:
    component: str
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"component": self.component}
        if self.source is not None:
            data["source"] = self.source
        return data

    @classmethod
    def from_value(cls, value: object) -> ReactSource | None:
        if not isinstance(value, dict):
            return None
        component = value.get("component")
        if not component:
            return None
        source = value.get("source")
        return cls(component=str(component), source=str(source) if source else None)


@dataclass
class Rect:
    x: float = 0
    y: float = 0
    width: float = 0
    height: float = 0

    def to_dict(self) -> RectDict:
        return {
            "x": json_number(self.x),
            "y": json_number(self.y),
            "width": json_number(self.width),
            "height": json_number(self.height),
        }

    @classmethod
    def from_value(cls, value: object) -> Rect:
        data = value if isinstance(value, dict) else {}
        return cls(
            x=coerce_number(data.get("x")),
            y=coerce_number(data.get("y")),
            width=coerce_number(data.get("width")),
            height=coerce_number(data.get("height")),
        )


@dataclass
class Viewport:
    width: float = 0
    height: float = 0

    def to_dict(self) -> dict[str, float | None]:
        return {"width": json_number(self.width), "height": json_number(self.height)}

    @classmethod
    def from_value(cls, value: object) -> Viewport:
        data = value if isinstance(value, dict) else {}
        return cls(
            width=coerce_number(data.get("width")),
            height=coerce_number(data.get("height")),
        )


@dataclass
class Point:
    x: float
    y: float

    def to_dict(self) -> dict[str, float | None]:
        return {"x": json_number(self.x), "y": json_number(self.y)}

    @classmethod
    def from_value(cls, value: object) -> Point | None:
        if not isinstance(value, dict):
            return None
        if value.get("x") is None or value.get("y") is None:
            return None
        return cls(x=coerce_number(value["x"]), y=coerce_number(value["y"]))


@dataclass
class AnnotationElement:
    selector: str
    selector_confidence: SelectorConfidence
    react_source: ReactSource | None
    element_rect: Rect

    def to_dict(self) -> dict[str, Any]:
        return {
            "selector": self.selector,
            "selectorConfidence": self.selector_confidence,
            "reactSource": self.react_source.to_dict() if self.react_source else None,
            "elementRect": self.element_rect.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AnnotationElement:
        selector = data.get("selector")
        return cls(
            selector="" if selector is None else str(selector),
            selector_confidence=coerce_confidence(data.get("selectorConfidence")),
            react_source=ReactSource.from_value(data.get("reactSource")),
            element_rect=Rect.from_value(data.get("elementRect")),
        )


@dataclass
class Annotation:
    id: str
    url: str
    selector: str
    selector_confidence: SelectorConfidence
    text: str
    status: AnnotationStatus
    viewport: Viewport
    react_source: ReactSource | None
    screenshot: str | None
    created_at: str
    updated_at: str
    elements: list[AnnotationElement] | None = None
    anchor_point: Point | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "url": self.url,
            "selector": self.selector,
            "selectorConfidence": self.selector_confidence,
            "text": self.text,
            "status": self.status,
            "viewport": self.viewport.to_dict(),
            "reactSource": self.react_source.to_dict() if self.react_source else None,
            "screenshot": self.screenshot,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.elements is not None:
            data["elements"] = [element.to_dict() for element in self.elements]
        if self.anchor_point is not None:
            data["anchorPoint"] = self.anchor_point.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Annotation:
        """Rebuild a record from its wire/snapshot form.

        Raises ValueError when ``id`` is missing; every other field falls back
        to the same defaults a fresh create would use.
        """

        annotation_id = data.get("id")
        if not isinstance(annotation_id, str) or not annotation_id:
            raise ValueError("annotation id must be a non-empty string")
        created_at = str(data.get("createdAt") or now_iso())
        screenshot = data.get("screenshot")
        raw_elements = data.get("elements")
        elements: list[AnnotationElement] | None = None
        if isinstance(raw_elements, list):
            elements = [
                AnnotationElement.from_dict(item) for item in raw_elements if isinstance(item, dict)
            ]
        return cls(
            id=annotation_id,
            url=str(data.get("url") or ""),
            selector=str(data.get("selector") or ""),
            selector_confidence=coerce_confidence(data.get("selectorConfidence")),
            text=str(data.get("text") or ""),
            status="resolved" if data.get("status") == "resolved" else "open",
            viewport=Viewport.from_value(data.get("viewport")),
            react_source=ReactSource.from_value(data.get("reactSource")),
            screenshot=screenshot if isinstance(screenshot, str) else None,
            created_at=created_at,
            updated_at=str(data.get("updatedAt") or created_at),
            elements=elements,
            anchor_point=Point.from_value(data.get("anchorPoint")),
        )


@dataclass
class AnnotationDraft:
    """A validated create payload; only the store assigns id, status and timestamps."""

    url: str = ""
    selector: str = ""
    selector_confidence: SelectorConfidence = "fragile"
    text: str = ""
    viewport: Viewport = field(default_factory=Viewport)
    react_source: ReactSource | None = None
    elements: list[AnnotationElement] | None = None
    anchor_point: Point | None = None
    element_rect: Rect | None = None
    screenshot: str | None = None
