from __future__ import annotations

from importlib import resources

PORT_PLACEHOLDER = "__PORT__"

_OVERLAY_TEMPLATE: str | None = None


def _overlay_template() -> str:
    global _OVERLAY_TEMPLATE
    if _OVERLAY_TEMPLATE is None:
        _OVERLAY_TEMPLATE = (
            resources.files(__package__).joinpath("assets/overlay.js").read_text(encoding="utf-8")
        )
    return _OVERLAY_TEMPLATE


def build_overlay_script(port: int) -> str:
    """Return the self-contained overlay IIFE bound to the annotation server ``port``."""

    return _overlay_template().replace(PORT_PLACEHOLDER, str(int(port)))
