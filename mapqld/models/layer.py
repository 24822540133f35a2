"""Data model for a dataset layer from the backend catalog.

A LayerConfig describes one government spatial dataset that can be
intersected with a parcel: where it comes from, which attribute fields
are shown and under what aliases, how features are named, and how they
are styled on the map and in the exported KMZ.

Catalog entries use snake_case keys (``name_template``, ``line_width``,
``hide_null``); missing values fall back to the defaults below.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

DEFAULT_LINE_WIDTH = 1.0
DEFAULT_LINE_OPACITY = 0.9
DEFAULT_POLY_OPACITY = 0.3
DEFAULT_COLOR = "#4f46e5"


@dataclass(frozen=True, slots=True)
class LayerFields:
    """Attribute fields to include and their display aliases."""

    include: tuple[str, ...] = ()
    aliases: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class LayerStyle:
    """Map style for a layer's features.

    Attributes:
        line_width: Outline width in pixels.
        line_opacity: Outline opacity (0-1).
        poly_opacity: Fill opacity (0-1).
        color: CSS hex colour, e.g. ``"#4f46e5"``.
    """

    line_width: float = DEFAULT_LINE_WIDTH
    line_opacity: float = DEFAULT_LINE_OPACITY
    poly_opacity: float = DEFAULT_POLY_OPACITY
    color: str = DEFAULT_COLOR


@dataclass(frozen=True, slots=True)
class PopupConfig:
    """Attribute ordering for feature popups."""

    order: tuple[str, ...] = ()
    hide_null: bool = True


@dataclass(frozen=True, slots=True)
class LayerConfig:
    """A dataset layer offered by the backend catalog.

    Immutable for the session once fetched.

    Attributes:
        id: Unique layer identifier used in intersect/export requests.
        label: Human-readable layer name.
        url: Source service URL of the dataset.
        description: Optional description text.
        fields: Attribute fields to include and their aliases.
        name_template: Template used by the backend to name features.
        style: Map style.
        popup: Popup attribute ordering.
    """

    id: str
    label: str
    url: str = ""
    description: str = ""
    fields: LayerFields = field(default_factory=LayerFields)
    name_template: str = ""
    style: LayerStyle = field(default_factory=LayerStyle)
    popup: PopupConfig = field(default_factory=PopupConfig)

    @classmethod
    def from_catalog_dict(cls, data: dict[str, Any]) -> LayerConfig:
        """Build a LayerConfig from one ``/layers`` catalog entry.

        Raises:
            ValueError: If the entry has no ``id``.
        """
        layer_id = str(data.get("id") or "")
        if not layer_id:
            msg = "catalog layer entry is missing 'id'"
            raise ValueError(msg)

        label = str(data.get("label") or layer_id)
        fields_raw = data.get("fields") or {}
        style_raw = data.get("style") or {}
        popup_raw = data.get("popup") or {}

        return cls(
            id=layer_id,
            label=label,
            url=str(data.get("url") or ""),
            description=str(data.get("description") or ""),
            fields=LayerFields(
                include=tuple(str(f) for f in fields_raw.get("include") or ()),
                aliases={str(k): str(v) for k, v in (fields_raw.get("aliases") or {}).items()},
            ),
            name_template=str(
                data.get("name_template") or data.get("nameTemplate") or label
            ),
            style=LayerStyle(
                line_width=float(_default(style_raw.get("line_width"), DEFAULT_LINE_WIDTH)),
                line_opacity=float(_default(style_raw.get("line_opacity"), DEFAULT_LINE_OPACITY)),
                poly_opacity=float(_default(style_raw.get("poly_opacity"), DEFAULT_POLY_OPACITY)),
                color=str(_default(style_raw.get("color"), DEFAULT_COLOR)),
            ),
            popup=PopupConfig(
                order=tuple(str(f) for f in popup_raw.get("order") or ()),
                hide_null=bool(_default(popup_raw.get("hide_null"), True)),
            ),
        )

    def to_export_style(self) -> dict[str, object]:
        """Style block sent with this layer in an export request."""
        return {
            "line_width": self.style.line_width,
            "line_opacity": self.style.line_opacity,
            "poly_opacity": self.style.poly_opacity,
            "color": self.style.color,
        }


def _default(value: object, fallback: object) -> object:
    """Return *fallback* only when *value* is ``None`` (falsy values are kept)."""
    return fallback if value is None else value
