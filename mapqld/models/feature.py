"""Data model for a dataset feature intersecting a parcel.

Features are produced by the intersect call, one list per selected
layer, and are replaced wholesale on the next search.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

OBJECTID_FIELD = "OBJECTID"


@dataclass(frozen=True, slots=True)
class Feature:
    """A single feature returned by the intersect endpoint.

    Attributes:
        id: ``OBJECTID`` attribute when present, else a generated token.
        geometry: GeoJSON Polygon (or MultiPolygon) geometry.
        properties: Attribute values as returned by the backend.
        layer_id: Id of the ``LayerConfig`` this feature belongs to.
        display_name: Feature name, falling back to the layer label or id.
    """

    id: str
    geometry: dict[str, Any]
    properties: dict[str, Any] = field(default_factory=dict)
    layer_id: str = ""
    display_name: str = ""

    @classmethod
    def from_intersect(
        cls,
        *,
        attrs: dict[str, Any] | None,
        geometry: dict[str, Any],
        name: str | None,
        layer_id: str,
        layer_label: str | None = None,
    ) -> Feature:
        """Build a Feature from one intersect response item."""
        properties = dict(attrs or {})
        object_id = properties.get(OBJECTID_FIELD)
        feature_id = str(object_id) if object_id is not None else uuid.uuid4().hex
        return cls(
            id=feature_id,
            geometry=geometry,
            properties=properties,
            layer_id=layer_id,
            display_name=name or layer_label or layer_id,
        )

    def to_export_dict(self) -> dict[str, object]:
        """Feature entry of an export request."""
        return {
            "geometry": self.geometry,
            "attrs": self.properties,
            "name": self.display_name,
        }
