"""Data model for a resolved land parcel.

A Parcel is created by resolving a canonical lot/plan key against the
backend. Geometry is a GeoJSON Polygon in ``[lon, lat]`` vertex order.

The centroid is the arithmetic mean of the outer ring's vertices, not a
true area centroid. It is only used to label and centre the parcel, and
is ``(0.0, 0.0)`` for an empty ring. Area is geodesic on the WGS 84
ellipsoid.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# Square metres per hectare
SQ_METRES_PER_HECTARE = 10_000.0

# Minimum vertices for a ring to enclose an area
MIN_COORDS_FOR_POLYGON = 3


@dataclass(frozen=True, slots=True)
class Parcel:
    """A land parcel resolved from a canonical lot/plan key.

    Attributes:
        id: Stable identity, equal to ``lot_plan``.
        lot_plan: Canonical ``LOT/PLAN`` key, e.g. ``"3/RP67254"``.
        geometry: GeoJSON Polygon geometry.
        area: Geodesic area in square metres (holes subtracted).
        centroid: Mean of the outer ring's vertices as ``(x, y)``.
    """

    id: str
    lot_plan: str
    geometry: dict[str, Any] = field(default_factory=dict)
    area: float = 0.0
    centroid: tuple[float, float] = (0.0, 0.0)

    @classmethod
    def from_geojson(cls, lot_plan: str, geometry: dict[str, Any]) -> Parcel:
        """Build a Parcel, deriving centroid and area from *geometry*."""
        rings = polygon_rings(geometry)
        outer = rings[0] if rings else []
        holes = rings[1:] if geometry.get("type") == "Polygon" else []
        return cls(
            id=lot_plan,
            lot_plan=lot_plan,
            geometry=geometry,
            area=compute_geodesic_area_m2(outer, holes),
            centroid=compute_vertex_centroid(outer),
        )

    @property
    def has_geometry(self) -> bool:
        """Whether the parcel carries a non-empty outer ring."""
        rings = polygon_rings(self.geometry)
        return bool(rings and rings[0])

    @property
    def area_ha(self) -> float:
        """Geodesic area in hectares."""
        return self.area / SQ_METRES_PER_HECTARE


def polygon_rings(geometry: dict[str, Any] | None) -> list[list[tuple[float, float]]]:
    """Return the rings of a GeoJSON Polygon as ``(x, y)`` tuples.

    MultiPolygon geometries yield the rings of every member polygon in
    order. Anything else yields an empty list.
    """
    if not geometry:
        return []
    gtype = geometry.get("type")
    coords = geometry.get("coordinates") or []
    if gtype == "Polygon":
        polygons = [coords]
    elif gtype == "MultiPolygon":
        polygons = list(coords)
    else:
        return []
    return [
        [(float(v[0]), float(v[1])) for v in ring]
        for polygon in polygons
        for ring in polygon
    ]


def compute_vertex_centroid(ring: list[tuple[float, float]]) -> tuple[float, float]:
    """Mean of the ring's vertices; ``(0.0, 0.0)`` for an empty ring.

    The closing vertex of a closed ring is counted like any other.
    """
    if not ring:
        return (0.0, 0.0)
    n = len(ring)
    return (sum(x for x, _ in ring) / n, sum(y for _, y in ring) / n)


def compute_geodesic_area_m2(
    exterior: list[tuple[float, float]],
    interior_rings: list[list[tuple[float, float]]] | None = None,
) -> float:
    """Compute geodesic polygon area in square metres.

    Uses pyproj.Geod on the WGS 84 ellipsoid. Returns absolute area
    (winding-order agnostic); 0.0 for rings too short to enclose an area.
    """
    if len(exterior) < MIN_COORDS_FOR_POLYGON:
        return 0.0

    from pyproj import Geod

    geod = Geod(ellps="WGS84")

    area_m2, _perimeter = geod.polygon_area_perimeter(
        [c[0] for c in exterior], [c[1] for c in exterior]
    )
    total = abs(area_m2)

    for ring in interior_rings or []:
        if len(ring) >= MIN_COORDS_FOR_POLYGON:
            hole_m2, _ = geod.polygon_area_perimeter([c[0] for c in ring], [c[1] for c in ring])
            total -= abs(hole_m2)

    return total
