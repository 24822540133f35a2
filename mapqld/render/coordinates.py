"""Geometry coordinate cache for map rendering.

Backend geometry is GeoJSON with ``[x, y]`` (easting/longitude,
northing/latitude) vertex pairs. Map renderers want ``(lat, lon)``
rings. ``CoordinateCache.convert`` performs that conversion once per
feature identity and hands back the same tuple object on every later
render, so re-rendering an unchanged result set costs a dict lookup.

Identity and staleness:
    Entries are keyed by the caller-assigned feature id. The source
    geometry object is remembered, so a repeat call with the very same
    object is a pure lookup. A different object is fingerprinted: if it
    is value-equal the cached rings are returned unchanged, otherwise the
    id has been reused for new geometry and the entry is rebuilt.

Reprojection:
    When ``source_crs`` is not WGS 84 the vertices are transformed with
    pyproj before reordering.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from mapqld.core.constants import WGS84
from mapqld.models.parcel import polygon_rings

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

    from mapqld.models.feature import Feature
    from mapqld.models.parcel import Parcel

logger = logging.getLogger("mapqld.render.coordinates")

LatLng = tuple[float, float]
LatLngRings = tuple[tuple[LatLng, ...], ...]
Bounds = tuple[LatLng, LatLng]


@dataclass(slots=True)
class _CacheEntry:
    source: dict[str, Any]
    fingerprint: str
    rings: LatLngRings


class CoordinateCache:
    """Memoised GeoJSON → ``(lat, lon)`` ring conversion keyed by feature id.

    Args:
        source_crs: CRS of incoming geometry (default ``EPSG:4326``).
    """

    def __init__(self, source_crs: str = WGS84) -> None:
        self._source_crs = source_crs
        self._entries: dict[str, _CacheEntry] = {}
        self._transformer: Any = None
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._entries

    @property
    def source_crs(self) -> str:
        return self._source_crs

    def convert(self, feature_id: str, geometry: dict[str, Any]) -> LatLngRings:
        """Return the ``(lat, lon)`` rings for *geometry*, cached under *feature_id*."""
        entry = self._entries.get(feature_id)
        if entry is not None and entry.source is geometry:
            self.hits += 1
            return entry.rings

        fingerprint = geometry_fingerprint(geometry)
        if entry is not None and entry.fingerprint == fingerprint:
            entry.source = geometry
            self.hits += 1
            return entry.rings

        if entry is not None:
            logger.warning(
                "Feature id reused for different geometry, rebuilding | id=%s", feature_id
            )

        rings = self._build_rings(geometry)
        self._entries[feature_id] = _CacheEntry(geometry, fingerprint, rings)
        self.misses += 1
        logger.debug(
            "Coordinate cache miss | id=%s | rings=%d | size=%d",
            feature_id,
            len(rings),
            len(self._entries),
        )
        return rings

    def retain(self, feature_ids: Iterable[str]) -> int:
        """Drop entries whose id is not in *feature_ids*; return how many were dropped."""
        keep = set(feature_ids)
        stale = [key for key in self._entries if key not in keep]
        for key in stale:
            del self._entries[key]
        return len(stale)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _build_rings(self, geometry: dict[str, Any]) -> LatLngRings:
        rings = polygon_rings(geometry)
        if self._source_crs != WGS84:
            rings = [self._reproject(ring) for ring in rings]
        return tuple(tuple((y, x) for x, y in ring) for ring in rings)

    def _reproject(self, ring: list[tuple[float, float]]) -> list[tuple[float, float]]:
        if self._transformer is None:
            from pyproj import Transformer

            self._transformer = Transformer.from_crs(self._source_crs, WGS84, always_xy=True)
        if not ring:
            return ring
        xs, ys = self._transformer.transform([x for x, _ in ring], [y for _, y in ring])
        return list(zip(xs, ys, strict=True))


def geometry_fingerprint(geometry: dict[str, Any]) -> str:
    """Content digest of a geometry's type and vertex values."""
    digest = hashlib.blake2b(digest_size=16)
    digest.update(str(geometry.get("type", "")).encode())
    for ring in polygon_rings(geometry):
        digest.update(b"|")
        for x, y in ring:
            digest.update(f"{x!r},{y!r};".encode())
    return digest.hexdigest()


def feature_cache_key(feature: Feature) -> str:
    """Cache key for a feature; OBJECTIDs are only unique within a layer."""
    return f"{feature.layer_id}:{feature.id}"


def compute_bounds(rings: Iterable[Sequence[LatLng]]) -> Bounds | None:
    """Union every vertex into ``((south, west), (north, east))``; ``None`` if empty."""
    south = west = float("inf")
    north = east = float("-inf")
    seen = False
    for ring in rings:
        for lat, lon in ring:
            seen = True
            south = min(south, lat)
            north = max(north, lat)
            west = min(west, lon)
            east = max(east, lon)
    if not seen:
        return None
    return ((south, west), (north, east))


def compute_view_bounds(
    cache: CoordinateCache,
    parcels: Iterable[Parcel],
    features_by_layer: Mapping[str, Sequence[Feature]],
) -> Bounds | None:
    """Fit-to-content viewport over every rendered parcel and feature."""
    rings: list[Sequence[LatLng]] = []
    for parcel in parcels:
        rings.extend(cache.convert(parcel.id, parcel.geometry))
    for features in features_by_layer.values():
        for feature in features:
            rings.extend(cache.convert(feature_cache_key(feature), feature.geometry))
    return compute_bounds(rings)
