"""Tests for the geometry coordinate cache.

Covers:
- ``[x, y]`` → ``(lat, lon)`` reordering for Polygon and MultiPolygon
- Reference stability for the same feature id across renders
- Rebuild when an id is reused for different geometry
- ``retain`` pruning and view-bounds computation
"""

from __future__ import annotations

import copy
from typing import Any

import pytest

from mapqld.models.feature import Feature
from mapqld.models.parcel import Parcel
from mapqld.render.coordinates import (
    CoordinateCache,
    compute_bounds,
    compute_view_bounds,
    feature_cache_key,
    geometry_fingerprint,
)


class TestConvert:
    """CoordinateCache.convert."""

    def test_swaps_to_lat_lon(self, square_geometry: dict[str, Any]) -> None:
        cache = CoordinateCache()
        rings = cache.convert("p", square_geometry)
        assert len(rings) == 1
        assert rings[0][0] == (-27.56, 151.95)
        assert rings[0][1] == (-27.56, 151.951)

    def test_multipolygon_rings_are_flattened(self) -> None:
        geometry = {
            "type": "MultiPolygon",
            "coordinates": [
                [[[0, 0], [1, 0], [1, 1], [0, 0]]],
                [[[5, 5], [6, 5], [6, 6], [5, 5]]],
            ],
        }
        rings = CoordinateCache().convert("m", geometry)
        assert len(rings) == 2
        assert rings[1][1] == (5.0, 6.0)

    def test_same_object_returns_same_reference(self, square_geometry: dict[str, Any]) -> None:
        cache = CoordinateCache()
        first = cache.convert("p", square_geometry)
        second = cache.convert("p", square_geometry)
        assert first is second
        assert cache.hits == 1
        assert cache.misses == 1

    def test_value_equal_geometry_reuses_entry(self, square_geometry: dict[str, Any]) -> None:
        cache = CoordinateCache()
        first = cache.convert("p", square_geometry)
        second = cache.convert("p", copy.deepcopy(square_geometry))
        assert first is second
        assert cache.misses == 1

    def test_reused_id_with_new_geometry_rebuilds(
        self,
        square_geometry: dict[str, Any],
        feature_geometry: dict[str, Any],
    ) -> None:
        cache = CoordinateCache()
        first = cache.convert("p", square_geometry)
        second = cache.convert("p", feature_geometry)
        assert first is not second
        assert second[0][0] == (-27.5602, 151.9502)
        assert cache.misses == 2

    def test_empty_geometry(self) -> None:
        assert CoordinateCache().convert("e", {}) == ()

    def test_fingerprint_ignores_object_identity(self, square_geometry: dict[str, Any]) -> None:
        assert geometry_fingerprint(square_geometry) == geometry_fingerprint(
            copy.deepcopy(square_geometry)
        )


class TestReprojection:
    """Non-WGS 84 source CRS."""

    def test_web_mercator_is_reprojected(self) -> None:
        pytest.importorskip("pyproj")
        geometry = {
            "type": "Polygon",
            "coordinates": [[[0.0, 0.0], [111319.49, 0.0], [111319.49, 111325.14], [0.0, 0.0]]],
        }
        rings = CoordinateCache("EPSG:3857").convert("m", geometry)
        lat, lon = rings[0][2]
        assert lat == pytest.approx(1.0, abs=1e-3)
        assert lon == pytest.approx(1.0, abs=1e-3)


class TestRetainAndBounds:
    """Pruning and fit-to-content bounds."""

    def test_retain_drops_unlisted_ids(self, square_geometry: dict[str, Any]) -> None:
        cache = CoordinateCache()
        cache.convert("a", square_geometry)
        cache.convert("b", square_geometry)
        dropped = cache.retain(["a"])
        assert dropped == 1
        assert "a" in cache
        assert "b" not in cache
        assert len(cache) == 1

    def test_bounds_of_nothing_is_none(self) -> None:
        assert compute_bounds([]) is None
        assert compute_bounds([()]) is None

    def test_bounds(self) -> None:
        bounds = compute_bounds([[(-27.0, 151.0), (-28.0, 152.0)], [(-27.5, 153.0)]])
        assert bounds == ((-28.0, 151.0), (-27.0, 153.0))

    def test_view_bounds_covers_parcel_and_features(
        self,
        square_geometry: dict[str, Any],
    ) -> None:
        parcel = Parcel.from_geojson("3/RP67254", square_geometry)
        outside = {
            "type": "Polygon",
            "coordinates": [[[151.96, -27.55], [151.97, -27.55], [151.97, -27.54], [151.96, -27.55]]],
        }
        feature = Feature(id="1", geometry=outside, layer_id="veg")
        cache = CoordinateCache()

        bounds = compute_view_bounds(cache, [parcel], {"veg": (feature,)})

        assert bounds == ((-27.5609, 151.95), (-27.54, 151.97))
        assert parcel.id in cache
        assert feature_cache_key(feature) in cache

    def test_feature_keys_are_layer_scoped(self, feature_geometry: dict[str, Any]) -> None:
        a = Feature(id="1", geometry=feature_geometry, layer_id="veg")
        b = Feature(id="1", geometry=feature_geometry, layer_id="bores")
        assert feature_cache_key(a) != feature_cache_key(b)
