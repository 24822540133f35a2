"""Shared pytest fixtures for the map-QLD client test suite."""

from __future__ import annotations

import io
import zipfile
from typing import Any

import pytest

# ---------------------------------------------------------------------------
# Geometry fixtures
# ---------------------------------------------------------------------------

# ~100 m square near Toowoomba, QLD ([lon, lat] order).
SQUARE_RING = [
    [151.9500, -27.5600],
    [151.9510, -27.5600],
    [151.9510, -27.5609],
    [151.9500, -27.5609],
    [151.9500, -27.5600],
]


@pytest.fixture()
def square_geometry() -> dict[str, Any]:
    """A closed single-ring GeoJSON Polygon."""
    return {"type": "Polygon", "coordinates": [[list(v) for v in SQUARE_RING]]}


@pytest.fixture()
def feature_geometry() -> dict[str, Any]:
    """A smaller polygon inside ``square_geometry``."""
    return {
        "type": "Polygon",
        "coordinates": [
            [
                [151.9502, -27.5602],
                [151.9506, -27.5602],
                [151.9506, -27.5606],
                [151.9502, -27.5606],
                [151.9502, -27.5602],
            ]
        ],
    }


# ---------------------------------------------------------------------------
# Backend payload fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def catalog_payload() -> dict[str, Any]:
    """A ``GET /layers`` body with three layers."""
    return {
        "layers": [
            {
                "id": "landtypes",
                "label": "Land Types",
                "url": "https://example.test/arcgis/rest/services/LandTypes/MapServer/0",
                "description": "Land resource areas",
                "fields": {"include": ["LT_NAME"], "aliases": {"LT_NAME": "Land type"}},
                "name_template": "{LT_NAME}",
                "style": {"line_width": 2, "color": "#16a34a"},
                "popup": {"order": ["LT_NAME"], "hide_null": False},
            },
            {"id": "veg", "label": "Regulated Vegetation"},
            {"id": "bores", "label": "Groundwater Bores"},
        ]
    }


def build_kmz(placemarks: int = 2, *, name: str = "doc.kml") -> bytes:
    """Build an in-memory KMZ holding *placemarks* empty Placemarks."""
    body = "".join(f"<Placemark><name>P{i}</name></Placemark>" for i in range(placemarks))
    kml = (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<kml xmlns="http://www.opengis.net/kml/2.2">'
        f"<Document>{body}</Document></kml>"
    )
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        archive.writestr(name, kml)
    return buffer.getvalue()


@pytest.fixture()
def kmz_bytes() -> bytes:
    """A valid KMZ archive with two Placemarks."""
    return build_kmz(2)


@pytest.fixture()
def kmz_factory() -> Any:
    """The ``build_kmz`` helper, for tests that need custom archives."""
    return build_kmz
