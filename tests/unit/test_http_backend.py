"""Tests for the HTTP backend adapter.

Covers:
- Layer catalog mapping and defaults
- Resolve: found parcel, ``parcel: null`` → ``None``
- Malformed payloads and non-JSON bodies → ``MalformedResponseError``
- Intersect: OBJECTID identity, generated ids, display names
- Export: request body passthrough and empty archives
"""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from mapqld.backend.http_backend import HttpParcelBackend
from mapqld.core.config import ClientConfig
from mapqld.core.exceptions import MalformedResponseError
from mapqld.core.request import RequestClient
from mapqld.models.parcel import Parcel


def _backend(routes: dict[str, Any], seen: list[httpx.Request] | None = None) -> HttpParcelBackend:
    """Backend whose transport answers ``routes[path]`` (a Response or JSON body)."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        answer = routes[request.url.path]
        if isinstance(answer, httpx.Response):
            return answer
        return httpx.Response(200, json=answer)

    client = RequestClient(
        "http://backend.test",
        retries=0,
        transport=httpx.MockTransport(handler),
    )
    return HttpParcelBackend(client)


class TestListLayers:
    """GET /layers mapping."""

    @pytest.mark.asyncio()
    async def test_maps_catalog(self, catalog_payload: dict[str, Any]) -> None:
        backend = _backend({"/layers": catalog_payload})
        layers = await backend.list_layers()
        await backend.aclose()

        assert [layer.id for layer in layers] == ["landtypes", "veg", "bores"]
        landtypes = layers[0]
        assert landtypes.label == "Land Types"
        assert landtypes.fields.include == ("LT_NAME",)
        assert landtypes.fields.aliases == {"LT_NAME": "Land type"}
        assert landtypes.name_template == "{LT_NAME}"
        assert landtypes.style.line_width == 2.0
        assert landtypes.style.color == "#16a34a"
        assert landtypes.popup.hide_null is False

    @pytest.mark.asyncio()
    async def test_missing_values_use_defaults(self, catalog_payload: dict[str, Any]) -> None:
        backend = _backend({"/layers": catalog_payload})
        layers = await backend.list_layers()
        await backend.aclose()

        veg = layers[1]
        assert veg.name_template == "Regulated Vegetation"
        assert veg.style.line_width == 1.0
        assert veg.style.poly_opacity == 0.3
        assert veg.popup.hide_null is True

    @pytest.mark.asyncio()
    async def test_missing_layers_key_is_malformed(self) -> None:
        backend = _backend({"/layers": {"items": []}})
        with pytest.raises(MalformedResponseError) as exc_info:
            await backend.list_layers()
        await backend.aclose()
        assert exc_info.value.code == "PAYLOAD_SCHEMA_MISMATCH"
        assert exc_info.value.category == "contract"

    @pytest.mark.asyncio()
    async def test_non_json_body_is_malformed(self) -> None:
        backend = _backend({"/layers": httpx.Response(200, text="<html>oops</html>")})
        with pytest.raises(MalformedResponseError) as exc_info:
            await backend.list_layers()
        await backend.aclose()
        assert exc_info.value.code == "INVALID_JSON"


class TestResolveParcel:
    """POST /parcel/resolve mapping."""

    @pytest.mark.asyncio()
    async def test_found(self, square_geometry: dict[str, Any]) -> None:
        seen: list[httpx.Request] = []
        backend = _backend({"/parcel/resolve": {"parcel": square_geometry}}, seen)
        parcel = await backend.resolve_parcel("3/RP67254")
        await backend.aclose()

        assert json.loads(seen[0].content) == {"lotplan": "3/RP67254"}
        assert parcel is not None
        assert parcel.id == "3/RP67254"
        assert parcel.geometry["type"] == "Polygon"
        assert parcel.area > 0

    @pytest.mark.asyncio()
    async def test_null_parcel_is_none(self) -> None:
        backend = _backend({"/parcel/resolve": {"parcel": None}})
        assert await backend.resolve_parcel("9/XX1") is None
        await backend.aclose()

    @pytest.mark.asyncio()
    async def test_absent_parcel_is_none(self) -> None:
        backend = _backend({"/parcel/resolve": {}})
        assert await backend.resolve_parcel("9/XX1") is None
        await backend.aclose()

    @pytest.mark.asyncio()
    async def test_bad_geometry_is_malformed(self) -> None:
        backend = _backend({"/parcel/resolve": {"parcel": {"type": "Point", "coordinates": [1, 2]}}})
        with pytest.raises(MalformedResponseError):
            await backend.resolve_parcel("3/RP67254")
        await backend.aclose()


class TestIntersect:
    """POST /intersect mapping."""

    @pytest.mark.asyncio()
    async def test_maps_features(
        self,
        square_geometry: dict[str, Any],
        feature_geometry: dict[str, Any],
    ) -> None:
        body = {
            "layers": [
                {
                    "id": "landtypes",
                    "label": "Land Types",
                    "features": [
                        {"attrs": {"OBJECTID": 17, "LT_NAME": "Brigalow"}, "geometry": feature_geometry, "name": "Brigalow"},
                        {"attrs": {}, "geometry": feature_geometry},
                    ],
                },
                {"id": "veg", "features": []},
            ]
        }
        seen: list[httpx.Request] = []
        backend = _backend({"/intersect": body}, seen)
        parcel = Parcel.from_geojson("3/RP67254", square_geometry)
        result = await backend.intersect(parcel, ["landtypes", "veg"])
        await backend.aclose()

        sent = json.loads(seen[0].content)
        assert sent["layer_ids"] == ["landtypes", "veg"]
        assert sent["parcel"]["type"] == "Polygon"

        assert list(result) == ["landtypes", "veg"]
        named, unnamed = result["landtypes"]
        assert named.id == "17"
        assert named.display_name == "Brigalow"
        assert named.properties["LT_NAME"] == "Brigalow"
        assert named.layer_id == "landtypes"
        assert unnamed.id
        assert unnamed.id != named.id
        assert unnamed.display_name == "Land Types"
        assert result["veg"] == []

    @pytest.mark.asyncio()
    async def test_missing_layers_is_malformed(self, square_geometry: dict[str, Any]) -> None:
        backend = _backend({"/intersect": {"features": []}})
        parcel = Parcel.from_geojson("3/RP67254", square_geometry)
        with pytest.raises(MalformedResponseError):
            await backend.intersect(parcel, ["veg"])
        await backend.aclose()


class TestExportAndHealth:
    """POST /export/kml and GET /healthz."""

    @pytest.mark.asyncio()
    async def test_export_returns_bytes(self, kmz_bytes: bytes, square_geometry: dict[str, Any]) -> None:
        seen: list[httpx.Request] = []
        backend = _backend(
            {"/export/kml": httpx.Response(200, content=kmz_bytes)},
            seen,
        )
        request = {"parcel": square_geometry, "layers": []}
        content = await backend.export_kmz(request)
        await backend.aclose()

        assert content == kmz_bytes
        assert json.loads(seen[0].content) == request

    @pytest.mark.asyncio()
    async def test_empty_export_is_malformed(self, square_geometry: dict[str, Any]) -> None:
        backend = _backend({"/export/kml": httpx.Response(200, content=b"")})
        with pytest.raises(MalformedResponseError) as exc_info:
            await backend.export_kmz({"parcel": square_geometry, "layers": []})
        await backend.aclose()
        assert exc_info.value.code == "EMPTY_ARCHIVE"

    @pytest.mark.asyncio()
    async def test_health_json(self) -> None:
        backend = _backend({"/healthz": {"status": "ok"}})
        assert await backend.health() == {"status": "ok"}
        await backend.aclose()

    @pytest.mark.asyncio()
    async def test_health_text(self) -> None:
        backend = _backend({"/healthz": httpx.Response(200, text="ok")})
        assert await backend.health() == "ok"
        await backend.aclose()

    def test_from_config(self) -> None:
        backend = HttpParcelBackend.from_config(ClientConfig(api_base="http://example.test"))
        assert backend.client.base_url.startswith("http://example.test")
