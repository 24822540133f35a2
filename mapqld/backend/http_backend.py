"""map-QLD HTTP backend adapter.

Concrete ``ParcelBackend`` implementation speaking the backend's JSON
API through the resilient ``RequestClient``. Every response body is
validated against the schemas in ``mapqld.models.payloads`` before it is
mapped onto domain models.

Endpoints:
    GET  /layers          layer catalog
    POST /parcel/resolve  ``{lotplan}`` → ``{parcel: Polygon | null}``
    POST /intersect       ``{parcel, layer_ids}`` → ``{layers: [...]}``
    POST /export/kml      ``{parcel, layers}`` → KMZ bytes
    GET  /healthz         diagnostic probe
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from mapqld.backend.base import ParcelBackend
from mapqld.core.constants import (
    DEFAULT_EXPORT_TIMEOUT_S,
    DEFAULT_LAYERS_TIMEOUT_S,
    EXPORT_PATH,
    HEALTH_PATH,
    INTERSECT_PATH,
    LAYERS_PATH,
    RESOLVE_PATH,
)
from mapqld.core.exceptions import MalformedResponseError
from mapqld.core.request import RequestClient
from mapqld.models.feature import Feature
from mapqld.models.layer import LayerConfig
from mapqld.models.parcel import Parcel
from mapqld.models.payloads import (
    IntersectRequest,
    IntersectResponse,
    LayerCatalogResponse,
    ResolveRequest,
    ResolveResponse,
    geometry_to_dict,
    validate_response,
)

if TYPE_CHECKING:
    import httpx

    from mapqld.core.config import ClientConfig
    from mapqld.core.request import CancellationToken
    from mapqld.models.payloads import ExportRequest

logger = logging.getLogger("mapqld.backend.http_backend")


class HttpParcelBackend(ParcelBackend):
    """Backend adapter over HTTP.

    Args:
        client: Request client rooted at the backend origin.
        layers_timeout_s: Per-attempt timeout for the catalog call.
        export_timeout_s: Per-attempt timeout for the export call.
    """

    def __init__(
        self,
        client: RequestClient,
        *,
        layers_timeout_s: float = DEFAULT_LAYERS_TIMEOUT_S,
        export_timeout_s: float = DEFAULT_EXPORT_TIMEOUT_S,
    ) -> None:
        self._client = client
        self._layers_timeout_s = layers_timeout_s
        self._export_timeout_s = export_timeout_s

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> HttpParcelBackend:
        """Build an adapter and its request client from configuration."""
        return cls(
            RequestClient.from_config(config, transport=transport),
            export_timeout_s=config.export_timeout_s,
        )

    @property
    def client(self) -> RequestClient:
        return self._client

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # list_layers
    # ------------------------------------------------------------------

    async def list_layers(
        self,
        *,
        token: CancellationToken | None = None,
    ) -> list[LayerConfig]:
        response = await self._client.request(
            "GET",
            LAYERS_PATH,
            timeout_s=self._layers_timeout_s,
            token=token,
        )
        body = validate_response(
            _decode_json(response, "layers"), LayerCatalogResponse, endpoint="layers"
        )
        layers = [
            LayerConfig.from_catalog_dict(entry.model_dump(by_alias=True))
            for entry in body.layers
        ]
        logger.info("Layer catalog loaded | layers=%d", len(layers))
        return layers

    # ------------------------------------------------------------------
    # resolve_parcel
    # ------------------------------------------------------------------

    async def resolve_parcel(
        self,
        lot_plan: str,
        *,
        token: CancellationToken | None = None,
    ) -> Parcel | None:
        payload: ResolveRequest = {"lotplan": lot_plan}
        response = await self._client.request("POST", RESOLVE_PATH, json=payload, token=token)
        body = validate_response(
            _decode_json(response, "resolve"), ResolveResponse, endpoint="resolve"
        )
        if body.parcel is None:
            logger.info("Parcel not found | lotplan=%s", lot_plan)
            return None

        parcel = Parcel.from_geojson(lot_plan, geometry_to_dict(body.parcel))
        logger.info(
            "Parcel resolved | lotplan=%s | area=%.1f m2 | centroid=(%.5f, %.5f)",
            lot_plan,
            parcel.area,
            *parcel.centroid,
        )
        return parcel

    # ------------------------------------------------------------------
    # intersect
    # ------------------------------------------------------------------

    async def intersect(
        self,
        parcel: Parcel,
        layer_ids: list[str],
        *,
        token: CancellationToken | None = None,
    ) -> dict[str, list[Feature]]:
        payload: IntersectRequest = {"parcel": parcel.geometry, "layer_ids": list(layer_ids)}
        response = await self._client.request("POST", INTERSECT_PATH, json=payload, token=token)
        body = validate_response(
            _decode_json(response, "intersect"), IntersectResponse, endpoint="intersect"
        )

        out: dict[str, list[Feature]] = {}
        for layer in body.layers:
            out[layer.id] = [
                Feature.from_intersect(
                    attrs=item.attrs,
                    geometry=geometry_to_dict(item.geometry),
                    name=item.name,
                    layer_id=layer.id,
                    layer_label=layer.label,
                )
                for item in layer.features
            ]

        logger.info(
            "Intersect complete | lotplan=%s | layers=%d | features=%d",
            parcel.lot_plan,
            len(out),
            sum(len(f) for f in out.values()),
        )
        return out

    # ------------------------------------------------------------------
    # export_kmz
    # ------------------------------------------------------------------

    async def export_kmz(
        self,
        request: ExportRequest,
        *,
        token: CancellationToken | None = None,
    ) -> bytes:
        response = await self._client.request(
            "POST",
            EXPORT_PATH,
            json=request,
            timeout_s=self._export_timeout_s,
            token=token,
        )
        content = response.content
        if not content:
            msg = "export: backend returned an empty archive"
            raise MalformedResponseError(msg, stage="export", code="EMPTY_ARCHIVE")
        logger.info("Export archive received | bytes=%d", len(content))
        return content

    # ------------------------------------------------------------------
    # health
    # ------------------------------------------------------------------

    async def health(self) -> Any:
        response = await self._client.request("GET", HEALTH_PATH, retries=0)
        if "json" in response.headers.get("content-type", ""):
            return _decode_json(response, "health")
        return response.text


def _decode_json(response: httpx.Response, endpoint: str) -> Any:
    """Decode a JSON body, converting decode failures to ``MalformedResponseError``."""
    try:
        return response.json()
    except ValueError as exc:
        msg = f"{endpoint}: response body is not valid JSON"
        raise MalformedResponseError(msg, stage=endpoint, code="INVALID_JSON") from exc
