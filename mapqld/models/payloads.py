"""Typed payload schemas for the backend HTTP contract.

Request bodies are ``TypedDict`` definitions so key mismatches are caught
at analysis time. Response bodies are pydantic models validated at the
boundary by ``validate_response``: a payload that is missing expected
fields becomes a ``MalformedResponseError`` instead of leaking partial
values into the pipeline.

Usage::

    from mapqld.models.payloads import ResolveResponse, validate_response

    body = validate_response(response.json(), ResolveResponse, endpoint="resolve")
    if body.parcel is None:
        ...
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, TypedDict, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from mapqld.core.exceptions import MalformedResponseError

# ---------------------------------------------------------------------------
# GeoJSON geometry
# ---------------------------------------------------------------------------

Position = Annotated[list[float], Field(min_length=2)]
LinearRing = list[Position]


class PolygonGeometry(BaseModel):
    """GeoJSON Polygon: ``[exterior, *holes]``, each ring of ``[x, y]`` positions."""

    type: Literal["Polygon"]
    coordinates: list[LinearRing]


class MultiPolygonGeometry(BaseModel):
    """GeoJSON MultiPolygon."""

    type: Literal["MultiPolygon"]
    coordinates: list[list[LinearRing]]


Geometry = Annotated[PolygonGeometry | MultiPolygonGeometry, Field(discriminator="type")]


# ---------------------------------------------------------------------------
# Layer catalog (GET /layers)
# ---------------------------------------------------------------------------


class LayerFieldsPayload(BaseModel):
    include: list[str] | None = None
    aliases: dict[str, str] | None = None


class LayerStylePayload(BaseModel):
    line_width: float | None = None
    line_opacity: float | None = None
    poly_opacity: float | None = None
    color: str | None = None


class LayerPopupPayload(BaseModel):
    order: list[str] | None = None
    hide_null: bool | None = None


class LayerEntryPayload(BaseModel):
    """One catalog entry. Unknown keys are kept for forward compatibility."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str = Field(min_length=1)
    label: str | None = None
    url: str | None = None
    description: str | None = None
    layer_fields: LayerFieldsPayload | None = Field(default=None, alias="fields")
    name_template: str | None = None
    nameTemplate: str | None = None  # noqa: N815
    style: LayerStylePayload | None = None
    popup: LayerPopupPayload | None = None


class LayerCatalogResponse(BaseModel):
    layers: list[LayerEntryPayload]


# ---------------------------------------------------------------------------
# Resolve (POST /parcel/resolve)
# ---------------------------------------------------------------------------


class ResolveRequest(TypedDict):
    lotplan: str


class ResolveResponse(BaseModel):
    """``parcel`` absent or null means the lot/plan was not found."""

    parcel: Geometry | None = None


# ---------------------------------------------------------------------------
# Intersect (POST /intersect)
# ---------------------------------------------------------------------------


class IntersectRequest(TypedDict):
    parcel: dict[str, Any]
    layer_ids: list[str]


class IntersectFeaturePayload(BaseModel):
    attrs: dict[str, Any] | None = None
    geometry: Geometry
    name: str | None = None


class IntersectLayerPayload(BaseModel):
    id: str = Field(min_length=1)
    label: str | None = None
    features: list[IntersectFeaturePayload] = Field(default_factory=list)


class IntersectResponse(BaseModel):
    layers: list[IntersectLayerPayload]


# ---------------------------------------------------------------------------
# Export (POST /export/kml); the response is a binary KMZ archive
# ---------------------------------------------------------------------------


class ExportFeaturePayload(TypedDict):
    geometry: dict[str, Any]
    attrs: dict[str, Any]
    name: str


class ExportLayerPayload(TypedDict):
    id: str
    label: str
    features: list[ExportFeaturePayload]
    style: dict[str, object]


class ExportRequest(TypedDict):
    parcel: dict[str, Any]
    layers: list[ExportLayerPayload]


# ---------------------------------------------------------------------------
# Runtime validation
# ---------------------------------------------------------------------------

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_response(raw: object, schema: type[ModelT], *, endpoint: str) -> ModelT:
    """Validate a decoded JSON body against *schema*.

    Raises:
        MalformedResponseError: If the body does not match the schema.
    """
    try:
        return schema.model_validate(raw)
    except PydanticValidationError as exc:
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ())) or "<root>"
        msg = (
            f"{endpoint}: malformed response ({len(errors)} error(s)); "
            f"{location}: {first.get('msg', 'invalid')}"
        )
        raise MalformedResponseError(msg, stage=endpoint, code="PAYLOAD_SCHEMA_MISMATCH") from exc


def geometry_to_dict(geometry: PolygonGeometry | MultiPolygonGeometry) -> dict[str, Any]:
    """Plain GeoJSON dict for a validated geometry."""
    return geometry.model_dump()
