"""ParcelBackend abstract base class.

Defines the contract every backend adapter must implement. The
orchestrator interacts exclusively with this interface and never knows
which concrete transport is behind it.

Operations:
    1. ``list_layers()``: fetch the dataset layer catalog.
    2. ``resolve_parcel(lot_plan)``: resolve a canonical key to a parcel.
    3. ``intersect(parcel, layer_ids)``: features of each layer overlapping the parcel.
    4. ``export_kmz(request)``: build a KMZ archive from parcel + features.
    5. ``health()``: diagnostic probe, not part of the pipeline.

Every network-bound operation accepts an optional ``CancellationToken``
so a superseding search can abort it.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mapqld.core.request import CancellationToken
    from mapqld.models.feature import Feature
    from mapqld.models.layer import LayerConfig
    from mapqld.models.parcel import Parcel
    from mapqld.models.payloads import ExportRequest


class ParcelBackend(abc.ABC):
    """Abstract base class for map-QLD backend adapters."""

    @abc.abstractmethod
    async def list_layers(
        self,
        *,
        token: CancellationToken | None = None,
    ) -> list[LayerConfig]:
        """Fetch the layer catalog, in backend order.

        Raises:
            MalformedResponseError: If the catalog payload is invalid.
        """

    @abc.abstractmethod
    async def resolve_parcel(
        self,
        lot_plan: str,
        *,
        token: CancellationToken | None = None,
    ) -> Parcel | None:
        """Resolve a canonical lot/plan key.

        Returns:
            The resolved ``Parcel``, or ``None`` when the backend reports
            no parcel for the key.
        """

    @abc.abstractmethod
    async def intersect(
        self,
        parcel: Parcel,
        layer_ids: list[str],
        *,
        token: CancellationToken | None = None,
    ) -> dict[str, list[Feature]]:
        """Return the features of each requested layer overlapping *parcel*.

        Returns:
            Features keyed by layer id, in response order.
        """

    @abc.abstractmethod
    async def export_kmz(
        self,
        request: ExportRequest,
        *,
        token: CancellationToken | None = None,
    ) -> bytes:
        """Build a KMZ archive for the given export request body."""

    @abc.abstractmethod
    async def health(self) -> Any:
        """Probe the backend; returns the decoded body (JSON or text)."""
