"""Session state container owned by the pipeline orchestrator.

``SessionState`` is an immutable snapshot. The orchestrator is the only
writer: every change produces a new snapshot through its single commit
entry point, and the presentation layer only ever reads snapshots.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mapqld.models.feature import Feature
    from mapqld.models.layer import LayerConfig
    from mapqld.models.parcel import Parcel


class PipelineStatus(enum.Enum):
    """Lifecycle state of the resolve → intersect → export pipeline.

    Values:
        IDLE:      No search issued yet.
        SEARCHING: A resolve/intersect cycle is in flight.
        READY:     The last search committed its results.
        FAILED:    The last search or export failed; ``error`` is set.
        EXPORTING: An export is in flight; results are unchanged.
    """

    IDLE = "idle"
    SEARCHING = "searching"
    READY = "ready"
    FAILED = "failed"
    EXPORTING = "exporting"


@dataclass(frozen=True, slots=True)
class SessionState:
    """Read-only snapshot of the client session.

    Attributes:
        query: Raw text as last typed.
        debounced_query: ``query`` once the debounce window elapsed.
        loading: True while at least one backend call is outstanding.
        error: Message of the last failure, ``None`` after a success.
        status: Pipeline lifecycle state.
        layers: Layer catalog, in backend order.
        selected_layer_ids: Ids of the layers the user has selected.
        parcels: Resolved parcels (0 or 1 in practice).
        features_by_layer: Intersected features keyed by layer id.
        generation: Number of searches started in this session.
    """

    query: str = ""
    debounced_query: str = ""
    loading: bool = False
    error: str | None = None
    status: PipelineStatus = PipelineStatus.IDLE
    layers: tuple[LayerConfig, ...] = ()
    selected_layer_ids: frozenset[str] = frozenset()
    parcels: tuple[Parcel, ...] = ()
    features_by_layer: dict[str, tuple[Feature, ...]] = field(default_factory=dict)
    generation: int = 0

    @property
    def parcel(self) -> Parcel | None:
        """The authoritative parcel (first resolved), if any."""
        return self.parcels[0] if self.parcels else None

    @property
    def can_export(self) -> bool:
        return bool(self.parcels)

    def layer(self, layer_id: str) -> LayerConfig | None:
        """Look up a catalog layer by id."""
        for layer in self.layers:
            if layer.id == layer_id:
                return layer
        return None

    def ordered_selection(self) -> list[str]:
        """Selected layer ids in catalog order, unknown ids last (sorted)."""
        known = [layer.id for layer in self.layers if layer.id in self.selected_layer_ids]
        extra = sorted(self.selected_layer_ids.difference(known))
        return known + extra

    @property
    def feature_count(self) -> int:
        return sum(len(feats) for feats in self.features_by_layer.values())
