"""Data models and schemas.

Defines the data structures used throughout the client:
- LayerConfig: Dataset layer from the backend catalog
- Parcel: Resolved lot/plan parcel with centroid and area
- Feature: Dataset feature intersecting a parcel
- SessionState: Read-only session snapshot owned by the orchestrator
"""

from mapqld.models.feature import Feature
from mapqld.models.layer import LayerConfig, LayerFields, LayerStyle, PopupConfig
from mapqld.models.parcel import Parcel
from mapqld.models.session import PipelineStatus, SessionState

__all__ = [
    "Feature",
    "LayerConfig",
    "LayerFields",
    "LayerStyle",
    "Parcel",
    "PipelineStatus",
    "PopupConfig",
    "SessionState",
]
