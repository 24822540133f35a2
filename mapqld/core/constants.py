"""Shared client constants.

Centralises backend endpoint paths and the timing defaults used by the
request layer and the orchestrator.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Backend endpoints
# ---------------------------------------------------------------------------

LAYERS_PATH: str = "/layers"
RESOLVE_PATH: str = "/parcel/resolve"
INTERSECT_PATH: str = "/intersect"
EXPORT_PATH: str = "/export/kml"
HEALTH_PATH: str = "/healthz"

DEFAULT_API_BASE: str = "http://localhost:8000"
"""Backend origin used when ``MAPQLD_API_BASE`` is not set."""

# ---------------------------------------------------------------------------
# Request layer defaults
# ---------------------------------------------------------------------------

DEFAULT_TIMEOUT_S: float = 20.0
DEFAULT_LAYERS_TIMEOUT_S: float = 20.0
DEFAULT_EXPORT_TIMEOUT_S: float = 60.0
DEFAULT_RETRIES: int = 2
DEFAULT_BACKOFF_BASE_S: float = 0.5

# ---------------------------------------------------------------------------
# Orchestrator defaults
# ---------------------------------------------------------------------------

DEFAULT_DEBOUNCE_MS: int = 400
"""Quiet period after the last keystroke before a query is eligible."""

DEFAULT_SELECTED_LAYER_COUNT: int = 2
"""Number of catalog layers selected on first load."""

DEFAULT_EXPORT_FILENAME: str = "export.kmz"

WGS84: str = "EPSG:4326"
