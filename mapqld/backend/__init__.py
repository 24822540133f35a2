"""Backend adapters.

- ParcelBackend: Abstract base class defining the backend contract
- HttpParcelBackend: map-QLD HTTP API adapter (httpx + resilient request client)

The orchestrator interacts exclusively with ``ParcelBackend``; tests plug
in an in-memory implementation.
"""

from mapqld.backend.base import ParcelBackend
from mapqld.backend.http_backend import HttpParcelBackend

__all__ = [
    "HttpParcelBackend",
    "ParcelBackend",
]
