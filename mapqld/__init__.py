"""map-QLD parcel resolution client.

Resolves Queensland lot/plan identifiers against the map-QLD backend,
intersects the parcel with government spatial datasets, prepares the
geometry for map rendering, and exports the result as a KMZ archive.
"""

__version__ = "0.1.0"
