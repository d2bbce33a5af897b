"""HTTP query service over the current call graph snapshot."""

from callmap.server.app import create_app
from callmap.server.queries import QueryService
from callmap.server.snapshot import CacheState, SnapshotCache

__all__ = ["CacheState", "QueryService", "SnapshotCache", "create_app"]
