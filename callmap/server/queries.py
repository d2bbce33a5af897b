"""
Query operations over the snapshot cache.

Each operation reads the cache once, under a single read lock, so the page,
the root list and the closure all come from the same snapshot. Results are
plain dicts in the camelCase shape the HTTP layer returns as-is.
"""

import logging
from typing import Any, Optional

from callmap.errors import QueryError, SnapshotNotReady
from callmap.models import Symbol
from callmap.server.snapshot import LoadedGraph, SnapshotCache

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 200


def parse_int(value: Any, default: int) -> int:
    """Parse an integer parameter; missing or malformed values give the default."""
    if value is None:
        return default
    try:
        return int(str(value).strip())
    except ValueError:
        return default


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def clamp_page(page: Any) -> int:
    return max(1, parse_int(page, 1))


def clamp_page_size(page_size: Any) -> int:
    size = parse_int(page_size, DEFAULT_PAGE_SIZE)
    if size <= 0:
        return DEFAULT_PAGE_SIZE
    return min(size, MAX_PAGE_SIZE)


def page_bounds(page: int, page_size: int) -> tuple[int, int]:
    start = (page - 1) * page_size
    return start, start + page_size


def _require(graph: Optional[LoadedGraph]) -> LoadedGraph:
    if graph is None:
        raise SnapshotNotReady("No call graph loaded yet")
    return graph


def _unique_symbols(symbols: tuple[Symbol, ...]) -> list[Symbol]:
    seen = set()
    unique = []
    for symbol in sorted(symbols, key=lambda s: s.key):
        if symbol.key not in seen:
            seen.add(symbol.key)
            unique.append(symbol)
    return unique


class QueryService:
    """Relations, search, reload and status over a SnapshotCache."""

    def __init__(self, cache: SnapshotCache):
        self.cache = cache

    def relations(
        self,
        page: Any = None,
        page_size: Any = None,
        include_internals: Any = False,
    ) -> dict[str, Any]:
        """
        One page of root symbols plus the transitive closure of that page.

        Raises:
            SnapshotNotReady: Before the first successful load
        """
        page_num = clamp_page(page)
        size = clamp_page_size(page_size)
        internals = parse_bool(include_internals)
        start, end = page_bounds(page_num, size)

        with self.cache.read() as current:
            graph = _require(current)
            snapshot = graph.snapshot
            selected = snapshot.roots[start:end]
            closure = graph.closures.closure([r.key for r in selected], internals)
            return {
                "page": page_num,
                "pageSize": size,
                "totalRoots": len(snapshot.roots),
                "roots": [r.to_dict() for r in selected],
                "data": [r.to_dict() for r in closure],
                "loadedAt": snapshot.loaded_at_iso,
                "includeInternals": internals,
            }

    def search(self, query: Optional[str], page: Any = None, page_size: Any = None) -> dict[str, Any]:
        """
        Case-insensitive substring search over symbol names.

        When no name matches, file paths are searched as well. The closure is
        computed for the current page of matches only.

        Raises:
            QueryError: If the query is missing or blank
            SnapshotNotReady: Before the first successful load
        """
        needle = (query or "").strip()
        if not needle:
            raise QueryError("Missing required parameter: q")
        lowered = needle.lower()
        page_num = clamp_page(page)
        size = clamp_page_size(page_size)
        start, end = page_bounds(page_num, size)

        with self.cache.read() as current:
            graph = _require(current)
            snapshot = graph.snapshot
            symbols = _unique_symbols(snapshot.symbols)
            matches = [s for s in symbols if lowered in s.name.lower()]
            if not matches:
                matches = [s for s in symbols if lowered in s.file.lower()]

            selected = matches[start:end]
            nodes = [graph.closures.node(s.key) for s in selected]
            closure = graph.closures.closure([s.key for s in selected])
            logger.debug(f"Search {needle!r}: {len(matches)} matches")
            return {
                "query": needle,
                "page": page_num,
                "pageSize": size,
                "totalResults": len(matches),
                "matchingFunctions": [n.to_dict() for n in nodes if n is not None],
                "data": [r.to_dict() for r in closure],
                "loadedAt": snapshot.loaded_at_iso,
            }

    def reload(self) -> dict[str, Any]:
        """
        Rebuild the snapshot.

        Raises:
            ReloadError: If the load fails; the previous snapshot keeps serving
        """
        snapshot = self.cache.reload()
        return {"status": "reloaded", "loadedAt": snapshot.loaded_at_iso}

    def status(self) -> dict[str, Any]:
        with self.cache.read() as current:
            result: dict[str, Any] = {
                "state": self.cache.state.value,
                "loadedAt": None,
                "symbols": 0,
                "relations": 0,
                "roots": 0,
            }
            if current is not None:
                result.update(current.snapshot.summary())
            if self.cache.last_error:
                result["lastError"] = self.cache.last_error
            return result
