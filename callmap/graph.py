"""
Call graph assembly: noise filtering, relation building, roots and closures.

Filtering and relation building operate on disjoint, contiguous slices of the
symbol list. Above a size threshold the slices run on a process pool (the
workers are module-level functions so they pickle); the partial results are
concatenated in slice order so the output is identical to a sequential run.

Key pieces:
- filter_symbol_calls() - keep calls into local namespaces, record the rest
- build_relations() - match call references to concrete callees
- find_roots() - symbols nothing calls, excluding analyzer internals
- ClosureEngine - memoized reachability over a Snapshot
- GraphAssembler - runs the above and produces a Snapshot
"""

import logging
import posixpath
import threading
from concurrent.futures import Executor, ProcessPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from callmap.config import DEFAULT_INTERNAL_PREFIXES, AnalyzerConfig
from callmap.models import (
    Callee,
    CompositeKey,
    Relation,
    RemovedCalls,
    Snapshot,
    Symbol,
    namespace_of,
)

logger = logging.getLogger(__name__)

ExecutorFactory = Callable[..., Executor]


def is_internal(name: str, prefixes: Iterable[str] = DEFAULT_INTERNAL_PREFIXES) -> bool:
    return any(name.startswith(p) for p in prefixes)


def local_namespaces(symbols: Iterable[Symbol]) -> set[str]:
    """Namespace tokens of every non-external symbol."""
    return {s.namespace for s in symbols if not s.external}


def partition(items: list, parts: int) -> list[list]:
    """Split into at most `parts` contiguous, near-equal, non-empty slices."""
    if not items:
        return []
    parts = max(1, min(parts, len(items)))
    size, extra = divmod(len(items), parts)
    slices = []
    start = 0
    for i in range(parts):
        end = start + size + (1 if i < extra else 0)
        slices.append(items[start:end])
        start = end
    return slices


def run_partitioned(
    worker: Callable[[tuple], Any],
    items: list,
    shared: tuple,
    workers: int,
    threshold: int,
    executor_factory: ExecutorFactory = ProcessPoolExecutor,
) -> list:
    """
    Apply worker to contiguous slices of items, returning partials in slice order.

    Runs inline when items are below threshold or only one worker is allowed.
    """
    if len(items) < threshold or workers <= 1:
        return [worker((items, *shared))]
    slices = partition(items, workers)
    logger.debug(f"Processing {len(items)} items in {len(slices)} parallel slices")
    with executor_factory(max_workers=len(slices)) as executor:
        return list(executor.map(worker, [(s, *shared) for s in slices]))


def _filter_slice(args: tuple) -> tuple[list[Symbol], dict[str, list[str]]]:
    """Worker: filter one slice of symbols (module-level for pickling)."""
    symbols, namespaces, include_external = args
    kept: list[Symbol] = []
    removed: dict[str, list[str]] = {}
    for symbol in symbols:
        filtered = symbol.copy()
        if not include_external:
            calls = []
            dropped = []
            for call in symbol.calls:
                if namespace_of(call) in namespaces:
                    calls.append(call)
                else:
                    dropped.append(call)
            filtered.calls = calls
            if dropped:
                bucket = removed.setdefault(symbol.name, [])
                bucket.extend(c for c in dropped if c not in bucket)
        kept.append(filtered)
    return kept, removed


def filter_symbol_calls(
    symbols: list[Symbol],
    include_external: bool = False,
    workers: int = 1,
    threshold: int = 512,
    executor_factory: ExecutorFactory = ProcessPoolExecutor,
) -> tuple[list[Symbol], RemovedCalls]:
    """
    Keep only calls whose namespace token belongs to the local module.

    With include_external set, every call is kept and nothing is recorded.

    Returns:
        (filtered symbol copies, removed calls keyed by calling symbol name)
    """
    namespaces = local_namespaces(symbols)
    partials = run_partitioned(
        _filter_slice,
        symbols,
        (namespaces, include_external),
        workers,
        threshold,
        executor_factory,
    )
    kept: list[Symbol] = []
    removed: dict[str, list[str]] = {}
    for part_symbols, part_removed in partials:
        kept.extend(part_symbols)
        for name, calls in part_removed.items():
            bucket = removed.setdefault(name, [])
            bucket.extend(c for c in calls if c not in bucket)
    return kept, RemovedCalls(per_function=removed)


def _preference(candidate: Symbol, caller_file: str) -> tuple:
    # same file, then same directory, then local before external, then path order
    return (
        candidate.file != caller_file,
        posixpath.dirname(candidate.file) != posixpath.dirname(caller_file),
        candidate.external,
        candidate.file,
    )


def match_callee(
    name: str, caller_file: str, by_name: dict[str, list[Symbol]]
) -> Optional[Symbol]:
    candidates = by_name.get(name)
    if not candidates:
        return None
    return min(candidates, key=lambda c: _preference(c, caller_file))


def _relations_slice(args: tuple) -> list[Relation]:
    """Worker: build relations for one slice of symbols (module-level for pickling)."""
    symbols, by_name, include_external = args
    relations: list[Relation] = []
    for symbol in symbols:
        called: list[Callee] = []
        seen: set[CompositeKey] = set()
        for call in symbol.calls:
            target = match_callee(call, symbol.file, by_name)
            if target is not None:
                callee = Callee(name=target.name, line=target.line, file=target.file)
            elif include_external:
                callee = Callee(name=call, line=0, file="")
            else:
                continue
            if callee.key in seen:
                continue
            seen.add(callee.key)
            called.append(callee)
        if called or include_external:
            relations.append(
                Relation(name=symbol.name, line=symbol.line, file=symbol.file, called=tuple(called))
            )
    return relations


def index_by_name(symbols: Iterable[Symbol]) -> dict[str, list[Symbol]]:
    by_name: dict[str, list[Symbol]] = {}
    for symbol in symbols:
        by_name.setdefault(symbol.name, []).append(symbol)
    return by_name


def build_relations(
    symbols: list[Symbol],
    include_external: bool = False,
    workers: int = 1,
    threshold: int = 512,
    executor_factory: ExecutorFactory = ProcessPoolExecutor,
) -> list[Relation]:
    """
    Resolve each symbol's call references to concrete callees.

    Unmatched calls become placeholder callees (line 0, empty file) when
    external inclusion is on and are dropped otherwise. Symbols left with no
    callees are omitted unless external inclusion is on.
    """
    by_name = index_by_name(symbols)
    partials = run_partitioned(
        _relations_slice,
        symbols,
        (by_name, include_external),
        workers,
        threshold,
        executor_factory,
    )
    return [relation for part in partials for relation in part]


def find_roots(
    symbols: Iterable[Symbol],
    index: dict[CompositeKey, Relation],
    internal_prefixes: Iterable[str] = DEFAULT_INTERNAL_PREFIXES,
) -> list[Relation]:
    """
    Symbols that no relation calls, excluding internal names.

    Roots without retained callees are reported as leaf relations.
    """
    prefixes = tuple(internal_prefixes)
    called: set[CompositeKey] = set()
    for relation in index.values():
        called.update(c.key for c in relation.called)

    roots: dict[CompositeKey, Relation] = {}
    for symbol in symbols:
        if symbol.key in called or symbol.key in roots:
            continue
        if is_internal(symbol.name, prefixes):
            continue
        roots[symbol.key] = index.get(symbol.key) or Relation.leaf(symbol)
    return sorted(roots.values(), key=lambda r: r.key)


def dedupe(symbols: Iterable[Symbol]) -> list[Symbol]:
    """Drop later symbols sharing a (name, file) key."""
    seen: set[CompositeKey] = set()
    unique = []
    for symbol in symbols:
        if symbol.key in seen:
            continue
        seen.add(symbol.key)
        unique.append(symbol)
    return unique


class ClosureEngine:
    """
    Transitive reachability over one Snapshot.

    Internal symbols are traversed but never reported unless asked for.
    Per-seed results are memoized; the cache lock is only held for lookups
    and stores, never during traversal.
    """

    def __init__(
        self,
        snapshot: Snapshot,
        internal_prefixes: Iterable[str] = DEFAULT_INTERNAL_PREFIXES,
    ):
        self.snapshot = snapshot
        self.internal_prefixes = tuple(internal_prefixes)
        self._symbols: dict[CompositeKey, Symbol] = {s.key: s for s in snapshot.symbols}
        self._memo: dict[tuple[CompositeKey, bool], frozenset[CompositeKey]] = {}
        self._lock = threading.Lock()

    def node(self, key: CompositeKey) -> Optional[Relation]:
        """Relation for a key; leaf relation for symbols with no callees."""
        relation = self.snapshot.index.get(key)
        if relation is not None:
            return relation
        symbol = self._symbols.get(key)
        return Relation.leaf(symbol) if symbol is not None else None

    def reachable(self, seed: CompositeKey, include_internals: bool = False) -> frozenset[CompositeKey]:
        memo_key = (seed, include_internals)
        with self._lock:
            cached = self._memo.get(memo_key)
            if cached is not None:
                return cached

        found: set[CompositeKey] = set()
        visited: set[CompositeKey] = set()
        stack = [seed]
        while stack:
            key = stack.pop()
            if key in visited:
                continue
            visited.add(key)
            relation = self.node(key)
            if relation is None:
                continue
            if include_internals or not is_internal(relation.name, self.internal_prefixes):
                found.add(key)
            stack.extend(c.key for c in relation.called if not c.is_placeholder)

        result = frozenset(found)
        with self._lock:
            self._memo.setdefault(memo_key, result)
        return result

    def closure(
        self, seeds: Iterable[CompositeKey], include_internals: bool = False
    ) -> list[Relation]:
        """Relations reachable from any seed (seeds included), sorted by key."""
        keys: set[CompositeKey] = set()
        for seed in seeds:
            keys |= self.reachable(seed, include_internals)
        relations = [self.node(k) for k in sorted(keys)]
        return [r for r in relations if r is not None]


class GraphAssembler:
    """Turns resolved symbols into a Snapshot."""

    def __init__(
        self,
        config: AnalyzerConfig,
        executor_factory: ExecutorFactory = ProcessPoolExecutor,
    ):
        self.config = config
        self.executor_factory = executor_factory

    def assemble(self, symbols: Iterable[Symbol]) -> Snapshot:
        config = self.config
        unique = dedupe(symbols)
        filtered, removed = filter_symbol_calls(
            unique,
            include_external=config.include_external,
            workers=config.workers,
            threshold=config.parallel_threshold,
            executor_factory=self.executor_factory,
        )
        relations = build_relations(
            filtered,
            include_external=config.include_external,
            workers=config.workers,
            threshold=config.parallel_threshold,
            executor_factory=self.executor_factory,
        )
        relations.sort(key=lambda r: r.key)
        index = {r.key: r for r in relations}
        roots = find_roots(filtered, index, config.internal_prefixes)

        removed_total = sum(len(c) for c in removed.per_function.values())
        logger.info(
            f"Assembled graph: {len(filtered)} symbols, {len(relations)} relations, "
            f"{len(roots)} roots, {removed_total} calls filtered"
        )
        return Snapshot(
            symbols=tuple(filtered),
            relations=tuple(relations),
            index=index,
            roots=tuple(roots),
            loaded_at=datetime.now(timezone.utc),
            removed=removed,
            include_external=config.include_external,
        )
