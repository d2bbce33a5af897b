"""
Atomically swappable snapshot cache.

Readers hold a shared lock for the duration of one query, so a query never
observes half of an old snapshot and half of a new one. A reload builds the
new snapshot without holding the lock and takes the exclusive lock only for
the reference swap. A failed reload leaves the previous snapshot in place.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, Optional

from callmap.config import DEFAULT_INTERNAL_PREFIXES
from callmap.errors import ReloadError
from callmap.graph import ClosureEngine
from callmap.models import Snapshot

logger = logging.getLogger(__name__)


class RWLock:
    """
    Reader-writer lock; waiting writers block new readers.

    Not reentrant: a thread holding the read side must not acquire it again.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class CacheState(str, Enum):
    EMPTY = "empty"
    LOADING = "loading"
    READY = "ready"


@dataclass(frozen=True)
class LoadedGraph:
    """A snapshot paired with the closure engine built for it."""

    snapshot: Snapshot
    closures: ClosureEngine


class SnapshotCache:
    """
    Holds the current LoadedGraph and replaces it on reload.

    Reloads are serialized; concurrent reload requests queue up and each runs
    a full load.
    """

    def __init__(
        self,
        loader: Callable[[], Snapshot],
        internal_prefixes: Iterable[str] = DEFAULT_INTERNAL_PREFIXES,
    ):
        self._loader = loader
        self._internal_prefixes = tuple(internal_prefixes)
        self._lock = RWLock()
        self._reload_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._state = CacheState.EMPTY
        self._current: Optional[LoadedGraph] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> CacheState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: CacheState) -> None:
        with self._state_lock:
            self._state = state

    def reload(self) -> Snapshot:
        """
        Build a new snapshot and swap it in.

        Raises:
            ReloadError: If the load fails; the previous snapshot stays current
        """
        with self._reload_lock:
            self._set_state(CacheState.LOADING)
            try:
                snapshot = self._loader()
            except Exception as e:
                logger.exception("Reload failed, keeping previous snapshot")
                self.last_error = str(e)
                with self._lock.read():
                    has_snapshot = self._current is not None
                self._set_state(CacheState.READY if has_snapshot else CacheState.EMPTY)
                raise ReloadError(str(e)) from e

            graph = LoadedGraph(snapshot, ClosureEngine(snapshot, self._internal_prefixes))
            with self._lock.write():
                self._current = graph
            self.last_error = None
            self._set_state(CacheState.READY)
            logger.info(f"Snapshot swapped in (loaded at {snapshot.loaded_at_iso})")
            return snapshot

    @contextmanager
    def read(self) -> Iterator[Optional[LoadedGraph]]:
        """Hold the read side and yield the current graph (None before the first load)."""
        with self._lock.read():
            yield self._current
