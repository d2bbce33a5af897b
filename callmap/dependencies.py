"""
External dependency discovery and scanning.

Reads go.mod manifests, locates required modules in the local module cache,
and extracts exported symbols and type information from the modules that the
local code actually calls into. Dependencies of scanned dependencies are
followed recursively, but only when they are relevant to calls made by the
module that required them.

Scans run concurrently on a thread pool, one wave of modules at a time. Each
module scan has its own time bound; a slow or missing module is logged and
skipped without affecting the others.
"""

import fnmatch
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from callmap.config import AnalyzerConfig
from callmap.errors import (
    DependencyError,
    DependencyScanTimeout,
    ManifestError,
    ModuleNotFoundInCache,
    SourceParseError,
)
from callmap.extractor import extract_file
from callmap.models import EXTERNAL_FILE_PREFIX, ExternalDependency, Symbol
from callmap.scanner import MANIFEST_NAME, find_manifests, scan_sources
from callmap.type_catalog import FileTypes, package_name_for_path, parse_file

logger = logging.getLogger(__name__)

# Extra time granted to a running scan before the waiting side gives up on it
SCAN_GRACE_SECONDS = 1.0
MAX_SCAN_THREADS = 8


@dataclass
class Manifest:
    """Parsed contents of one go.mod file."""

    path: Path
    module: Optional[str] = None
    requires: dict[str, ExternalDependency] = field(default_factory=dict)


def _strip_comment(line: str) -> tuple[str, str]:
    code, _, comment = line.partition("//")
    return code.strip(), comment.strip()


def parse_manifest_text(text: str, path: Path) -> Manifest:
    """
    Parse go.mod text.

    Handles the module directive, single-line `require path version` and
    parenthesized require blocks. `// indirect` marks a dependency indirect.
    """
    manifest = Manifest(path=path)
    in_block = False

    def add(code: str, comment: str) -> None:
        parts = code.split()
        if len(parts) < 2:
            return
        dep = ExternalDependency(
            path=parts[0], version=parts[1], indirect=comment.startswith("indirect")
        )
        manifest.requires.setdefault(dep.path, dep)

    for raw in text.splitlines():
        code, comment = _strip_comment(raw)
        if in_block:
            if code.startswith(")"):
                in_block = False
            elif code:
                add(code, comment)
            continue
        if code.startswith("module ") and manifest.module is None:
            manifest.module = code[len("module "):].strip().strip('"')
        elif code.startswith("require"):
            rest = code[len("require"):].strip()
            if rest.startswith("("):
                in_block = True
            elif rest:
                add(rest, comment)
    return manifest


def read_manifest(directory: str | Path) -> Manifest:
    """Read <directory>/go.mod. Raises OSError or UnicodeDecodeError when unreadable."""
    path = Path(directory) / MANIFEST_NAME
    return parse_manifest_text(path.read_text(encoding="utf-8"), path)


def load_root_manifest(root: str | Path) -> Manifest:
    """
    Read the project root's go.mod.

    Raises:
        ManifestError: If it is missing, unreadable or has no module directive
    """
    path = Path(root) / MANIFEST_NAME
    try:
        manifest = read_manifest(root)
    except OSError as e:
        raise ManifestError(path, e.strerror or str(e)) from e
    except UnicodeDecodeError as e:
        raise ManifestError(path, f"not valid UTF-8: {e}") from e
    if not manifest.module:
        raise ManifestError(path, "no module directive")
    return manifest


def escape_module_path(path: str) -> str:
    """Module cache escaping: each uppercase letter becomes '!' + lowercase."""
    return "".join(f"!{c.lower()}" if "A" <= c <= "Z" else c for c in path)


def candidate_paths(cache: Path, dep: ExternalDependency) -> list[Path]:
    """Directories the module may live in: literal, lowercased, then escaped."""
    version = dep.version if dep.version.startswith("v") else f"v{dep.version}"
    literal = f"{dep.path}@{version}"
    candidates: list[Path] = []
    for name in (literal, literal.lower(), escape_module_path(literal)):
        candidate = cache / name
        if candidate not in candidates:
            candidates.append(candidate)
    return candidates


def locate_module(cache: Path, dep: ExternalDependency) -> Path:
    """
    Find a dependency's source directory in the module cache.

    Raises:
        ModuleNotFoundInCache: If no candidate directory exists
    """
    tried = candidate_paths(cache, dep)
    for candidate in tried:
        if candidate.is_dir():
            return candidate
    raise ModuleNotFoundInCache(dep.path, dep.version, tried)


def matches_skip(module_path: str, patterns: Iterable[str]) -> bool:
    """A pattern matches as a glob, or as a plain path prefix."""
    for pattern in patterns:
        if fnmatch.fnmatchcase(module_path, pattern) or module_path.startswith(pattern):
            return True
    return False


def call_prefixes(calls: Iterable[str]) -> set[tuple[str, str]]:
    """(call path without its final segment, first segment) for dotted calls."""
    prefixes = set()
    for call in calls:
        parts = call.split(".")
        if len(parts) < 2:
            continue
        prefixes.add((".".join(parts[:-1]), parts[0]))
    return prefixes


def _base_names(module_path: str) -> set[str]:
    names = {module_path.rsplit("/", 1)[-1], package_name_for_path(module_path)}
    return {n for n in names if n}


def is_relevant(module_path: str, prefixes: set[tuple[str, str]]) -> bool:
    """
    Whether any call could target this module.

    A call matches when its path is a prefix of the module path, the module
    path ends with it on a segment boundary, or its first segment or full path
    equals the module's base name (the segment before any /vN suffix).
    """
    bases = _base_names(module_path)
    for prefix, token in prefixes:
        if module_path.startswith(prefix) and (
            len(prefix) == len(module_path) or module_path[len(prefix)] in "/."
        ):
            return True
        if module_path.endswith("/" + prefix):
            return True
        if token in bases or prefix in bases:
            return True
    return False


def filter_relevant(
    deps: Iterable[ExternalDependency], calls: Iterable[str]
) -> list[ExternalDependency]:
    prefixes = call_prefixes(calls)
    return [d for d in deps if is_relevant(d.path, prefixes)]


@dataclass
class ModuleScan:
    """What one dependency scan produced."""

    dependency: ExternalDependency
    symbols: list[Symbol] = field(default_factory=list)
    types: list[FileTypes] = field(default_factory=list)
    requires: dict[str, ExternalDependency] = field(default_factory=dict)


@dataclass
class DependencyScan:
    """Aggregate of all dependency scans for one load."""

    symbols: list[Symbol] = field(default_factory=list)
    types: list[FileTypes] = field(default_factory=list)
    scanned: list[ExternalDependency] = field(default_factory=list)
    failures: list[tuple[ExternalDependency, str]] = field(default_factory=list)

    def add(self, module: ModuleScan) -> None:
        self.symbols.extend(module.symbols)
        self.types.extend(module.types)
        self.scanned.append(module.dependency)


def scan_module(
    dep: ExternalDependency, module_root: Path, deadline: float, timeout: float
) -> ModuleScan:
    """
    Extract exported symbols and types from one module directory.

    Files in package main, test files, and vendor/testdata/hidden directories
    are skipped. The deadline is checked before each file.

    Raises:
        DependencyScanTimeout: If the deadline passes mid-scan
    """
    result = ModuleScan(dependency=dep)
    for file_path in scan_sources(module_root):
        if time.monotonic() > deadline:
            raise DependencyScanTimeout(dep.path, dep.version, timeout)
        rel = Path(file_path).relative_to(module_root).as_posix()
        label = f"{EXTERNAL_FILE_PREFIX}{dep.path}/{rel}"
        try:
            symbols = extract_file(
                file_path,
                module_root,
                file_label=label,
                exported_only=True,
                skip_main=True,
                external=True,
            )
        except SourceParseError as e:
            logger.warning(f"Skipping {label}: {e}")
            continue
        result.symbols.extend(symbols)
        file_types = parse_file(
            file_path, module_root, file_label=label, origin=dep.path, exported_only=True
        )
        if file_types is not None and file_types.package != "main":
            result.types.append(file_types)

    manifest_path = module_root / MANIFEST_NAME
    if manifest_path.exists():
        try:
            result.requires = read_manifest(module_root).requires
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Cannot read {manifest_path}: {e}")
    return result


@dataclass
class ScanTicket:
    """Tracks when a queued dependency scan actually starts running."""

    dependency: ExternalDependency
    started: threading.Event = field(default_factory=threading.Event)
    deadline: float = 0.0

    def start(self, timeout: float) -> None:
        self.deadline = time.monotonic() + timeout
        self.started.set()


class DependencyResolver:
    """
    Discovers, filters and scans external dependencies for a project root.

    Usage:
        resolver = DependencyResolver(config)
        scan = resolver.resolve(root, observed_calls)
    """

    def __init__(self, config: AnalyzerConfig):
        self.cache = config.resolved_module_cache()
        self.skip_patterns = list(config.skip_patterns)
        self.timeout = config.dependency_timeout
        self.max_workers = max(1, min(config.workers, MAX_SCAN_THREADS))

    def discover(self, root: str | Path) -> dict[str, ExternalDependency]:
        """
        Merge the requirements of every go.mod under root.

        The root manifest must be readable; others are optional. The first
        declaration of a module path wins, and modules declared by local
        manifests are not treated as external.
        """
        root_path = Path(root).resolve()
        root_manifest = load_root_manifest(root_path)
        local_modules = {root_manifest.module}
        merged = dict(root_manifest.requires)

        for directory in find_manifests(root_path):
            if directory == root_path:
                continue
            try:
                manifest = read_manifest(directory)
            except (OSError, UnicodeDecodeError) as e:
                logger.warning(f"Skipping unreadable manifest in {directory}: {e}")
                continue
            if manifest.module:
                local_modules.add(manifest.module)
            for path, dep in manifest.requires.items():
                merged.setdefault(path, dep)

        deps = {p: d for p, d in merged.items() if p not in local_modules}
        logger.info(f"Discovered {len(deps)} external dependencies under {root_path}")
        return deps

    def _without_skipped(self, deps: Iterable[ExternalDependency]) -> list[ExternalDependency]:
        kept = []
        for dep in deps:
            if matches_skip(dep.path, self.skip_patterns):
                logger.debug(f"Skipping {dep.path} (matches skip pattern)")
                continue
            kept.append(dep)
        return kept

    def _scan_one(self, ticket: ScanTicket) -> ModuleScan:
        ticket.start(self.timeout)
        dep = ticket.dependency
        module_root = locate_module(self.cache, dep)
        dep.root = str(module_root)
        return scan_module(dep, module_root, ticket.deadline, self.timeout)

    def _collect(self, future: Future, ticket: ScanTicket) -> ModuleScan:
        # Time spent queued behind other scans does not count against this one
        dep = ticket.dependency
        bound = self.timeout + SCAN_GRACE_SECONDS
        if not ticket.started.wait(timeout=max(bound, 0.0)):
            future.cancel()
            raise DependencyScanTimeout(dep.path, dep.version, self.timeout)
        remaining = ticket.deadline + SCAN_GRACE_SECONDS - time.monotonic()
        try:
            return future.result(timeout=max(remaining, 0.0))
        except FutureTimeoutError as e:
            future.cancel()
            raise DependencyScanTimeout(dep.path, dep.version, self.timeout) from e

    def resolve(self, root: str | Path, observed_calls: Iterable[str]) -> DependencyScan:
        """
        Scan every dependency relevant to the observed calls, recursively.

        Each (module path, version) is scanned at most once, which also breaks
        dependency cycles. Failures are recorded on the result, never raised.

        Raises:
            ManifestError: If the root go.mod is missing or unreadable
        """
        deps = self._without_skipped(self.discover(root).values())
        wave = filter_relevant(deps, observed_calls)
        visited: set[tuple[str, str]] = set()
        scan = DependencyScan()

        executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="callmap-deps"
        )
        try:
            while wave:
                pending: list[tuple[Future, ScanTicket]] = []
                for dep in sorted(wave, key=lambda d: d.identity):
                    if dep.identity in visited:
                        continue
                    visited.add(dep.identity)
                    ticket = ScanTicket(dep)
                    pending.append((executor.submit(self._scan_one, ticket), ticket))

                next_wave: dict[tuple[str, str], ExternalDependency] = {}
                for future, ticket in pending:
                    dep = ticket.dependency
                    try:
                        module = self._collect(future, ticket)
                    except DependencyError as e:
                        logger.warning(f"Dependency skipped: {e}")
                        scan.failures.append((dep, str(e)))
                        continue
                    scan.add(module)
                    logger.debug(
                        f"Scanned {dep.path}@{dep.version}: {len(module.symbols)} symbols"
                    )
                    module_calls = [c for s in module.symbols for c in s.calls]
                    nested = self._without_skipped(module.requires.values())
                    for nested_dep in filter_relevant(nested, module_calls):
                        if nested_dep.identity not in visited:
                            next_wave.setdefault(nested_dep.identity, nested_dep)
                wave = list(next_wave.values())
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        logger.info(
            f"Dependency scan: {len(scan.scanned)} modules scanned, "
            f"{len(scan.symbols)} external symbols, {len(scan.failures)} skipped"
        )
        return scan
