"""
End-to-end load: source tree in, Snapshot out.

Stages:
1. read the root go.mod (fatal if missing)
2. find source files and extract symbols + type information per file
3. build the type catalog and resolve interface calls
4. optionally scan external dependencies, extend the catalog, re-resolve
5. assemble relations, roots and the Snapshot

Per-file work runs on a process pool once there are enough files for the
pool startup to pay off.
"""

import logging
import os
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from callmap.config import AnalyzerConfig
from callmap.dependencies import DependencyResolver, DependencyScan, load_root_manifest
from callmap.errors import SourceParseError
from callmap.extractor import extract_file
from callmap.graph import ExecutorFactory, GraphAssembler, local_namespaces
from callmap.interfaces import InterfaceResolver
from callmap.models import Snapshot, Symbol, namespace_of
from callmap.scanner import scan_sources
from callmap.type_catalog import FileTypes, TypeCatalog, parse_file

logger = logging.getLogger(__name__)

# Minimum files to use a process pool (below this, process spawn overhead dominates)
MIN_FILES_FOR_PARALLEL = 15


def _process_file(args: tuple[str, str]) -> tuple[list[Symbol], Optional[FileTypes]]:
    """
    Extract one file (module-level for pickling).

    A file that cannot be read yields no symbols; a file that does not parse
    still yields its heuristic symbols, just no type information.
    """
    file_path, root = args
    try:
        symbols = extract_file(file_path, root)
    except SourceParseError as e:
        logger.warning(str(e))
        return [], None
    return symbols, parse_file(file_path, root)


def extract_tree(
    root: str | Path,
    files: list[str],
    max_workers: Optional[int] = None,
    executor_factory: ExecutorFactory = ProcessPoolExecutor,
) -> tuple[list[Symbol], list[FileTypes]]:
    """
    Extract symbols and type information for every file, in file order.

    Returns:
        (symbols, file type records for files that parsed)
    """
    root_str = str(root)
    tasks = [(f, root_str) for f in files]
    if len(files) >= MIN_FILES_FOR_PARALLEL:
        workers = max_workers or os.cpu_count() or 4
        with executor_factory(max_workers=workers) as executor:
            results = list(executor.map(_process_file, tasks))
    else:
        results = [_process_file(task) for task in tasks]

    symbols: list[Symbol] = []
    file_types: list[FileTypes] = []
    for file_symbols, types in results:
        symbols.extend(file_symbols)
        if types is not None:
            file_types.append(types)
    return symbols, file_types


@dataclass
class LoadResult:
    """A Snapshot plus the intermediate results of the load that produced it."""

    snapshot: Snapshot
    files: int = 0
    catalog_types: int = 0
    implementations: int = 0
    dependencies: Optional[DependencyScan] = None
    duration: float = 0.0


class Pipeline:
    """
    Runs one complete load for an AnalyzerConfig.

    Usage:
        snapshot = Pipeline(config).run()
    """

    def __init__(
        self,
        config: AnalyzerConfig,
        executor_factory: ExecutorFactory = ProcessPoolExecutor,
    ):
        self.config = config
        self.executor_factory = executor_factory

    def __call__(self) -> Snapshot:
        return self.run()

    def run(self) -> Snapshot:
        return self.load().snapshot

    def load(self) -> LoadResult:
        """
        Run every stage and return the Snapshot with load statistics.

        Raises:
            ManifestError: If the root go.mod is missing or unreadable
        """
        config = self.config
        start = time.monotonic()
        root = config.root.resolve()
        manifest = load_root_manifest(root)
        logger.info(f"Loading {manifest.module} from {root}")

        files = scan_sources(root)
        extracted, file_types = extract_tree(
            root, files, config.max_workers, self.executor_factory
        )
        logger.info(
            f"Extracted {len(extracted)} symbols from {len(files)} files "
            f"({len(file_types)} with type information)"
        )

        catalog = TypeCatalog(file_types)
        resolver = InterfaceResolver(catalog)
        resolved = resolver.resolve_symbols(extracted)
        symbols = resolved.all_symbols

        dependencies = None
        if config.include_external:
            namespaces = local_namespaces(symbols)
            observed = [
                call for s in symbols for call in s.calls if namespace_of(call) not in namespaces
            ]
            dependencies = DependencyResolver(config).resolve(root, observed)
            if dependencies.types:
                # External interfaces and implementations can change how local
                # calls resolve, so resolve again from the unmodified extraction.
                catalog.extend(dependencies.types)
                resolver = InterfaceResolver(catalog)
                resolved = resolver.resolve_symbols(extracted)
                symbols = resolved.all_symbols
            symbols = symbols + dependencies.symbols

        snapshot = GraphAssembler(config, self.executor_factory).assemble(symbols)
        result = LoadResult(
            snapshot=snapshot,
            files=len(files),
            catalog_types=len(catalog),
            implementations=resolver.implementation_count(),
            dependencies=dependencies,
            duration=time.monotonic() - start,
        )
        logger.info(
            f"Load complete in {result.duration:.2f}s: {result.catalog_types} types, "
            f"{result.implementations} interface implementations"
        )
        return result


def load(config: AnalyzerConfig) -> Snapshot:
    """Run a full load with the default process pool."""
    return Pipeline(config).run()
