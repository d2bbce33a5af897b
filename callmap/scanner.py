"""Source file and manifest discovery for Go trees."""

import os
from pathlib import Path

GO_EXTENSION = ".go"
TEST_SUFFIX = "_test.go"
MANIFEST_NAME = "go.mod"

# Directories that never hold library surface worth analyzing
SKIPPED_DIRS: frozenset[str] = frozenset({"vendor", "testdata", "node_modules"})


def _prune(dirnames: list[str]) -> None:
    # Modifying dirnames in-place prunes os.walk
    dirnames[:] = sorted(
        d for d in dirnames if not d.startswith(".") and d not in SKIPPED_DIRS
    )


def is_source_file(filename: str) -> bool:
    return filename.endswith(GO_EXTENSION) and not filename.endswith(TEST_SUFFIX)


def scan_sources(root: str | Path) -> list[str]:
    """
    Find all non-test Go source files under root.

    Hidden directories, vendor/ and testdata/ are skipped.

    Returns:
        Sorted list of absolute paths
    """
    root_str = str(Path(root).resolve())
    files: list[str] = []
    for dirpath, dirnames, filenames in os.walk(root_str):
        _prune(dirnames)
        for filename in filenames:
            if is_source_file(filename):
                files.append(os.path.join(str(dirpath), str(filename)))
    return sorted(files)


def find_manifests(root: str | Path) -> list[Path]:
    """
    Find every directory under root that holds a go.mod.

    Returns:
        Directories containing go.mod, root first (when present), then sorted
    """
    root_path = Path(root).resolve()
    found: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(str(root_path)):
        _prune(dirnames)
        if MANIFEST_NAME in filenames:
            found.append(Path(dirpath))
    found.sort(key=lambda p: (p != root_path, str(p)))
    return found
