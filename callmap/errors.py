"""Exception types raised by the callmap pipeline and query layer."""

from pathlib import Path


class CallmapError(Exception):
    """Base class for all callmap errors."""


class ManifestError(CallmapError):
    """The root go.mod is missing or unreadable, so no local module boundary exists."""

    def __init__(self, manifest_path: Path | str, reason: str):
        self.manifest_path = Path(manifest_path)
        self.reason = reason
        super().__init__(f"Cannot read manifest {self.manifest_path}: {reason}")


class SourceParseError(CallmapError):
    """A single source file could not be read or parsed."""

    def __init__(self, file_path: Path | str, error: Exception | str):
        self.file_path = Path(file_path)
        self.error = error
        super().__init__(f"Failed to parse {self.file_path}: {error}")


class DependencyError(CallmapError):
    """A single external dependency could not be located or scanned."""

    def __init__(self, module_path: str, version: str, message: str):
        self.module_path = module_path
        self.version = version
        super().__init__(f"{module_path}@{version}: {message}")


class ModuleNotFoundInCache(DependencyError):
    """None of the candidate module cache directories exist."""

    def __init__(self, module_path: str, version: str, tried: list[Path]):
        self.tried = tried
        super().__init__(
            module_path,
            version,
            f"not found in module cache (tried {len(tried)} locations)",
        )


class DependencyScanTimeout(DependencyError):
    """Scanning a dependency exceeded its time bound."""

    def __init__(self, module_path: str, version: str, timeout: float):
        self.timeout = timeout
        super().__init__(module_path, version, f"scan exceeded {timeout:.1f}s")


class ReloadError(CallmapError):
    """A reload failed; the previously loaded snapshot is still served."""


class QueryError(CallmapError):
    """Bad or missing query parameters supplied by a client."""


class SnapshotNotReady(CallmapError):
    """No snapshot has been loaded yet."""
