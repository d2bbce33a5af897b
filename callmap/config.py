"""
Configuration for the analyzer and the query server.

Settings are layered, later layers win:
1. dataclass defaults
2. <root>/.callmap/config.json
3. environment variables (CALLMAP_*, GOMODCACHE, GOPATH)
4. explicit overrides (CLI flags)
"""

import json
import logging
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)

CONFIG_DIR = ".callmap"
CONFIG_FILE = "config.json"

# Names of the analyzer's own plumbing. Never reported as entry points and
# skipped over (but traversed through) when computing closures.
DEFAULT_INTERNAL_PREFIXES: tuple[str, ...] = (
    "analyzer.",
    "main.load",
    "main.findFunctions",
)

DEFAULT_DEPENDENCY_TIMEOUT = 30.0

# Below this many symbols, filtering and relation building run sequentially.
DEFAULT_PARALLEL_THRESHOLD = 512


def default_module_cache() -> Path:
    """Locate the Go module cache the way the go tool does."""
    gomodcache = os.getenv("GOMODCACHE")
    if gomodcache:
        return Path(gomodcache)
    gopath = os.getenv("GOPATH")
    if gopath:
        # GOPATH may be a list; the module cache lives under the first entry
        first = gopath.split(os.pathsep)[0]
        return Path(first) / "pkg" / "mod"
    return Path.home() / "go" / "pkg" / "mod"


@dataclass
class AnalyzerConfig:
    """Settings for one analysis run."""

    root: Path = field(default_factory=lambda: Path("."))
    include_external: bool = False
    skip_patterns: list[str] = field(default_factory=list)
    dependency_timeout: float = DEFAULT_DEPENDENCY_TIMEOUT
    module_cache: Optional[Path] = None
    max_workers: Optional[int] = None
    parallel_threshold: int = DEFAULT_PARALLEL_THRESHOLD
    internal_prefixes: tuple[str, ...] = DEFAULT_INTERNAL_PREFIXES

    def __post_init__(self):
        self.root = Path(self.root)
        if self.module_cache is not None:
            self.module_cache = Path(self.module_cache)
        self.internal_prefixes = tuple(self.internal_prefixes)

    @property
    def workers(self) -> int:
        return self.max_workers or os.cpu_count() or 4

    def resolved_module_cache(self) -> Path:
        return self.module_cache or default_module_cache()

    def with_overrides(self, **overrides: Any) -> "AnalyzerConfig":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        applied = {k: v for k, v in overrides.items() if v is not None and k in known}
        return replace(self, **applied)


@dataclass
class ServerConfig:
    """Settings for the HTTP query server."""

    host: str = "127.0.0.1"
    port: int = 8080

    @classmethod
    def from_env(cls) -> "ServerConfig":
        return cls(
            host=os.getenv("CALLMAP_HOST", "127.0.0.1"),
            port=int(os.getenv("CALLMAP_PORT", "8080")),
        )


def _env_flag(name: str) -> Optional[bool]:
    value = os.getenv(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def _load_file_settings(root: Path) -> dict[str, Any]:
    """Read <root>/.callmap/config.json, returning {} when absent or invalid."""
    config_path = root / CONFIG_DIR / CONFIG_FILE
    if not config_path.exists():
        return {}
    try:
        data = json.loads(config_path.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring invalid config {config_path}: {e}")
        return {}
    if not isinstance(data, dict):
        logger.warning(f"Ignoring config {config_path}: expected a JSON object")
        return {}

    settings: dict[str, Any] = {}
    if "includeExternal" in data:
        settings["include_external"] = bool(data["includeExternal"])
    if "skip" in data:
        settings["skip_patterns"] = [str(p) for p in data["skip"]]
    if "dependencyTimeout" in data:
        settings["dependency_timeout"] = float(data["dependencyTimeout"])
    if "moduleCache" in data:
        settings["module_cache"] = Path(data["moduleCache"])
    if "maxWorkers" in data:
        settings["max_workers"] = int(data["maxWorkers"])
    if "internalPrefixes" in data:
        settings["internal_prefixes"] = tuple(str(p) for p in data["internalPrefixes"])
    return settings


def _load_env_settings() -> dict[str, Any]:
    settings: dict[str, Any] = {}
    include_external = _env_flag("CALLMAP_INCLUDE_EXTERNAL")
    if include_external is not None:
        settings["include_external"] = include_external
    skip = os.getenv("CALLMAP_SKIP")
    if skip:
        settings["skip_patterns"] = [p.strip() for p in skip.split(",") if p.strip()]
    timeout = os.getenv("CALLMAP_DEPENDENCY_TIMEOUT")
    if timeout:
        try:
            settings["dependency_timeout"] = float(timeout)
        except ValueError:
            logger.warning(f"Ignoring CALLMAP_DEPENDENCY_TIMEOUT={timeout!r}: not a number")
    workers = os.getenv("CALLMAP_MAX_WORKERS")
    if workers:
        try:
            settings["max_workers"] = int(workers)
        except ValueError:
            logger.warning(f"Ignoring CALLMAP_MAX_WORKERS={workers!r}: not an integer")
    return settings


def load_config(root: str | Path = ".", **overrides: Any) -> AnalyzerConfig:
    """Build an AnalyzerConfig for a project root.

    Args:
        root: Project root containing the primary go.mod
        **overrides: Explicit settings (e.g. from CLI flags); None values are ignored

    Returns:
        Fully layered AnalyzerConfig
    """
    root_path = Path(root).resolve()
    config = AnalyzerConfig(root=root_path)
    config = config.with_overrides(**_load_file_settings(root_path))
    config = config.with_overrides(**_load_env_settings())
    return config.with_overrides(**overrides)
