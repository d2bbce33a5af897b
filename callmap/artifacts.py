"""On-disk JSON artifacts for a loaded snapshot."""

import json
import logging
from pathlib import Path
from typing import Any

from callmap.models import Snapshot

logger = logging.getLogger(__name__)

FUNCTIONS_FILE = "functions.json"
FUNCTION_MAP_FILE = "functionmap.json"
REMOVED_CALLS_FILE = "removed_calls.json"


def _write_json(path: Path, data: Any) -> None:
    path.write_text(json.dumps(data, indent=2, ensure_ascii=False))


def write_artifacts(snapshot: Snapshot, output_dir: str | Path) -> list[Path]:
    """
    Write functions.json, functionmap.json and (without external inclusion)
    removed_calls.json into output_dir.

    Returns:
        Paths written, in that order
    """
    out = Path(output_dir)
    out.mkdir(parents=True, exist_ok=True)

    written = []
    functions_path = out / FUNCTIONS_FILE
    _write_json(functions_path, [s.to_dict() for s in snapshot.symbols])
    written.append(functions_path)

    map_path = out / FUNCTION_MAP_FILE
    _write_json(map_path, [r.to_dict() for r in snapshot.relations])
    written.append(map_path)

    if not snapshot.include_external:
        removed_path = out / REMOVED_CALLS_FILE
        _write_json(removed_path, snapshot.removed.to_dict())
        written.append(removed_path)

    logger.info(f"Wrote {len(written)} artifacts to {out}")
    return written
