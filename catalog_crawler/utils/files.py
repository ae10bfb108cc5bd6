"""Whole-file JSON read/write helpers for the durable collaborators."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def read_json(path: str | Path, default: Any = None) -> Any:
    """
    Read a whole JSON file.

    Missing or corrupt files return ``default`` so a half-written file from
    an external writer never crashes the reader.
    """
    path = Path(path)
    if not path.exists():
        return default
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read {path}: {e}")
        return default


def write_json_atomic(path: str | Path, data: Any) -> None:
    """
    Write ``data`` as JSON, replacing the file in one step.

    The payload goes to a temp file in the same directory first, then
    ``os.replace`` swaps it in, so readers see either the old or the new
    content.

    Raises:
        OSError: If the file cannot be written
    """
    path = Path(path)
    directory = path.parent if str(path.parent) else Path(".")
    directory.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
