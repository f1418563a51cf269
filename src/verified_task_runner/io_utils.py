"""File helpers for snapshots, config files and the event log."""

from __future__ import annotations

import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

import yaml

from .utils import _now_iso

YAML_SUFFIXES = {".yaml", ".yml"}


@contextmanager
def _atomic_open(path: Path) -> Iterator[IO[str]]:
    """Write through a sibling temp file, replacing *path* only on success."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(tmp_path, "w", encoding="utf-8") as handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def _load_data_with_error(
    path: Path,
    default: dict[str, Any],
) -> tuple[dict[str, Any], str | None]:
    """Load a YAML (or JSON) mapping and return ``(data, error_message)``.

    A missing or empty file yields ``(default, None)``. Parse errors, IO
    errors and non-mapping documents are returned as an error string so the
    caller decides whether the file is fatal.
    """
    if not path.exists():
        return default, None
    try:
        with open(path, "r", encoding="utf-8") as handle:
            if path.suffix in YAML_SUFFIXES:
                data = yaml.safe_load(handle)
            else:
                data = json.load(handle)
    except OSError as exc:
        return default, f"{path.name}: {exc.__class__.__name__}: {exc}"
    except json.JSONDecodeError as exc:
        return default, f"{path.name}: JSONDecodeError: {exc}"
    except yaml.YAMLError as exc:
        return default, f"{path.name}: YAMLError: {exc}"
    if data is None:
        return default, None
    if not isinstance(data, dict):
        return default, f"{path.name}: expected object, got {type(data).__name__}"
    return data, None


def _save_data(path: Path, data: dict[str, Any]) -> None:
    """Atomically write *data* as YAML, or as JSON for non-YAML suffixes."""
    with _atomic_open(path) as handle:
        if path.suffix in YAML_SUFFIXES:
            yaml.safe_dump(data, handle, sort_keys=False, default_flow_style=False, allow_unicode=True)
        else:
            json.dump(data, handle, indent=2, default=str)


def _append_jsonl(path: Path, record: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = dict(record)
    payload.setdefault("timestamp", _now_iso())
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(json.dumps(payload, default=str) + "\n")
