"""Test packaging metadata and installation extras."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def _load_pyproject() -> dict[str, Any]:
    pyproject_path = PROJECT_ROOT / "pyproject.toml"
    raw = pyproject_path.read_text(encoding="utf-8")
    if sys.version_info >= (3, 11):
        import tomllib

        return tomllib.loads(raw)

    import tomli

    return tomli.loads(raw)


def _names(requirements: list[str]) -> set[str]:
    names = set()
    for item in requirements:
        name = str(item).split(";")[0].strip().lower()
        for sep in ("<", ">", "=", "!", "~", "["):
            name = name.split(sep)[0]
        names.add(name.strip())
    return names


def test_pyproject_declares_test_extras() -> None:
    """Ensure `pyproject.toml` declares pytest under `[project.optional-dependencies].test`."""
    data = _load_pyproject()
    test_deps = data.get("project", {}).get("optional-dependencies", {}).get("test", [])
    assert "pytest" in _names(test_deps)


def test_pyproject_declares_runtime_dependencies() -> None:
    data = _load_pyproject()
    deps = _names(data["project"]["dependencies"])
    assert {"loguru", "pyyaml"} <= deps


def test_console_script_points_at_cli_main() -> None:
    data = _load_pyproject()
    scripts = data["project"]["scripts"]
    assert scripts["verified-task-runner"] == "verified_task_runner.cli:main"
