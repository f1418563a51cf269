"""Per-project-type verification strategies.

A strategy names the files a deliverable must contain, the commands that
build, test and lint it, the weighted checks that score it, and how the
runtime gate decides that it can start.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger(__name__)


GATE_STEPS = ("file_structure", "build", "tests", "runtime", "security")
WEIGHTED_STEPS = ("lint", "dependencies", "documentation", "performance", "integration")

DEPLOYMENT_CHECKS = {
    "start_server",
    "serve_static",
    "docker_compose",
    "python_module",
    "database_schema",
    "none",
}


@dataclass(frozen=True)
class Strategy:
    project_type: str
    required_files: tuple[str, ...] = ()
    build_commands: tuple[str, ...] = ()
    test_commands: tuple[str, ...] = ()
    lint_commands: tuple[str, ...] = ()
    weighted_checks: tuple[str, ...] = ()
    deployment_check: str = "none"

    @property
    def step_names(self) -> tuple[str, ...]:
        """Gates first, then this strategy's weighted checks."""
        return GATE_STEPS + tuple(c for c in self.weighted_checks if c not in GATE_STEPS)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_type": self.project_type,
            "required_files": list(self.required_files),
            "build_commands": list(self.build_commands),
            "test_commands": list(self.test_commands),
            "lint_commands": list(self.lint_commands),
            "weighted_checks": list(self.weighted_checks),
            "deployment_check": self.deployment_check,
        }


STRATEGIES: dict[str, Strategy] = {
    "frontend": Strategy(
        project_type="frontend",
        required_files=("package.json", "src/", "public/", "README.md"),
        build_commands=("npm install", "npm run build"),
        test_commands=("npm test",),
        lint_commands=(),
        weighted_checks=("lint", "dependencies", "documentation", "performance"),
        deployment_check="serve_static",
    ),
    "backend": Strategy(
        project_type="backend",
        required_files=("package.json", "server.js", "README.md"),
        build_commands=("npm install",),
        test_commands=("npm test",),
        weighted_checks=("lint", "dependencies", "documentation"),
        deployment_check="start_server",
    ),
    "database": Strategy(
        project_type="database",
        required_files=("schema.sql", "migrations/", "seeds/", "README.md"),
        build_commands=(),
        test_commands=("npm run test:db",),
        weighted_checks=("documentation",),
        deployment_check="database_schema",
    ),
    "fullstack": Strategy(
        project_type="fullstack",
        required_files=("frontend/", "backend/", "database/", "docker-compose.yml", "README.md"),
        build_commands=("docker-compose build",),
        test_commands=("npm run test:integration",),
        weighted_checks=("lint", "dependencies", "documentation", "performance", "integration"),
        deployment_check="docker_compose",
    ),
    "python": Strategy(
        project_type="python",
        required_files=("pyproject.toml", "README.md"),
        build_commands=("python -m compileall -q .",),
        test_commands=("python -m pytest -q",),
        weighted_checks=("lint", "dependencies", "documentation"),
        deployment_check="python_module",
    ),
}

DEFAULT_STRATEGY = "fullstack"

_FRONTEND_FRAMEWORKS = ("react", "vue", "angular", "nextjs")
_BACKEND_FRAMEWORKS = ("express", "fastify", "nodejs")


# ---------------------------------------------------------------------------
# Project type detection
# ---------------------------------------------------------------------------

def _detect_node_framework(package_json: Path) -> str:
    try:
        data = json.loads(package_json.read_text(errors="replace"))
    except (OSError, ValueError):
        return "nodejs"
    deps: dict[str, Any] = {}
    for key in ("dependencies", "devDependencies"):
        section = data.get(key) if isinstance(data, dict) else None
        if isinstance(section, dict):
            deps.update(section)
    if "next" in deps:
        return "nextjs"
    if "react" in deps:
        return "react"
    if "vue" in deps:
        return "vue"
    if "@angular/core" in deps:
        return "angular"
    if "express" in deps:
        return "express"
    if "fastify" in deps:
        return "fastify"
    return "nodejs"


def detect_project_type(project_dir: Path) -> str:
    """Guess the framework of the code in *project_dir*.

    Returns one of react, vue, angular, nextjs, express, fastify, nodejs,
    python, php, rust or static.
    """
    if (project_dir / "package.json").is_file():
        return _detect_node_framework(project_dir / "package.json")
    if (project_dir / "requirements.txt").is_file() or (project_dir / "pyproject.toml").is_file():
        return "python"
    if (project_dir / "composer.json").is_file():
        return "php"
    if (project_dir / "Cargo.toml").is_file():
        return "rust"
    return "static"


def strategy_type_for(detected: str) -> str:
    """Map a detected framework onto a strategy name."""
    if detected in _FRONTEND_FRAMEWORKS:
        return "frontend"
    if detected in _BACKEND_FRAMEWORKS:
        return "backend"
    if detected in STRATEGIES:
        return detected
    return DEFAULT_STRATEGY


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

_OVERRIDABLE = {f.name for f in fields(Strategy)} - {"project_type"}


def _apply_overrides(strategy: Strategy, overrides: dict[str, Any]) -> Strategy:
    changes: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in _OVERRIDABLE:
            logger.warning("Ignoring unknown strategy field '%s' for %s", key, strategy.project_type)
            continue
        if key == "deployment_check":
            if value not in DEPLOYMENT_CHECKS:
                logger.warning("Ignoring unknown deployment check '%s'", value)
                continue
            changes[key] = str(value)
        elif isinstance(value, (list, tuple)):
            changes[key] = tuple(str(v) for v in value)
        elif isinstance(value, str):
            changes[key] = (value,)
    return replace(strategy, **changes) if changes else strategy


def resolve_strategy(
    task_type: str,
    project_dir: Path,
    overrides: Optional[dict[str, dict[str, Any]]] = None,
) -> Strategy:
    """Return the strategy for *task_type*, detecting it from disk when unknown.

    Per-type entries in *overrides* replace the matching strategy fields.
    """
    key = (task_type or "").lower()
    if key not in STRATEGIES:
        detected = detect_project_type(project_dir)
        key = strategy_type_for(detected)
        logger.debug("Task type '%s' unknown; detected %s, using %s strategy", task_type, detected, key)
    strategy = STRATEGIES[key]
    custom = (overrides or {}).get(key)
    if isinstance(custom, dict):
        strategy = _apply_overrides(strategy, custom)
    return strategy
