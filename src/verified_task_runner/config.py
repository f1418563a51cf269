"""Load optional runner configuration from `.task_runner/config.yaml`."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from .constants import (
    CONFIG_FILE,
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_MAX_AUTO_RETRIES,
    DEFAULT_MAX_OUTPUT_CHARS,
    DEFAULT_MAX_PARALLEL_TASKS,
    DEFAULT_QUALITY_EXCELLENT,
    DEFAULT_QUALITY_GOOD,
    DEFAULT_QUALITY_MINIMUM,
    DEFAULT_RETRY_FLOOR,
    DEFAULT_TASK_TIMEOUT_SECONDS,
    ENV_TASK_TIMEOUT,
    STATE_DIR_NAME,
)
from .errors import ConfigError
from .io_utils import _load_data_with_error


VALID_WORKERS = {"goose", "scripted"}


def load_runner_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional runner config file.

    Args:
        project_dir: Project root directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def _section(config: dict[str, Any], name: str) -> dict[str, Any]:
    raw = _get_nested(config, name)
    return raw if isinstance(raw, dict) else {}


def _fraction(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from None
    if not 0.0 <= value <= 1.0:
        raise ConfigError(f"'{key}' must be within [0, 1], got {value}")
    return value


def _positive(raw: dict[str, Any], key: str, default: float) -> float:
    value = raw.get(key, default)
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{key}' must be a number, got {value!r}") from None
    if value <= 0:
        raise ConfigError(f"'{key}' must be greater than 0, got {value}")
    return value


# ---------------------------------------------------------------------------
# Typed config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class QualityThresholds:
    minimum: float = DEFAULT_QUALITY_MINIMUM
    good: float = DEFAULT_QUALITY_GOOD
    excellent: float = DEFAULT_QUALITY_EXCELLENT


@dataclass(frozen=True)
class RetryPolicy:
    retry_floor: float = DEFAULT_RETRY_FLOOR
    max_auto_retries: int = DEFAULT_MAX_AUTO_RETRIES


@dataclass(frozen=True)
class OrchestratorConfig:
    task_timeout_seconds: float = DEFAULT_TASK_TIMEOUT_SECONDS
    max_parallel_tasks: int = DEFAULT_MAX_PARALLEL_TASKS
    check_worker_available: bool = True
    worker: str = "goose"
    goose_executable: str = "goose"


@dataclass(frozen=True)
class VerificationConfig:
    command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS
    runtime_command: Optional[str] = None
    strategies: dict[str, dict[str, Any]] = field(default_factory=dict)


@dataclass(frozen=True)
class RunnerConfig:
    quality: QualityThresholds = field(default_factory=QualityThresholds)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    agent_types: tuple[dict[str, Any], ...] = ()


def get_quality_config(config: dict[str, Any]) -> QualityThresholds:
    """Extract quality thresholds from the runner config.

    Args:
        config: Runner configuration dictionary.

    Returns:
        Thresholds with defaults filled in for missing keys.

    Raises:
        ConfigError: If a threshold is outside [0, 1] or out of order.
    """
    raw = _section(config, "quality")
    thresholds = QualityThresholds(
        minimum=_fraction(raw, "minimum", DEFAULT_QUALITY_MINIMUM),
        good=_fraction(raw, "good", DEFAULT_QUALITY_GOOD),
        excellent=_fraction(raw, "excellent", DEFAULT_QUALITY_EXCELLENT),
    )
    if not thresholds.minimum <= thresholds.good <= thresholds.excellent:
        raise ConfigError("quality thresholds must satisfy minimum <= good <= excellent")
    return thresholds


def get_retry_config(config: dict[str, Any]) -> RetryPolicy:
    raw = _section(config, "retry")
    max_retries = raw.get("max_auto_retries", DEFAULT_MAX_AUTO_RETRIES)
    if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 0:
        raise ConfigError(f"'max_auto_retries' must be a non-negative integer, got {max_retries!r}")
    return RetryPolicy(
        retry_floor=_fraction(raw, "retry_floor", DEFAULT_RETRY_FLOOR),
        max_auto_retries=max_retries,
    )


def get_orchestrator_config(config: dict[str, Any]) -> OrchestratorConfig:
    """Extract the orchestrator block, applying environment overrides.

    ``TASK_RUNNER_TASK_TIMEOUT`` overrides ``task_timeout_seconds``.
    """
    raw = dict(_section(config, "orchestrator"))
    env_timeout = os.environ.get(ENV_TASK_TIMEOUT)
    if env_timeout:
        raw["task_timeout_seconds"] = env_timeout
    worker = str(raw.get("worker", "goose"))
    if worker not in VALID_WORKERS:
        raise ConfigError(f"'worker' must be one of {sorted(VALID_WORKERS)}, got '{worker}'")
    return OrchestratorConfig(
        task_timeout_seconds=_positive(raw, "task_timeout_seconds", DEFAULT_TASK_TIMEOUT_SECONDS),
        max_parallel_tasks=int(_positive(raw, "max_parallel_tasks", DEFAULT_MAX_PARALLEL_TASKS)),
        check_worker_available=bool(raw.get("check_worker_available", True)),
        worker=worker,
        goose_executable=str(raw.get("goose_executable") or "goose"),
    )


def get_verification_config(config: dict[str, Any]) -> VerificationConfig:
    raw = _section(config, "verification")
    strategies = raw.get("strategies")
    runtime_command = raw.get("runtime_command")
    return VerificationConfig(
        command_timeout_seconds=_positive(raw, "command_timeout_seconds", DEFAULT_COMMAND_TIMEOUT_SECONDS),
        max_output_chars=int(_positive(raw, "max_output_chars", DEFAULT_MAX_OUTPUT_CHARS)),
        runtime_command=str(runtime_command) if runtime_command else None,
        strategies={str(k): dict(v) for k, v in strategies.items() if isinstance(v, dict)}
        if isinstance(strategies, dict) else {},
    )


def get_agents_config(config: dict[str, Any]) -> tuple[dict[str, Any], ...]:
    raw = _get_nested(config, "agents", "types")
    if not isinstance(raw, list):
        return ()
    return tuple(item for item in raw if isinstance(item, dict))


def build_runner_config(config: dict[str, Any]) -> RunnerConfig:
    """Build a validated :class:`RunnerConfig` from a raw config mapping."""
    return RunnerConfig(
        quality=get_quality_config(config),
        retry=get_retry_config(config),
        orchestrator=get_orchestrator_config(config),
        verification=get_verification_config(config),
        agent_types=get_agents_config(config),
    )


def load_config(project_dir: Path) -> RunnerConfig:
    """Load and validate the config for a project directory.

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values.
    """
    raw, err = load_runner_config(project_dir)
    if err:
        raise ConfigError(err)
    return build_runner_config(raw)
