"""Run external commands with a timeout and capture their output.

Nothing here raises: a missing executable, a bad working directory, or a
timeout all come back as a :class:`CommandResult` with a non-zero exit code.
Timeouts use exit code 124, matching coreutils ``timeout``.
"""

from __future__ import annotations

import asyncio
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence

from loguru import logger

from ..constants import (
    DEFAULT_COMMAND_TIMEOUT_SECONDS,
    DEFAULT_MAX_OUTPUT_CHARS,
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
)
from ..logging_utils import tail_text


@dataclass(frozen=True)
class CommandResult:
    command: str
    success: bool
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_seconds: float = 0.0

    @property
    def error(self) -> Optional[str]:
        if self.success:
            return None
        if self.timed_out:
            return f"Command timed out: {self.command}"
        detail = self.stderr.strip() or self.stdout.strip()
        if detail:
            return tail_text(detail, 500)
        return f"Command exited with code {self.exit_code}"

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    def to_dict(self) -> dict[str, object]:
        return {
            "command": self.command,
            "success": self.success,
            "exit_code": self.exit_code,
            "timed_out": self.timed_out,
            "duration_seconds": round(self.duration_seconds, 3),
            "stdout_tail": tail_text(self.stdout, 2000),
            "stderr_tail": tail_text(self.stderr, 2000),
        }


def split_command(command: str) -> tuple[str, list[str]]:
    """Split ``"npm run build"`` into ``("npm", ["run", "build"])``."""
    parts = shlex.split(command)
    if not parts:
        raise ValueError("empty command")
    return parts[0], parts[1:]


def _render(executable: str, args: Sequence[str]) -> str:
    return " ".join([executable, *[shlex.quote(a) for a in args]])


def _decode(raw: Optional[bytes], max_chars: int) -> str:
    if not raw:
        return ""
    return tail_text(raw.decode("utf-8", errors="replace"), max_chars)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is not None:
        return
    try:
        proc.kill()
    except ProcessLookupError:
        pass
    await proc.wait()


async def run_command(
    executable: str,
    args: Sequence[str] = (),
    cwd: Optional[Path] = None,
    *,
    timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    env: Optional[Mapping[str, str]] = None,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
) -> CommandResult:
    """Run a command asynchronously; never raises.

    Args:
        executable: Program name or path.
        args: Argument list (no shell interpretation).
        cwd: Working directory.
        timeout_seconds: Wall-clock limit; the process is killed when exceeded.
        env: Optional full environment for the child.
        max_output_chars: Keep only this many trailing characters of each stream.

    Returns:
        A :class:`CommandResult`.
    """
    command = _render(executable, args)
    started = time.monotonic()
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.debug("Command failed to start: {} ({})", command, exc)
        code = NOT_FOUND_EXIT_CODE if isinstance(exc, FileNotFoundError) else 126
        return CommandResult(
            command=command,
            success=False,
            exit_code=code,
            stderr=f"{exc.__class__.__name__}: {exc}",
            duration_seconds=time.monotonic() - started,
        )

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_seconds)
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=5)
        except asyncio.TimeoutError:
            # grandchildren can hold the pipes open after the kill
            stdout, stderr = b"", b""
        logger.warning("Command timed out after {}s: {}", timeout_seconds, command)
        return CommandResult(
            command=command,
            success=False,
            exit_code=TIMEOUT_EXIT_CODE,
            stdout=_decode(stdout, max_output_chars),
            stderr=_decode(stderr, max_output_chars) + f"\n[runner] Command timed out after {timeout_seconds}s\n",
            timed_out=True,
            duration_seconds=time.monotonic() - started,
        )
    except BaseException:
        # cancelled by the caller: the child must not outlive the await
        logger.warning("Command cancelled, killing pid {}: {}", proc.pid, command)
        await _kill(proc)
        raise

    exit_code = proc.returncode if proc.returncode is not None else -1
    result = CommandResult(
        command=command,
        success=exit_code == 0,
        exit_code=exit_code,
        stdout=_decode(stdout, max_output_chars),
        stderr=_decode(stderr, max_output_chars),
        duration_seconds=time.monotonic() - started,
    )
    logger.debug("Command finished: {} exit={} ({:.2f}s)", command, exit_code, result.duration_seconds)
    return result


def run_command_sync(
    executable: str,
    args: Sequence[str] = (),
    cwd: Optional[Path] = None,
    *,
    timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
    env: Optional[Mapping[str, str]] = None,
    max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
) -> CommandResult:
    """Blocking variant of :func:`run_command` with the same contract."""
    command = _render(executable, args)
    started = time.monotonic()
    try:
        proc = subprocess.run(
            [executable, *args],
            cwd=str(cwd) if cwd else None,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=timeout_seconds,
        )
    except subprocess.TimeoutExpired as exc:
        logger.warning("Command timed out after {}s: {}", timeout_seconds, command)
        return CommandResult(
            command=command,
            success=False,
            exit_code=TIMEOUT_EXIT_CODE,
            stdout=_decode(exc.stdout if isinstance(exc.stdout, bytes) else None, max_output_chars),
            stderr=f"[runner] Command timed out after {timeout_seconds}s\n",
            timed_out=True,
            duration_seconds=time.monotonic() - started,
        )
    except OSError as exc:
        code = NOT_FOUND_EXIT_CODE if isinstance(exc, FileNotFoundError) else 126
        return CommandResult(
            command=command,
            success=False,
            exit_code=code,
            stderr=f"{exc.__class__.__name__}: {exc}",
            duration_seconds=time.monotonic() - started,
        )
    return CommandResult(
        command=command,
        success=proc.returncode == 0,
        exit_code=proc.returncode,
        stdout=_decode(proc.stdout, max_output_chars),
        stderr=_decode(proc.stderr, max_output_chars),
        duration_seconds=time.monotonic() - started,
    )


class CommandRunner:
    """Callable wrapper binding timeout and output limits.

    Verification steps receive one of these so tests can substitute a fake
    with the same ``run(command, cwd)`` coroutine.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.max_output_chars = max_output_chars

    async def run(self, command: str, cwd: Path) -> CommandResult:
        try:
            executable, args = split_command(command)
        except ValueError as exc:
            return CommandResult(command=command, success=False, exit_code=2, stderr=f"Invalid command: {exc}")
        return await run_command(
            executable,
            args,
            cwd,
            timeout_seconds=self.timeout_seconds,
            max_output_chars=self.max_output_chars,
        )
