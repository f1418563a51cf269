"""Configure loguru and summarize command output for logs and scoring."""

from __future__ import annotations

import json
import logging
import re
import sys
from typing import Any

from loguru import logger


_FAILED_NODEID_RE = re.compile(r"^(?P<nodeid>\S+)\s+FAILED\b", re.M)
_FAILED_SUMMARY_RE = re.compile(r"^FAILED\s+(?P<nodeid>\S+)\b", re.M)
_ASSERT_RE = re.compile(r"^(E\s+.+)$", re.M)
_FAILURE_HEADER_RE = re.compile(r"^_{5,}\s*(.+?)\s*_{5,}$", re.M)
# "3 failed", "2 failing", "Tests: 4 failed" (pytest / mocha / jest summaries)
_FAILED_COUNT_RE = re.compile(r"\b(?P<count>\d+)\s+(?:failed|failing)\b", re.I)

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
    "{message}"
)


class InterceptHandler(logging.Handler):
    """Route stdlib ``logging`` records into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level.

    Stdlib loggers used by the core packages are intercepted so both streams
    share one sink.
    """
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)


def summarize_pytest_failures(log_text: str, max_failed: int = 5) -> dict[str, object]:
    """Summarize pytest failures from a raw log.

    Args:
        log_text: Full pytest output text.
        max_failed: Maximum number of `FAILED ...` entries to capture.

    Returns:
        A dictionary with keys `failed`, `headline`, and `first_error`.
    """
    if not log_text:
        return {"failed": [], "headline": None, "first_error": None}

    failed: list[str] = []
    seen: set[str] = set()
    for regex in (_FAILED_NODEID_RE, _FAILED_SUMMARY_RE):
        for match in regex.finditer(log_text):
            nodeid = (match.group("nodeid") or "").strip()
            if not nodeid or nodeid in seen:
                continue
            seen.add(nodeid)
            failed.append(nodeid)
            if len(failed) >= max_failed:
                break
        if len(failed) >= max_failed:
            break

    m_err = _ASSERT_RE.search(log_text)
    first_error = m_err.group(1).strip() if m_err else None

    m_head = _FAILURE_HEADER_RE.search(log_text)
    headline = m_head.group(1).strip() if m_head else None

    return {"failed": failed, "headline": headline, "first_error": first_error}


def count_test_failures(log_text: str) -> int:
    """Best-effort count of failing tests in a test runner log.

    Prefers an explicit ``N failed`` summary; otherwise counts distinct
    ``FAILED`` node ids.  Returns 0 when nothing recognisable is found.
    """
    if not log_text:
        return 0
    counts = [int(m.group("count")) for m in _FAILED_COUNT_RE.finditer(log_text)]
    if counts:
        return max(counts)
    summary = summarize_pytest_failures(log_text, max_failed=1000)
    return len(summary["failed"])  # type: ignore[arg-type]


def tail_text(text: str, max_chars: int = 4000) -> str:
    if not text or len(text) <= max_chars:
        return text or ""
    return text[-max_chars:]


def pretty(obj: Any, *, indent: int = 2) -> str:
    """Serialize an object as JSON for readable logs.

    Args:
        obj: Object to serialize.
        indent: Indentation level for JSON output.

    Returns:
        A JSON string when possible; otherwise `str(obj)`.
    """
    try:
        return json.dumps(obj, indent=indent, default=str)
    except (TypeError, ValueError):
        return str(obj)
