"""Bounded quality history and pass-rate analytics per task type."""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Iterable

from ..constants import QUALITY_HISTORY_LIMIT
from .base import VerificationResult

logger = logging.getLogger(__name__)

TREND_WINDOW = 5
TREND_DELTA = 0.05


@dataclass(frozen=True)
class HistoryEntry:
    task_id: str
    task_type: str
    score: float
    passed: bool
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_type": self.task_type,
            "score": round(self.score, 4),
            "passed": self.passed,
            "timestamp": self.timestamp,
        }


def _figures(entries: list[HistoryEntry]) -> dict[str, Any]:
    total = len(entries)
    if not total:
        return {"total": 0, "pass_rate": 0.0, "average_score": 0.0}
    passed = sum(1 for e in entries if e.passed)
    return {
        "total": total,
        "pass_rate": round(100.0 * passed / total, 1),
        "average_score": round(sum(e.score for e in entries) / total, 4),
    }


def _trend(entries: list[HistoryEntry]) -> str:
    if len(entries) < 2 * TREND_WINDOW:
        return "stable"
    recent = entries[-TREND_WINDOW:]
    previous = entries[-2 * TREND_WINDOW:-TREND_WINDOW]
    delta = sum(e.score for e in recent) / TREND_WINDOW - sum(e.score for e in previous) / TREND_WINDOW
    if delta > TREND_DELTA:
        return "improving"
    if delta < -TREND_DELTA:
        return "declining"
    return "stable"


class QualityHistory:
    """Keeps the most recent verification outcomes for each task type."""

    def __init__(self, limit: int = QUALITY_HISTORY_LIMIT) -> None:
        self.limit = limit
        self._by_type: dict[str, deque[HistoryEntry]] = {}

    def record(self, task_type: str, result: VerificationResult) -> HistoryEntry:
        entry = HistoryEntry(
            task_id=result.task_id,
            task_type=task_type,
            score=result.score,
            passed=result.passed,
            timestamp=result.created_at,
        )
        self._by_type.setdefault(task_type, deque(maxlen=self.limit)).append(entry)
        return entry

    def entries(self, task_type: str | None = None) -> list[HistoryEntry]:
        if task_type is not None:
            return list(self._by_type.get(task_type, ()))
        out: list[HistoryEntry] = []
        for items in self._by_type.values():
            out.extend(items)
        return sorted(out, key=lambda e: e.timestamp)

    def analytics(self) -> dict[str, Any]:
        """Overall and per-type totals, pass rate (percent), average score, trend."""
        summary = _figures(self.entries())
        summary["by_type"] = {}
        for task_type, items in self._by_type.items():
            entries = list(items)
            figures = _figures(entries)
            figures["trend"] = _trend(entries)
            summary["by_type"][task_type] = figures
        return summary

    def to_list(self) -> list[dict[str, Any]]:
        return [e.to_dict() for e in self.entries()]

    def load(self, items: Iterable[dict[str, Any]]) -> None:
        for item in items:
            if not isinstance(item, dict):
                continue
            try:
                entry = HistoryEntry(
                    task_id=str(item["task_id"]),
                    task_type=str(item.get("task_type") or "unknown"),
                    score=float(item.get("score") or 0.0),
                    passed=bool(item.get("passed")),
                    timestamp=str(item.get("timestamp") or ""),
                )
            except (KeyError, TypeError, ValueError):
                logger.warning("Skipping malformed history entry: %r", item)
                continue
            self._by_type.setdefault(entry.task_type, deque(maxlen=self.limit)).append(entry)
