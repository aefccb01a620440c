"""Optimization report: collected results, improvements and text rendering."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from portal.core.time_utils import utc_now
from portal.maintenance.benchmarks import PerformanceSnapshot
from portal.maintenance.runner import MaintenanceError

RECOMMENDATIONS = (
    "Watch the cache and maintenance metrics on /metrics",
    "Run this optimization monthly (MAINTENANCE_CRON)",
    "Adjust cache sizing to the observed usage",
    "Monitor usage of the aggregation indexes",
)


@dataclass
class Optimization:
    type: str
    actions: list[str]
    impact: str
    metrics: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "actions": list(self.actions),
            "impact": self.impact,
            "metrics": self.metrics,
        }


def _signed(value: float, suffix: str) -> str:
    return f"{'+' if value > 0 else ''}{round(value)}%{suffix}"


def calculate_improvements(
    before: Optional[PerformanceSnapshot], after: Optional[PerformanceSnapshot]
) -> dict[str, str]:
    """Percent changes between the two snapshots; positive is better."""
    if before is None or after is None:
        return {}
    improvements: dict[str, str] = {}

    before_db, after_db = before.database.average_ms, after.database.average_ms
    if before_db:
        improvements["database"] = _signed((before_db - after_db) / before_db * 100, "")

    improvements["cache"] = _signed(after.cache_hit_rate - before.cache_hit_rate, " hit rate")

    before_mem, after_mem = before.memory.usage, after.memory.usage
    if before_mem:
        improvements["memory"] = _signed((before_mem - after_mem) / before_mem * 100, " usage")
    return improvements


@dataclass
class OptimizationReport:
    started_at: datetime = field(default_factory=utc_now)
    finished_at: Optional[datetime] = None
    optimizations: list[Optimization] = field(default_factory=list)
    errors: list[MaintenanceError] = field(default_factory=list)
    before: Optional[PerformanceSnapshot] = None
    after: Optional[PerformanceSnapshot] = None

    @property
    def duration_seconds(self) -> float:
        end = self.finished_at or utc_now()
        return round((end - self.started_at).total_seconds(), 3)

    @property
    def improvements(self) -> dict[str, str]:
        return calculate_improvements(self.before, self.after)

    def optimization(self, type: str) -> Optional[Optimization]:
        return next((item for item in self.optimizations if item.type == type), None)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "optimizations": [item.to_dict() for item in self.optimizations],
            "errors": [error.to_dict() for error in self.errors],
            "performance": {
                "before": self.before.to_dict() if self.before else None,
                "after": self.after.to_dict() if self.after else None,
            },
            "improvements": self.improvements,
        }

    def render_text(self) -> str:
        lines = [
            "PERFORMANCE OPTIMIZATION REPORT",
            "===============================",
            f"Duration: {round(self.duration_seconds)}s",
            f"Optimizations: {len(self.optimizations)}",
            f"Errors: {len(self.errors)}",
            "",
            "IMPROVEMENTS:",
        ]
        improvements = self.improvements
        lines.extend(f"- {name}: {value}" for name, value in improvements.items())
        if not improvements:
            lines.append("- n/a")

        lines += ["", "DETAILS:"]
        for item in self.optimizations:
            lines.append(f"{item.type.upper()}:")
            lines.extend(f"  * {action}" for action in item.actions)
            lines.append(f"  Impact: {item.impact}")

        lines.append("")
        if self.errors:
            lines.append("ERRORS:")
            lines.extend(f"- {error.operation}: {error.error}" for error in self.errors)
        else:
            lines.append("No errors.")

        lines += ["", "RECOMMENDATIONS:"]
        lines.extend(f"* {item}" for item in RECOMMENDATIONS)
        return "\n".join(lines)


__all__ = ["Optimization", "OptimizationReport", "calculate_improvements"]
