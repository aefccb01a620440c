"""Sequential step runner that records failures and keeps going."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

from portal.core.metrics import observe_step
from portal.core.time_utils import utc_now

logger = logging.getLogger(__name__)


class StepOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class StepResult:
    name: str
    outcome: StepOutcome
    detail: Any = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.outcome is StepOutcome.SUCCESS


@dataclass(frozen=True)
class MaintenanceError:
    operation: str
    error: str
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class MaintenanceStep:
    """A named unit of work; `describe` turns its return value into a report line."""

    name: str
    action: Callable[[], Awaitable[Any]]
    describe: Optional[Callable[[Any], str]] = None

    def summary(self, result: StepResult) -> str:
        if not result.ok:
            return f"{self.name}: failed ({result.detail})"
        if self.describe is None:
            return self.name
        return self.describe(result.detail)


class StepRunner:
    """Runs steps strictly in order; a failing step is recorded, never fatal."""

    def __init__(self, errors: list[MaintenanceError]):
        self.errors = errors

    async def run(self, stage: str, steps: Iterable[MaintenanceStep]) -> list[StepResult]:
        results: list[StepResult] = []
        for step in steps:
            operation = f"{stage}.{step.name}"
            started = time.perf_counter()
            try:
                detail = await step.action()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                elapsed = time.perf_counter() - started
                message = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Maintenance step failed: %s",
                    operation,
                    exc_info=True,
                    extra={"operation": operation},
                )
                self.errors.append(MaintenanceError(operation=operation, error=message))
                observe_step(stage, StepOutcome.FAILURE.value, elapsed)
                results.append(
                    StepResult(step.name, StepOutcome.FAILURE, message, round(elapsed * 1000, 2))
                )
                continue

            elapsed = time.perf_counter() - started
            observe_step(stage, StepOutcome.SUCCESS.value, elapsed)
            logger.debug(
                "Maintenance step done: %s",
                operation,
                extra={"operation": operation, "duration_ms": round(elapsed * 1000, 2)},
            )
            results.append(
                StepResult(step.name, StepOutcome.SUCCESS, detail, round(elapsed * 1000, 2))
            )
        return results


__all__ = ["MaintenanceError", "MaintenanceStep", "StepOutcome", "StepResult", "StepRunner"]
