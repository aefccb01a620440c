import asyncio

import pytest

from portal.maintenance.report import Optimization, OptimizationReport, calculate_improvements
from portal.maintenance.runner import MaintenanceStep, StepOutcome, StepRunner


@pytest.mark.asyncio
async def test_failing_step_is_recorded_and_run_continues():
    calls = []

    async def first():
        calls.append("first")
        return 3

    async def broken():
        calls.append("broken")
        raise RuntimeError("index locked")

    async def last():
        calls.append("last")
        return "done"

    errors = []
    results = await StepRunner(errors).run(
        "optimize_database",
        [
            MaintenanceStep("first", first, lambda count: f"{count} rows"),
            MaintenanceStep("broken", broken),
            MaintenanceStep("last", last),
        ],
    )

    assert calls == ["first", "broken", "last"]
    assert [result.outcome for result in results] == [
        StepOutcome.SUCCESS,
        StepOutcome.FAILURE,
        StepOutcome.SUCCESS,
    ]
    assert len(errors) == 1
    assert errors[0].operation == "optimize_database.broken"
    assert errors[0].error == "index locked"


@pytest.mark.asyncio
async def test_error_without_message_uses_exception_name():
    async def broken():
        raise KeyError()

    errors = []
    await StepRunner(errors).run("stage", [MaintenanceStep("broken", broken)])

    assert errors[0].error == "KeyError"


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed():
    async def cancelled():
        raise asyncio.CancelledError()

    errors = []
    with pytest.raises(asyncio.CancelledError):
        await StepRunner(errors).run("stage", [MaintenanceStep("cancelled", cancelled)])
    assert errors == []


@pytest.mark.asyncio
async def test_step_summary_uses_describe_or_failure():
    async def ok():
        return 7

    async def broken():
        raise ValueError("bad")

    steps = [
        MaintenanceStep("ok", ok, lambda value: f"Collected {value}"),
        MaintenanceStep("plain", ok),
        MaintenanceStep("broken", broken),
    ]
    results = await StepRunner([]).run("stage", steps)

    assert [step.summary(result) for step, result in zip(steps, results)] == [
        "Collected 7",
        "plain",
        "broken: failed (bad)",
    ]


def test_improvements_empty_without_snapshots():
    assert calculate_improvements(None, None) == {}


def test_report_renders_errors_and_actions():
    report = OptimizationReport()
    report.optimizations.append(
        Optimization(type="cache", actions=["Expired entries removed: 2"], impact="high")
    )
    report.finished_at = report.started_at

    text = report.render_text()

    assert "CACHE:" in text
    assert "  * Expired entries removed: 2" in text
    assert "No errors." in text
    assert report.to_dict()["optimizations"][0]["type"] == "cache"
    assert report.optimization("cache") is report.optimizations[0]
    assert report.optimization("memory") is None
