import asyncio
import dataclasses
import json

import pytest

from portal.maintenance import cli
from portal.maintenance import scheduler as maintenance_scheduler
from portal.maintenance.scheduler import JOB_ID, create_maintenance_scheduler


def test_scheduler_disabled_without_cron(settings, cache):
    assert create_maintenance_scheduler(cache, settings) is None


def test_invalid_cron_is_ignored(settings, cache):
    broken = dataclasses.replace(settings, maintenance_cron="every monday")

    assert create_maintenance_scheduler(cache, broken) is None


def test_monthly_cron_registers_single_job(settings, cache):
    monthly = dataclasses.replace(settings, maintenance_cron="0 3 1 * *")

    scheduler = create_maintenance_scheduler(cache, monthly)

    job = scheduler.get_job(JOB_ID)
    assert job is not None
    assert job.max_instances == 1
    assert job.coalesce is True
    assert "day='1'" in str(job.trigger)


def test_cli_parser_flags():
    args = cli.build_parser().parse_args(["--json", "--database-url", "sqlite:///x.db"])

    assert args.json is True
    assert args.database_url == "sqlite:///x.db"


@pytest.mark.asyncio
async def test_cli_prints_json_report(tmp_path, capsys):
    url = f"sqlite+aiosqlite:///{tmp_path / 'cli.db'}"

    exit_code = await cli.main(["--json", "--database-url", url])

    assert exit_code == 0
    report = json.loads(capsys.readouterr().out)
    assert [item["type"] for item in report["optimizations"]] == [
        "database",
        "cache",
        "analytics",
        "memory",
        "queries",
    ]
    assert report["performance"]["before"] is not None


@pytest.mark.asyncio
async def test_optimize_endpoint_returns_report(client):
    response = await client.post("/api/admin/maintenance/optimize")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["report"].startswith("PERFORMANCE OPTIMIZATION REPORT")
    assert len(body["data"]["optimizations"]) == 5


@pytest.mark.asyncio
async def test_optimize_endpoint_rejects_overlapping_run(app, client):
    lock: asyncio.Lock = app.state.maintenance_lock
    await lock.acquire()
    try:
        response = await client.post("/api/admin/maintenance/optimize")
    finally:
        lock.release()

    assert response.status_code == 409
    assert response.json()["code"] == "MAINTENANCE_RUNNING"


@pytest.mark.asyncio
async def test_scheduled_run_skipped_while_manual_run_holds_lock(settings, cache, monkeypatch):
    async def must_not_run(*args, **kwargs):
        raise AssertionError("optimization started while another run was in progress")

    monkeypatch.setattr(maintenance_scheduler, "run_optimization", must_not_run)
    lock = asyncio.Lock()
    await lock.acquire()
    try:
        await maintenance_scheduler._scheduled_run(cache, settings, lock)
    finally:
        lock.release()


def test_scheduler_job_shares_the_given_lock(settings, cache):
    monthly = dataclasses.replace(settings, maintenance_cron="0 3 1 * *")
    lock = asyncio.Lock()

    scheduler = create_maintenance_scheduler(cache, monthly, lock=lock)

    assert scheduler.get_job(JOB_ID).args[2] is lock
