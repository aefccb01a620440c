import csv
import io
from datetime import timedelta

import pytest

from portal.core.time_utils import utc_now, utc_today
from portal.domain.models import SystemLog
from portal.domain.system_logs import CSV_HEADERS


@pytest.fixture
async def seeded_logs(database):
    now = utc_now()
    async with database.session() as session:
        session.add_all(
            [
                SystemLog(
                    level="error",
                    type="login_failed",
                    category="security",
                    priority="critical",
                    message="Échec de connexion pour admin",
                    username="admin",
                    details={"attempts": 3},
                    timestamp=now - timedelta(minutes=5),
                ),
                SystemLog(
                    level="info",
                    type="news_published",
                    category="content",
                    priority="low",
                    message="Actualité publiée",
                    timestamp=now - timedelta(minutes=1),
                ),
                SystemLog(
                    level="info",
                    type="news_published",
                    category="content",
                    priority="low",
                    message="Ancienne actualité",
                    timestamp=now - timedelta(days=120),
                ),
            ]
        )
        await session.commit()


@pytest.mark.asyncio
async def test_list_logs_filters_and_paginates(client, seeded_logs):
    response = await client.get("/api/admin/logs", params={"level": "info", "limit": 1})

    assert response.status_code == 200
    body = response.json()
    assert body["pagination"] == {"page": 1, "limit": 1, "total": 2, "pages": 2}
    assert body["data"][0]["message"] == "Actualité publiée"


@pytest.mark.asyncio
async def test_search_matches_message_or_username(client, seeded_logs):
    response = await client.get("/api/admin/logs", params={"search": "ADMIN"})

    assert [item["type"] for item in response.json()["data"]] == ["login_failed"]


@pytest.mark.asyncio
async def test_logs_stats(client, seeded_logs):
    response = await client.get("/api/admin/logs/stats")

    data = response.json()["data"]
    assert data["total"] == 3
    assert data["level_stats"] == {"error": 1, "info": 2}
    assert data["critical_unprocessed"] == 1


@pytest.mark.asyncio
async def test_export_csv_has_headers_and_filename(client, seeded_logs):
    response = await client.get("/api/admin/logs/export", params={"category": "security"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert response.headers["content-disposition"] == (
        f'attachment; filename="system-logs-{utc_today().isoformat()}.csv"'
    )
    rows = list(csv.reader(io.StringIO(response.text)))
    assert tuple(rows[0]) == CSV_HEADERS
    assert len(rows) == 2
    assert rows[1][1:4] == ["error", "login_failed", "security"]
    assert rows[1][9] == '{"attempts": 3}'


@pytest.mark.asyncio
async def test_clear_old_logs_records_an_audit_entry(client, seeded_logs):
    response = await client.post("/api/admin/logs/clear", json={"olderThan": 90})

    assert response.status_code == 200
    assert response.json()["deleted"] == 1

    remaining = (await client.get("/api/admin/logs")).json()["data"]
    assert [item["type"] for item in remaining][0] == "logs_cleared"
    assert len(remaining) == 3


@pytest.mark.asyncio
async def test_clear_by_level(client, seeded_logs):
    response = await client.post("/api/admin/logs/clear", json={"level": "info"})

    assert response.json()["deleted"] == 2
    assert "niveau info" in response.json()["message"]
