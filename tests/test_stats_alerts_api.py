import pytest

from portal.core.cache import CacheKeys

ALERT = {"title": "Inscriptions", "message": "Les inscriptions ferment vendredi"}

TEACHERS_2025 = {
    "publicUniversities": [
        {"grade": "Professeur", "total": 420},
        {"grade": "Maître de conférences", "total": 880},
    ],
    "privateInstitutions": {"total": 300},
}


@pytest.mark.asyncio
async def test_only_current_active_alerts_are_listed_by_priority(client):
    await client.post("/api/alerts", json={**ALERT, "title": "Basse", "priority": 1})
    await client.post("/api/alerts", json={**ALERT, "title": "Haute", "priority": 8, "level": "danger"})
    await client.post("/api/alerts", json={**ALERT, "title": "Masquée", "status": "inactive"})
    await client.post(
        "/api/alerts",
        json={
            **ALERT,
            "title": "Expirée",
            "startDate": "2020-01-01T00:00:00Z",
            "endDate": "2020-02-01T00:00:00Z",
        },
    )
    await client.post(
        "/api/alerts",
        json={**ALERT, "title": "Planifiée", "priority": 5, "endDate": "2099-01-01T00:00:00Z"},
    )

    listing = (await client.get("/api/alerts")).json()

    assert [item["title"] for item in listing["data"]] == ["Haute", "Planifiée", "Basse"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "override",
    [
        {"startDate": "2026-05-01T00:00:00Z", "endDate": "2026-04-01T00:00:00Z"},
        {"level": "critical"},
        {"priority": 11},
        {"link": "javascript:void(0)"},
    ],
)
async def test_invalid_alert_is_rejected(client, override):
    response = await client.post("/api/alerts", json={**ALERT, **override})

    assert response.status_code == 422
    assert (await client.get("/api/alerts")).json()["data"] == []


@pytest.mark.asyncio
async def test_alert_can_be_deactivated(client):
    created = (await client.post("/api/alerts", json=ALERT)).json()["data"]

    updated = await client.put(f"/api/alerts/{created['id']}", json={**ALERT, "status": "inactive"})

    assert updated.status_code == 200
    assert (await client.get("/api/alerts")).json()["data"] == []
    assert (await client.get(f"/api/alerts/{created['id']}")).json()["data"]["status"] == "inactive"


@pytest.mark.asyncio
async def test_statistics_are_listed_newest_year_first(client):
    for year in (2023, 2025, 2024):
        response = await client.post(
            "/api/stats/students", json={"year": year, "figures": {"totalStudents": year * 100}}
        )
        assert response.status_code == 201

    listing = (await client.get("/api/stats/students")).json()

    assert [item["year"] for item in listing["data"]] == [2025, 2024, 2023]
    assert (await client.get("/api/stats/teachers")).json()["data"] == []


@pytest.mark.asyncio
async def test_duplicate_year_for_same_kind_conflicts(client):
    first = await client.post("/api/stats/teachers", json={"year": 2025, "figures": {}})
    duplicate = await client.post("/api/stats/teachers", json={"year": 2025, "figures": {}})
    other_kind = await client.post("/api/stats/students", json={"year": 2025, "figures": {}})

    assert first.status_code == 201
    assert duplicate.status_code == 409
    assert other_kind.status_code == 201


@pytest.mark.asyncio
async def test_statistic_is_not_reachable_under_another_kind(client):
    created = (
        await client.post("/api/stats/students", json={"year": 2025, "figures": {}})
    ).json()["data"]

    assert (await client.get(f"/api/stats/students/{created['id']}")).status_code == 200
    assert (await client.get(f"/api/stats/teachers/{created['id']}")).status_code == 404
    assert (await client.delete(f"/api/stats/teachers/{created['id']}")).status_code == 404
    assert (await client.get("/api/stats/budgets")).status_code == 422


@pytest.mark.asyncio
async def test_homepage_figures_use_latest_year_and_establishment_fallback(client, make_news):
    await client.post("/api/stats/students", json={"year": 2024, "figures": {"totalStudents": 1000}})
    await client.post("/api/stats/students", json={"year": 2025, "figures": {"totalStudents": 2500}})
    await client.post("/api/stats/teachers", json={"year": 2025, "figures": TEACHERS_2025})
    await client.post("/api/establishments", json={"name": "UCAD", "type": "universite"})
    await client.post(
        "/api/establishments", json={"name": "ISM", "type": "ecole", "status": "private"}
    )
    await make_news()
    await make_news(status="draft")

    data = (await client.get("/api/stats/homepage")).json()["data"]

    assert data["students"] == {"total": 2500, "year": 2025}
    assert data["teachers"] == {"total": 1600, "year": 2025}
    assert data["institutions"] == {"total": 2, "public": 1, "private": 1, "year": None}
    assert data["establishments"] == 2
    assert data["publishedNews"] == 1


@pytest.mark.asyncio
async def test_homepage_figures_are_cached_until_statistics_change(client, cache):
    await client.post(
        "/api/stats/institutions", json={"year": 2025, "figures": {"totalPublic": 8, "totalPrivate": 30}}
    )

    first = (await client.get("/api/stats/homepage")).json()["data"]
    assert first["institutions"]["total"] == 38
    assert cache.get(CacheKeys.homepage_stats()) is not None

    await client.post(
        "/api/stats/institutions", json={"year": 2026, "figures": {"totalPublic": 9, "totalPrivate": 31}}
    )

    assert cache.get(CacheKeys.homepage_stats()) is None
    refreshed = (await client.get("/api/stats/homepage")).json()["data"]
    assert refreshed["institutions"] == {"total": 40, "public": 9, "private": 31, "year": 2026}
