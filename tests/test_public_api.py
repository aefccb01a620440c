import pytest

from portal.core.cache import CacheKeys

BROWSER_UA = "Mozilla/5.0 (Linux; Android 14) Mobile Safari/537.36"


@pytest.mark.asyncio
async def test_news_list_is_cached(client, cache, make_news):
    await make_news(title="Ouverture des inscriptions")
    await make_news(title="Brouillon interne", status="draft")

    first = await client.get("/api/news", params={"limit": 5})
    await make_news(title="Publiée après coup")
    second = await client.get("/api/news", params={"limit": 5})

    assert first.status_code == 200
    assert [item["title"] for item in first.json()["data"]] == ["Ouverture des inscriptions"]
    assert first.json()["pagination"] == {"page": 1, "limit": 5, "total": 1}
    assert second.json() == first.json()
    assert CacheKeys.news_list(1, 5) in cache.keys()


@pytest.mark.asyncio
async def test_news_detail_by_id_and_slug(client, cache, make_news):
    news = await make_news(title="Calendrier scolaire 2026")

    by_id = await client.get(f"/api/news/{news.id}")
    by_slug = await client.get(f"/api/news/{news.slug}")

    assert by_id.json()["data"]["title"] == "Calendrier scolaire 2026"
    assert by_slug.json()["data"]["id"] == news.id
    assert cache.get(CacheKeys.news_details(news.id))["slug"] == news.slug


@pytest.mark.asyncio
async def test_draft_news_is_not_found(client, make_news):
    draft = await make_news(title="Texte en relecture", status="draft")

    response = await client.get(f"/api/news/{draft.id}")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_search_requires_two_characters(client, make_news):
    await make_news(title="Bourses d'etudes")

    short = (await client.get("/api/search", params={"q": "b"})).json()
    found = (await client.get("/api/search", params={"q": "bourses"})).json()

    assert short["data"]["news"] == []
    assert [item["title"] for item in found["data"]["news"]] == ["Bourses d'etudes"]
    assert found["query"] == "bourses"


@pytest.mark.asyncio
async def test_track_view_and_read_news_stats(app, client, make_news):
    news = await make_news(title="Nouvelle plateforme")

    tracked = await client.post(
        "/api/news/analytics",
        json={"newsId": news.id, "eventType": "view", "sessionId": "abc", "scrollDepth": 80},
        headers={"user-agent": BROWSER_UA, "cf-ipcountry": "SN"},
    )
    await app.state.analytics.wait_for_pending()

    assert tracked.status_code == 200
    assert tracked.json()["data"]["newsId"] == news.id
    assert tracked.json()["data"]["eventType"] == "view"

    stats = await client.get(
        "/api/news/analytics", params={"type": "news", "newsId": news.id, "period": 7}
    )
    totals = stats.json()["data"]["totals"]
    assert totals["total_views"] == 1
    assert totals["device_stats"] == {"mobile": 1}


@pytest.mark.asyncio
async def test_tracking_unknown_article_is_rejected(client):
    response = await client.post(
        "/api/news/analytics", json={"newsId": 4242, "eventType": "view"}
    )

    assert response.status_code == 404
    assert response.json()["code"] == "TRACKING_REJECTED"


@pytest.mark.asyncio
async def test_share_requires_known_platform(client, make_news):
    news = await make_news(title="Appel à candidatures")

    missing = await client.post(
        "/api/news/analytics", json={"newsId": news.id, "eventType": "share"}
    )
    unknown = await client.post(
        "/api/news/analytics",
        json={"newsId": news.id, "eventType": "share", "platform": "myspace"},
    )

    assert missing.status_code == 422
    assert unknown.status_code == 422


@pytest.mark.asyncio
async def test_news_stats_require_news_id(client):
    response = await client.get("/api/news/analytics", params={"type": "news"})

    assert response.status_code == 422
    assert response.json()["field"] == "newsId"


@pytest.mark.asyncio
async def test_global_stats_shape(client):
    response = await client.get("/api/news/analytics", params={"period": 500})

    data = response.json()["data"]
    assert data["period"]["days"] == 365
    assert set(data) == {"period", "overview", "daily_breakdown", "top_articles", "trends"}


@pytest.mark.asyncio
async def test_cache_admin_endpoints(client, cache):
    cache.set("news:1:details", {"id": 1}, tags=["news"])
    cache.set("expensive:top_articles_monthly", [], tags=["expensive"])

    stats = (await client.get("/api/admin/cache/stats")).json()["data"]
    invalidated = await client.post("/api/admin/cache/invalidate", json={"tags": ["news"]})
    debug = (await client.get("/api/admin/cache/debug")).json()["data"]

    assert stats["size"] == 2
    assert invalidated.json()["removed"] == 1
    assert [entry["key"] for entry in debug["entries"]] == ["expensive:top_articles_monthly"]

    cleared = await client.post("/api/admin/cache/invalidate", json={"clear": True})
    assert cleared.json()["removed"] == 1


@pytest.mark.asyncio
async def test_health_and_metrics(client):
    health = await client.get("/health")
    metrics = await client.get("/metrics")

    assert health.json() == {"status": "ok", "checks": {"database": "ok"}}
    assert metrics.status_code == 200
    assert "portal_cache_operations_total" in metrics.text
