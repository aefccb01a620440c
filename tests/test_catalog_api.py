import pytest
from sqlalchemy import func, select

from portal.domain.models import Document, Establishment


async def _count(database, model) -> int:
    async with database.session() as session:
        return (await session.execute(select(func.count(model.id)))).scalar_one()


ESTABLISHMENT = {
    "name": "Université Cheikh Anta Diop",
    "type": "universite",
    "region": "Dakar",
    "city": "Dakar",
    "latitude": 14.69,
    "longitude": -17.46,
    "website": "https://www.ucad.sn",
}


@pytest.mark.asyncio
async def test_create_and_group_establishments(client):
    created = await client.post("/api/establishments", json=ESTABLISHMENT)
    await client.post(
        "/api/establishments",
        json={**ESTABLISHMENT, "name": "Université Gaston Berger", "region": "Saint-Louis"},
    )

    assert created.status_code == 201
    assert created.json()["data"]["website"] == "https://www.ucad.sn"

    grouped = (await client.get("/api/establishments", params={"groupByRegion": "true"})).json()
    assert sorted(grouped["data"]) == ["Dakar", "Saint-Louis"]

    filtered = (await client.get("/api/establishments", params={"region": "Dakar"})).json()
    assert [item["name"] for item in filtered["data"]] == ["Université Cheikh Anta Diop"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "override",
    [
        {"latitude": 91},
        {"longitude": -181},
        {"website": "ftp://ucad.sn"},
        {"website": "not a url"},
    ],
)
async def test_invalid_establishment_is_rejected_before_write(client, database, override):
    response = await client.post("/api/establishments", json={**ESTABLISHMENT, **override})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
    assert await _count(database, Establishment) == 0


@pytest.mark.asyncio
async def test_document_requires_http_url(client, database):
    response = await client.post(
        "/api/documents",
        json={"title": "Arrêté ministériel", "category": "arretes", "url": "javascript:alert(1)"},
    )

    assert response.status_code == 422
    assert await _count(database, Document) == 0


@pytest.mark.asyncio
async def test_only_published_documents_are_listed(client):
    base = {"category": "rapports", "url": "https://example.org/rapport.pdf"}
    await client.post("/api/documents", json={**base, "title": "Rapport annuel"})
    await client.post("/api/documents", json={**base, "title": "Brouillon", "status": "draft"})

    listing = (await client.get("/api/documents")).json()

    assert [item["title"] for item in listing["data"]] == ["Rapport annuel"]


@pytest.mark.asyncio
async def test_public_services_hide_drafts(client):
    await client.post(
        "/api/admin/services",
        json={"name": "Bourses en ligne", "category": "etudiants", "status": "published"},
    )
    await client.post("/api/admin/services", json={"name": "Interne", "category": "agents"})

    public = (await client.get("/api/services")).json()["data"]
    admin = (await client.get("/api/admin/services")).json()["data"]

    assert [item["name"] for item in public] == ["Bourses en ligne"]
    assert len(admin) == 2


@pytest.mark.asyncio
async def test_event_end_before_start_is_rejected(client):
    response = await client.post(
        "/api/events",
        json={
            "title": "Forum de l'orientation",
            "location": "Dakar",
            "starts_at": "2026-11-10T09:00:00Z",
            "ends_at": "2026-11-09T18:00:00Z",
        },
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_update_and_delete_event(client):
    payload = {
        "title": "Forum de l'orientation",
        "location": "Dakar",
        "starts_at": "2026-11-10T09:00:00Z",
    }
    created = (await client.post("/api/events", json=payload)).json()["data"]

    updated = await client.put(
        f"/api/events/{created['id']}", json={**payload, "location": "Thiès"}
    )
    deleted = await client.delete(f"/api/events/{created['id']}")

    assert updated.json()["data"]["location"] == "Thiès"
    assert deleted.status_code == 200
    assert (await client.get(f"/api/events/{created['id']}")).status_code == 404
