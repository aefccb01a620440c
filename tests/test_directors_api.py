import pytest

from portal.domain.directors import HAS_SUBDIRECTIONS, TITLE_CONFLICT


async def _create(client, **overrides):
    payload = {"titre": "Directeur général", "nom": "Awa Ndiaye", "ordre": 1}
    payload.update(overrides)
    return await client.post("/api/directors", json=payload)


@pytest.mark.asyncio
async def test_create_and_list_directors(client):
    response = await _create(client, key="DGES", nomComplet="Direction générale")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["data"]["titre"] == "Directeur général"
    assert body["data"]["nomComplet"] == "Direction générale"

    listing = await client.get("/api/directors")
    assert [item["nom"] for item in listing.json()["data"]] == ["Awa Ndiaye"]


@pytest.mark.asyncio
async def test_duplicate_active_title_conflicts_case_insensitively(client):
    await _create(client)

    response = await _create(client, titre="DIRECTEUR général", nom="Moussa Diop")

    assert response.status_code == 409
    body = response.json()
    assert body["success"] is False
    assert body["code"] == TITLE_CONFLICT
    assert "Awa Ndiaye" in body["error"]
    assert body["details"]["existing_name"] == "Awa Ndiaye"


@pytest.mark.asyncio
async def test_inactive_director_may_reuse_title(client):
    await _create(client)

    response = await _create(client, nom="Ancien titulaire", active=False)

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_update_into_taken_title_conflicts(client):
    await _create(client)
    other = (await _create(client, titre="Secrétaire général", nom="Fatou Sall")).json()["data"]

    response = await client.put(
        f"/api/directors/{other['id']}", json={"titre": "Directeur général"}
    )

    assert response.status_code == 409
    assert response.json()["code"] == TITLE_CONFLICT


@pytest.mark.asyncio
async def test_partial_update_keeps_other_fields(client):
    created = (await _create(client, mission="Pilotage")).json()["data"]

    response = await client.put(f"/api/directors/{created['id']}", json={"nom": "Awa Ndiaye Fall"})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["nom"] == "Awa Ndiaye Fall"
    assert data["mission"] == "Pilotage"
    assert data["titre"] == "Directeur général"


@pytest.mark.asyncio
async def test_missing_director_is_not_found(client):
    response = await client.get("/api/directors/999")

    assert response.status_code == 404
    assert response.json()["code"] == "NOT_FOUND"

    assert (await client.delete("/api/directors/999")).status_code == 404


@pytest.mark.asyncio
async def test_main_direction_with_subdirections_cannot_be_deleted(client):
    main = (await _create(client, key="DGR")).json()["data"]
    await _create(client, titre="Chef de division", nom="Ibrahima Ba", direction="DGR")

    response = await client.delete(f"/api/directors/{main['id']}")

    assert response.status_code == 409
    assert response.json()["code"] == HAS_SUBDIRECTIONS
    assert response.json()["details"]["subdirections"] == 1


@pytest.mark.asyncio
async def test_delete_director(client):
    created = (await _create(client)).json()["data"]

    response = await client.delete(f"/api/directors/{created['id']}")

    assert response.status_code == 200
    assert (await client.get(f"/api/directors/{created['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_missing_required_fields_is_rejected(client):
    response = await client.post("/api/directors", json={"nom": "Sans titre"})

    assert response.status_code == 422
    assert response.json()["code"] == "VALIDATION_ERROR"
