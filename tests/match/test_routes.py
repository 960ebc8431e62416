import uuid
from datetime import timedelta

import pytest
from fastapi import status


@pytest.mark.asyncio
async def test_create_and_join_lobby(client, auth_headers, make_profile, clock):
    alice = await make_profile("alice")
    bob = await make_profile("bob")

    response = client.post(
        "/api/v1/lobby",
        json={"rating_min": 800, "rating_max": 1200, "duration": 600},
        headers=auth_headers(alice.id),
    )
    assert response.status_code == status.HTTP_201_CREATED
    lobby = response.json()
    assert lobby["status"] == "waiting"
    assert lobby["lobby_mode"] == "1v1"
    assert len(lobby["challenge_code"]) == 8

    response = client.post(
        f"/api/v1/lobby/{lobby['challenge_code']}/join", headers=auth_headers(bob.id)
    )
    assert response.status_code == status.HTTP_200_OK
    match = response.json()
    assert match["status"] == "active"
    assert match["player2_id"] == str(bob.id)
    assert match["start_time"] == (clock() + timedelta(seconds=10)).isoformat()


@pytest.mark.asyncio
async def test_join_unknown_lobby_is_404(client, auth_headers, make_profile):
    bob = await make_profile("bob")

    response = client.post("/api/v1/lobby/zzzzzzzz/join", headers=auth_headers(bob.id))

    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_team_lobby_requires_team_size(client, auth_headers, make_profile):
    alice = await make_profile("alice")

    response = client.post(
        "/api/v1/lobby", json={"lobby_mode": "team"}, headers=auth_headers(alice.id)
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_lobby_without_enough_problems_is_422(client, auth_headers, make_profile):
    alice = await make_profile("alice")

    response = client.post(
        "/api/v1/lobby",
        json={"rating_min": 3000, "rating_max": 3500},
        headers=auth_headers(alice.id),
    )

    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


@pytest.mark.asyncio
async def test_force_start_and_match_details(client, auth_headers, make_profile):
    alice = await make_profile("alice")
    bob = await make_profile("bob")
    lobby = client.post(
        "/api/v1/lobby",
        json={"lobby_mode": "ffa", "max_players": 4, "problem_count": 2},
        headers=auth_headers(alice.id),
    ).json()
    client.post(f"/api/v1/lobby/{lobby['challenge_code']}/join", headers=auth_headers(bob.id))

    response = client.post(f"/api/v1/match/{lobby['id']}/start", headers=auth_headers(bob.id))
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = client.post(f"/api/v1/match/{lobby['id']}/start", headers=auth_headers(alice.id))
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "active"

    response = client.get(f"/api/v1/match/{lobby['id']}", headers=auth_headers(bob.id))
    assert response.status_code == status.HTTP_200_OK
    detail = response.json()
    assert [p["problem_order"] for p in detail["problems"]] == [0, 1]
    assert {p["player_id"] for p in detail["players"]} == {str(alice.id), str(bob.id)}


@pytest.mark.asyncio
async def test_draw_by_agreement(client, auth_headers, make_profile):
    alice = await make_profile("alice")
    bob = await make_profile("bob")
    lobby = client.post("/api/v1/lobby", json={}, headers=auth_headers(alice.id)).json()
    client.post(f"/api/v1/lobby/{lobby['challenge_code']}/join", headers=auth_headers(bob.id))

    response = client.post(f"/api/v1/match/{lobby['id']}/draw", headers=auth_headers(alice.id))
    assert response.json()["status"] == "draw_offered"
    assert response.json()["match"]["draw_offered_by"] == str(alice.id)

    response = client.post(f"/api/v1/match/{lobby['id']}/draw", headers=auth_headers(bob.id))
    assert response.json()["status"] == "finished"
    assert response.json()["match"]["status"] == "finished"
    assert response.json()["match"]["winner_id"] is None


@pytest.mark.asyncio
async def test_resign(client, auth_headers, make_profile):
    alice = await make_profile("alice")
    bob = await make_profile("bob")
    lobby = client.post("/api/v1/lobby", json={}, headers=auth_headers(alice.id)).json()
    client.post(f"/api/v1/lobby/{lobby['challenge_code']}/join", headers=auth_headers(bob.id))

    response = client.post(f"/api/v1/match/{lobby['id']}/resign", headers=auth_headers(alice.id))

    assert response.status_code == status.HTTP_200_OK
    match = response.json()
    assert match["winner_id"] == str(bob.id)
    assert (match["player1_rating_change"], match["player2_rating_change"]) == (-16, 16)


@pytest.mark.asyncio
async def test_unknown_match_is_404(client, auth_headers, make_profile):
    alice = await make_profile("alice")

    response = client.get(f"/api/v1/match/{uuid.uuid4()}", headers=auth_headers(alice.id))

    assert response.status_code == status.HTTP_404_NOT_FOUND
