import uuid
from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi import status

from arena.business.services.match_lifecycle import get_match_lifecycle
from arena.errors import UpstreamTimeoutException
from arena.main import app

ENGINE_URL = "/api/v1/arena-engine"


@pytest.mark.asyncio
async def test_missing_token_is_401(client):
    response = client.post(ENGINE_URL, json={"action": "poll"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_invalid_token_is_401(client):
    response = client.post(
        ENGINE_URL, json={"action": "poll"}, headers={"Authorization": "Bearer not-a-jwt"}
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert "Invalid or expired token" in response.json()["detail"]


@pytest.mark.asyncio
async def test_wrong_scheme_is_401(client, auth_headers):
    token = auth_headers(uuid.uuid4())["Authorization"].split(" ", 1)[1]

    response = client.post(
        ENGINE_URL, json={"action": "poll"}, headers={"Authorization": f"Basic {token}"}
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_auth_is_checked_before_action(client):
    response = client.post(ENGINE_URL, json={"action": "dance"})

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.parametrize(
    "body",
    [
        {"action": "dance"},
        {},
        {"action": None},
        ["poll"],
        {"action": 5},
        {"action": ["poll"]},
        {"action": {"x": 1}},
    ],
)
@pytest.mark.asyncio
async def test_unknown_or_missing_action_is_400(client, auth_headers, body):
    response = client.post(ENGINE_URL, json=body, headers=auth_headers(uuid.uuid4()))

    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_non_json_body_is_400(client, auth_headers):
    response = client.post(
        ENGINE_URL, content=b"action=poll", headers=auth_headers(uuid.uuid4())
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_action_is_checked_before_standing(client, auth_headers):
    # A user with no queue entry still gets 400 for an unknown action
    response = client.post(ENGINE_URL, json={"action": "nope"}, headers=auth_headers(uuid.uuid4()))

    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_matchmake_requires_queue_entry(client, auth_headers):
    response = client.post(
        ENGINE_URL, json={"action": "matchmake"}, headers=auth_headers(uuid.uuid4())
    )

    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.asyncio
async def test_poll_requires_active_match(client, auth_headers):
    response = client.post(ENGINE_URL, json={"action": "poll"}, headers=auth_headers(uuid.uuid4()))

    assert response.status_code == status.HTTP_403_FORBIDDEN


@pytest.mark.asyncio
async def test_matchmake_single_entry(client, auth_headers, make_profile, enqueue):
    alice = await make_profile("alice")
    await enqueue(alice.id)

    response = client.post(ENGINE_URL, json={"action": "matchmake"}, headers=auth_headers(alice.id))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"message": "Not enough players"}


@pytest.mark.asyncio
async def test_matchmake_creates_match(client, auth_headers, make_profile, enqueue, clock):
    alice = await make_profile("alice")
    bob = await make_profile("bob")
    await enqueue(alice.id, created_at=datetime(2024, 5, 1, 11, 0))
    await enqueue(bob.id, created_at=datetime(2024, 5, 1, 11, 1))

    response = client.post(ENGINE_URL, json={"action": "matchmake"}, headers=auth_headers(bob.id))

    assert response.status_code == status.HTTP_200_OK
    match = response.json()["match"]
    assert match["status"] == "active"
    assert match["player1_id"] == str(alice.id)
    assert match["player2_id"] == str(bob.id)
    assert match["start_time"] == (clock() + timedelta(seconds=10)).isoformat()


@pytest.mark.asyncio
async def test_matchmake_catalog_failure_is_502(
    client, admin_headers, judge, make_profile, enqueue
):
    judge.catalog_error = UpstreamTimeoutException(detail="Codeforces catalog timed out")
    alice = await make_profile("alice")
    bob = await make_profile("bob")
    await enqueue(alice.id)
    await enqueue(bob.id)

    response = client.post(ENGINE_URL, json={"action": "matchmake"}, headers=admin_headers)

    assert response.status_code == status.HTTP_502_BAD_GATEWAY


@pytest.mark.asyncio
async def test_admin_poll_without_matches(client, admin_headers):
    response = client.post(ENGINE_URL, json={"action": "poll"}, headers=admin_headers)

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"message": "No active matches"}


@pytest.mark.asyncio
async def test_participant_poll_reports_solve_and_finish(
    client, auth_headers, judge, clock, make_profile, enqueue
):
    alice = await make_profile("alice")
    bob = await make_profile("bob")
    await enqueue(alice.id, created_at=datetime(2024, 5, 1, 11, 0))
    await enqueue(bob.id, created_at=datetime(2024, 5, 1, 11, 1))
    match = client.post(
        ENGINE_URL, json={"action": "matchmake"}, headers=auth_headers(alice.id)
    ).json()["match"]

    clock.advance(30)
    solved_at = clock() - timedelta(seconds=5)
    judge.accept("bob", match["contest_id"], match["problem_index"], solved_at)

    response = client.post(ENGINE_URL, json={"action": "poll"}, headers=auth_headers(alice.id))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {
        "results": [
            {
                "match_id": match["id"],
                "player_id": str(bob.id),
                "problem_order": 0,
                "solved_at": solved_at.isoformat(),
            }
        ]
    }

    clock.advance(900)
    response = client.post(ENGINE_URL, json={"action": "poll"}, headers=auth_headers(alice.id))
    assert response.json() == {
        "results": [{"match_id": match["id"], "status": "finished", "winner_id": str(bob.id)}]
    }

    # The match is over, so alice no longer has standing to poll
    response = client.post(ENGINE_URL, json={"action": "poll"}, headers=auth_headers(alice.id))
    assert response.status_code == status.HTTP_403_FORBIDDEN


class ExplodingLifecycle:
    async def poll(self, session_factory):
        raise RuntimeError("secret connection string")


@pytest.mark.asyncio
async def test_unexpected_error_is_500_with_generic_body(client, admin_headers):
    app.dependency_overrides[get_match_lifecycle] = lambda: ExplodingLifecycle()

    with patch("arena.presentation.routes.engine.engine_logger") as mock_logger:
        response = client.post(ENGINE_URL, json={"action": "poll"}, headers=admin_headers)

    assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
    assert response.json() == {
        "detail": "An unexpected error occurred. Please try again later."
    }
    assert "secret" not in response.text
    logged = mock_logger.error.call_args
    assert "secret connection string" in logged.args[0]
    assert logged.kwargs["exc_info"] is True
