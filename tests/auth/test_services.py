import uuid
from datetime import timedelta

import pytest
from fastapi import status

from arena.business.services.auth_util import create_access_token, decode_token
from arena.data.schemas import TokenUser, UserRole


def test_access_token_round_trip():
    user_id = uuid.uuid4()
    token = create_access_token({"id": str(user_id), "role": "admin"})

    token_data = decode_token(token)

    assert token_data["user"] == {"id": str(user_id), "role": "admin"}
    assert "jti" in token_data


def test_expired_token_does_not_decode():
    token = create_access_token({"id": str(uuid.uuid4())}, expiry=timedelta(seconds=-5))

    assert decode_token(token) is None


def test_tampered_token_does_not_decode():
    token = create_access_token({"id": str(uuid.uuid4())})

    assert decode_token(token[:-2] + "xx") is None


@pytest.mark.parametrize(
    "role, is_admin",
    [(UserRole.USER, False), (UserRole.ADMIN, True), (UserRole.SUPER_ADMIN, True)],
)
def test_admin_roles(role, is_admin):
    assert TokenUser(id=uuid.uuid4(), role=role).is_admin is is_admin


@pytest.mark.asyncio
async def test_token_without_user_claim_is_401(client):
    token = create_access_token({"name": "no id here"})

    response = client.post(
        "/api/v1/arena-engine",
        json={"action": "poll"},
        headers={"Authorization": f"Bearer {token}"},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["detail"] == "Could not validate user"
