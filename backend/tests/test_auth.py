"""
Tests for registration, login and token handling.
"""

import pytest

from marketplace.services.auth_service import create_access_token, decode_access_token


def test_access_token_round_trip():
    token = create_access_token("0b7c6d8e-1111-4222-8333-944455556666", "someone@example.com")
    payload = decode_access_token(token)
    assert payload["sub"] == "0b7c6d8e-1111-4222-8333-944455556666"
    assert payload["email"] == "someone@example.com"
    assert decode_access_token(token + "tampered") is None


@pytest.mark.anyio
async def test_register_login_whoami(client, seeded):
    registered = await client.post(
        "/api/auth/register",
        json={"email": "Carol@Example.com", "password": "correct-horse", "name": "Carol"},
    )
    assert registered.status_code == 201
    assert registered.json()["user"]["email"] == "carol@example.com"

    duplicate = await client.post(
        "/api/auth/register",
        json={"email": "carol@example.com", "password": "another-password"},
    )
    assert duplicate.status_code == 400
    assert duplicate.json()["error"] == "BAD_REQUEST"

    wrong = await client.post("/api/auth/login", json={"email": "carol@example.com", "password": "nope-nope"})
    assert wrong.status_code == 401
    assert wrong.json() == {"error": "UNAUTHORIZED", "message": "Invalid email or password"}

    login = await client.post("/api/auth/login", json={"email": "carol@example.com", "password": "correct-horse"})
    assert login.status_code == 200
    token = login.json()["access_token"]

    me = await client.get("/api/auth/whoami", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["name"] == "Carol"


@pytest.mark.anyio
async def test_bad_token_is_unauthorized(client, seeded):
    response = await client.get("/api/auth/whoami", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.json()["error"] == "UNAUTHORIZED"
