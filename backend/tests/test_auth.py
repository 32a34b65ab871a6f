# tests/test_auth.py — Identity context tests
from datetime import timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import AuthService, COMPANY_CODE_ALPHABET
from models import UserToken

from tests.conftest import get_auth_headers


def test_company_codes_use_unambiguous_alphabet():
    for _ in range(50):
        code = AuthService.generate_company_code()
        assert len(code) == 8
        assert set(code) <= set(COMPANY_CODE_ALPHABET)
        assert not set(code) & set("IO01")


@pytest.mark.asyncio
class TestCompanies:
    async def test_create_company_returns_code(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/companies", json={
            "name": "Initech", "email": "Admin@Initech.com",
        })
        assert res.status_code == 201
        body = res.json()
        assert body["success"] is True
        assert body["message"]["success_type"] == "Company created"
        assert body["data"]["email"] == "admin@initech.com"
        assert len(body["data"]["company_code"]) == 8

        lookup = await client.get(f"/api/v1/auth/companies/{body['data']['company_code']}")
        assert lookup.status_code == 200
        assert lookup.json()["data"]["id"] == body["data"]["id"]

    async def test_duplicate_company_email(self, client: AsyncClient, company):
        res = await client.post("/api/v1/auth/companies", json={
            "name": "Acme Again", "email": "acme@example.com",
        })
        assert res.status_code == 409
        assert res.json()["success"] is False

    async def test_unknown_company_code(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/companies/ZZZZZZZZ")
        assert res.status_code == 404
        assert res.json()["message"]["error_type"] == "Company not found"


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_with_company_code(self, client: AsyncClient, company):
        res = await client.post("/api/v1/auth/register", json={
            "name": "New Hire",
            "email": "new.hire@acme.dev",
            "password": "longenough",
            "role": "tester",
            "company_code": company.company_code,
        })
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["user"]["company_id"] == company.id
        assert data["user"]["role"] == "tester"
        assert data["token"]

    async def test_role_defaults_to_developer(self, client: AsyncClient, company):
        res = await client.post("/api/v1/auth/register", json={
            "name": "Plain", "email": "plain@acme.dev", "password": "longenough",
            "company_id": company.id,
        })
        assert res.status_code == 201
        assert res.json()["data"]["user"]["role"] == "developer"

    async def test_short_password_rejected(self, client: AsyncClient, company):
        res = await client.post("/api/v1/auth/register", json={
            "name": "Shorty", "email": "short@acme.dev", "password": "1234567",
            "company_id": company.id,
        })
        assert res.status_code == 400
        assert res.json()["message"]["error_type"] == "Invalid input"

    async def test_duplicate_email(self, client: AsyncClient, company, developer):
        res = await client.post("/api/v1/auth/register", json={
            "name": "Copy", "email": "dana@acme.dev", "password": "longenough",
            "company_id": company.id,
        })
        assert res.status_code == 409

    async def test_company_required(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            "name": "Nobody", "email": "nobody@acme.dev", "password": "longenough",
        })
        assert res.status_code == 400


@pytest.mark.asyncio
class TestSessions:
    async def test_login_and_me(self, client: AsyncClient, developer):
        res = await client.post("/api/v1/auth/login", json={
            "email": "dana@acme.dev", "password": "TestPassword123",
        })
        assert res.status_code == 200
        token = res.json()["data"]["token"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert me.status_code == 200
        assert me.json()["data"]["id"] == developer.id
        assert me.json()["data"]["company_id"] == developer.company_id

    async def test_login_wrong_password(self, client: AsyncClient, developer):
        res = await client.post("/api/v1/auth/login", json={
            "email": "dana@acme.dev", "password": "wrong-password",
        })
        assert res.status_code == 401
        assert res.json()["success"] is False
        assert res.json()["message"]["error_message"] == "Unable to login"

    async def test_logout_revokes_token(self, client: AsyncClient, db_session, developer):
        headers = await get_auth_headers(db_session, developer)
        assert (await client.get("/api/v1/auth/me", headers=headers)).status_code == 200

        res = await client.post("/api/v1/auth/logout", headers=headers)
        assert res.status_code == 200

        res = await client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401
        assert res.json()["message"]["error_message"] == "Token has been revoked"

    async def test_other_sessions_survive_logout(self, client: AsyncClient, db_session, developer):
        first = await get_auth_headers(db_session, developer)
        second = await get_auth_headers(db_session, developer)
        await client.post("/api/v1/auth/logout", headers=first)
        assert (await client.get("/api/v1/auth/me", headers=second)).status_code == 200

    async def test_expired_token_is_pruned(self, client: AsyncClient, db_session, developer):
        token, jti, expires_at = AuthService.create_access_token(developer.id, timedelta(seconds=-5))
        db_session.add(UserToken(user_id=developer.id, jti=jti, expires_at=expires_at))
        await db_session.commit()

        res = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401

        remaining = await db_session.execute(select(UserToken).where(UserToken.jti == jti))
        assert remaining.scalar_one_or_none() is None

    async def test_garbage_token(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        body = res.json()
        assert body["success"] is False
        assert body["message"]["error_type"] == "Authentication required"
        assert body["message"]["error_message"] == "Invalid token"
