# tests/test_auth.py — Authentication & authorization tests
import pytest
from httpx import AsyncClient
from sqlalchemy import select

from auth import AuthService
from models import User, UserRole
from tests.conftest import get_auth_headers


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_success(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            "email": "newuser@tracklane.dev",
            "password": "SecurePass123!",
            "firstName": "New",
            "lastName": "User",
        })
        assert res.status_code == 201
        data = res.json()["data"]
        assert data["token"]
        assert data["tokenType"] == "bearer"
        assert data["user"]["email"] == "newuser@tracklane.dev"
        assert data["user"]["firstName"] == "New"
        assert data["user"]["role"] == "DEVELOPER"

    async def test_register_weak_password(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            "email": "weak@tracklane.dev",
            "password": "short",
        })
        assert res.status_code == 400
        assert "password" in res.json()["errors"]

    async def test_register_duplicate_email(self, client: AsyncClient):
        payload = {"email": "dupe@tracklane.dev", "password": "SecurePass123!"}
        await client.post("/api/v1/auth/register", json=payload)
        res = await client.post("/api/v1/auth/register", json=payload)
        assert res.status_code == 409
        assert res.json()["success"] is False

    async def test_register_invalid_email(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/register", json={
            "email": "not-an-email",
            "password": "SecurePass123!",
        })
        assert res.status_code == 400
        assert "email" in res.json()["errors"]

    async def test_password_is_hashed(self, client: AsyncClient, db_session):
        await client.post("/api/v1/auth/register", json={
            "email": "hashed@tracklane.dev",
            "password": "SecurePass123!",
        })
        user = (await db_session.execute(
            select(User).where(User.email == "hashed@tracklane.dev")
        )).scalar_one()
        assert user.password_hash != "SecurePass123!"
        assert AuthService.verify_password("SecurePass123!", user.password_hash)


@pytest.mark.asyncio
class TestLogin:
    async def test_login_success(self, client: AsyncClient, developer):
        res = await client.post("/api/v1/auth/login", json={
            "email": "dev@tracklane.dev",
            "password": "Password123!",
        })
        assert res.status_code == 200
        data = res.json()["data"]
        assert data["user"]["id"] == developer.id
        assert "time:track" in data["user"]["permissions"]

        me = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['token']}"})
        assert me.status_code == 200
        assert me.json()["data"]["email"] == "dev@tracklane.dev"

    async def test_login_wrong_password(self, client: AsyncClient, developer):
        res = await client.post("/api/v1/auth/login", json={
            "email": "dev@tracklane.dev",
            "password": "WrongPassword!",
        })
        assert res.status_code == 401
        assert res.json()["message"] == "Invalid credentials"

    async def test_login_unknown_user(self, client: AsyncClient):
        res = await client.post("/api/v1/auth/login", json={
            "email": "ghost@tracklane.dev",
            "password": "Password123!",
        })
        assert res.status_code == 401


@pytest.mark.asyncio
class TestCurrentUser:
    async def test_me_requires_token(self, client: AsyncClient):
        res = await client.get("/api/v1/auth/me")
        assert res.status_code == 401
        assert res.json()["code"] == "TL-AUTH-001"

    async def test_me_reports_role(self, client: AsyncClient, qc_user):
        res = await client.get("/api/v1/auth/me", headers=get_auth_headers(qc_user))
        data = res.json()["data"]
        assert data["role"] == "QC"
        assert "tasks:review" in data["permissions"]

    async def test_role_change_applies_to_existing_token(self, client: AsyncClient, db_session, developer):
        headers = get_auth_headers(developer)
        developer.role = UserRole.ADMIN
        await db_session.commit()

        res = await client.get("/api/v1/auth/me", headers=headers)
        assert res.json()["data"]["role"] == "ADMIN"

    async def test_deactivated_user_is_rejected(self, client: AsyncClient, db_session, developer):
        headers = get_auth_headers(developer)
        developer.is_active = False
        await db_session.commit()

        res = await client.get("/api/v1/auth/me", headers=headers)
        assert res.status_code == 401
