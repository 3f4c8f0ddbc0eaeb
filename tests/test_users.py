"""
User endpoint tests: creating, listing and fetching users, plus the
metrics endpoint, which aggregates across users, posts and files.
"""
import pytest
from httpx import AsyncClient


# ---------------------------------------------------------------------------
# Create user
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_user(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/users", json={
        "email": "newuser@example.com",
        "name": "New User",
    })
    assert resp.status_code == 201
    user = resp.json()
    assert user["email"] == "newuser@example.com"
    assert user["name"] == "New User"
    assert user["avatar"] is None
    assert "id" in user
    assert "created_at" in user


@pytest.mark.asyncio
async def test_create_user_missing_email(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/users", json={"name": "No Email"})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_user_blank_name(async_client: AsyncClient):
    resp = await async_client.post("/api/v1/users", json={"email": "a@example.com", "name": "   "})
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_user_duplicate_email(async_client: AsyncClient):
    payload = {"email": "dup@example.com", "name": "First"}
    assert (await async_client.post("/api/v1/users", json=payload)).status_code == 201

    resp = await async_client.post("/api/v1/users", json={**payload, "name": "Second"})
    assert resp.status_code == 409
    assert "email" in resp.json()["detail"]


# ---------------------------------------------------------------------------
# Read users
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_list_users(async_client: AsyncClient):
    for i in range(3):
        await async_client.post("/api/v1/users", json={"email": f"u{i}@example.com", "name": f"U{i}"})

    resp = await async_client.get("/api/v1/users")
    assert resp.status_code == 200
    users = resp.json()
    assert [u["email"] for u in users] == ["u0@example.com", "u1@example.com", "u2@example.com"]


@pytest.mark.asyncio
async def test_get_user(async_client: AsyncClient):
    created = (await async_client.post(
        "/api/v1/users", json={"email": "one@example.com", "name": "One"}
    )).json()

    resp = await async_client.get(f"/api/v1/users/{created['id']}")
    assert resp.status_code == 200
    assert resp.json() == created


@pytest.mark.asyncio
async def test_get_user_not_found(async_client: AsyncClient):
    resp = await async_client.get("/api/v1/users/99999")
    assert resp.status_code == 404
    assert resp.json()["detail"] == "User with id 99999 does not exist"


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_metrics(async_client: AsyncClient):
    user = (await async_client.post(
        "/api/v1/users", json={"email": "m@example.com", "name": "M"}
    )).json()
    headers = {"X-User-Id": str(user["id"])}
    await async_client.post("/api/v1/posts", json={"title": "t", "paragraphs": ["p"]}, headers=headers)
    await async_client.post(
        "/api/v1/users/me/files", files={"file": ("f.txt", b"x", "text/plain")}, headers=headers
    )

    resp = await async_client.get("/api/v1/metrics")
    assert resp.status_code == 200
    metrics = resp.json()
    assert metrics["total_posts"] == 1
    assert metrics["total_users"] == 1
    assert metrics["total_public_files"] == 0
    assert metrics["total_private_files"] == 1
    assert metrics["sync_failures"]["total"] == 0
    assert "hits" in metrics["cache_info"]


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    resp = await async_client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
