import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import jwt
import pytest
from fastapi.testclient import TestClient

from shared.auth_middleware import JWT_ALGORITHM, JWT_SECRET_KEY, TokenData, require_admin
from services.dessert import config, routes
from services.dessert.errors import UserNotFoundError
from services.dessert.main import app
from services.dessert.models import Dessert, Plan, Recipe, User


def make_token(email: str, sub: str = None) -> str:
    return jwt.encode(
        {"sub": sub or str(uuid.uuid4()), "email": email, "exp": 9999999999},
        JWT_SECRET_KEY,
        algorithm=JWT_ALGORITHM,
    )


class StubDessertStore:
    def __init__(self, desserts):
        self.desserts = {d.id: d for d in desserts}

    async def find_by_user(self, user_id, limit, offset):
        owned = [d for d in self.desserts.values() if d.user_id == user_id]
        return owned[offset : offset + limit]

    async def count_by_user(self, user_id):
        return sum(1 for d in self.desserts.values() if d.user_id == user_id)

    async def find_by_id(self, dessert_id):
        return self.desserts.get(dessert_id)

    async def delete(self, dessert_id, user_id):
        dessert = self.desserts.get(dessert_id)
        if dessert and dessert.user_id == user_id:
            del self.desserts[dessert_id]
            return True
        return False

    async def get_popular(self, limit):
        return []


def make_dessert(user_id) -> Dessert:
    return Dessert(
        id=uuid.uuid4(),
        user_id=user_id,
        ingredients="banana, mel",
        name="Honey Banana Bites",
        recipe=Recipe(name="Honey Banana Bites", ingredients=["banana", "mel"], steps=["Slice", "Drizzle"]),
        created_at=datetime.now(timezone.utc),
    )


@pytest.fixture
def current_user(ledger) -> User:
    return ledger.add_user(credits=3)


@pytest.fixture
def client(orchestrator, current_user, monkeypatch):
    async def no_rate_limit(user_id):
        return None

    monkeypatch.setattr(routes, "check_generation_rate_limit", no_rate_limit)
    app.dependency_overrides[routes.get_local_user] = lambda: current_user
    app.dependency_overrides[routes.get_orchestrator] = lambda: orchestrator
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.mark.api
def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["service"] == "dessert"


@pytest.mark.api
def test_generate_success_then_cached(client):
    payload = {"ingredients": "morango, chocolate", "theme": "feminine", "language": "pt"}

    first = client.post("/desserts/generate", json=payload)
    assert first.status_code == 200
    body = first.json()
    assert body["success"] is True
    assert body["fromCache"] is False
    assert body["credits"] == 2
    assert set(body["recipe"]) == {"name", "ingredients", "steps"}
    assert "errorType" not in body

    second = client.post("/desserts/generate", json={**payload, "ingredients": "chocolate,morango"})
    assert second.status_code == 200
    assert second.json()["fromCache"] is True
    assert second.json()["credits"] == 1


@pytest.mark.api
def test_generate_blocked_is_400(client):
    response = client.post("/desserts/generate", json={"ingredients": "glue, sugar"})
    assert response.status_code == 400
    assert response.json()["blocked"] is True


@pytest.mark.api
def test_generate_without_credits_is_402(client, ledger, current_user):
    ledger.users[current_user.id] = current_user.model_copy(update={"credits": 0})

    response = client.post("/desserts/generate", json={"ingredients": "banana, mel"})

    assert response.status_code == 402
    assert response.json()["errorType"] == "credits"


@pytest.mark.api
def test_generate_rejects_unknown_theme(client):
    response = client.post("/desserts/generate", json={"ingredients": "banana", "theme": "spooky"})
    assert response.status_code == 422
    assert response.json()["error"] is True


@pytest.mark.api
def test_generate_rate_limited(client, monkeypatch):
    from fastapi import HTTPException

    async def limited(user_id):
        raise HTTPException(status_code=429, detail="Generation limit exceeded")

    monkeypatch.setattr(routes, "check_generation_rate_limit", limited)

    response = client.post("/desserts/generate", json={"ingredients": "banana, mel"})
    assert response.status_code == 429


@pytest.mark.api
def test_generate_requires_token():
    app.dependency_overrides.clear()
    response = TestClient(app).post("/desserts/generate", json={"ingredients": "banana"})
    assert response.status_code in (401, 403)


@pytest.mark.api
def test_history_and_ownership(client, current_user):
    mine = make_dessert(current_user.id)
    theirs = make_dessert(uuid.uuid4())
    app.dependency_overrides[routes.get_dessert_store] = lambda: StubDessertStore([mine, theirs])

    history = client.get("/desserts/history", params={"limit": 10})
    assert history.status_code == 200
    assert history.json()["total"] == 1
    assert history.json()["desserts"][0]["name"] == "Honey Banana Bites"

    assert client.get(f"/desserts/{mine.id}").status_code == 200
    assert client.get(f"/desserts/{theirs.id}").status_code == 403
    assert client.get(f"/desserts/{uuid.uuid4()}").status_code == 404

    assert client.delete(f"/desserts/{theirs.id}").status_code == 404
    assert client.delete(f"/desserts/{mine.id}").status_code == 200


@pytest.mark.api
def test_history_limit_bounds(client):
    app.dependency_overrides[routes.get_dessert_store] = lambda: StubDessertStore([])
    assert client.get("/desserts/history", params={"limit": 101}).status_code == 422
    assert client.get("/desserts/history", params={"offset": -1}).status_code == 422


@pytest.mark.api
def test_suggestions(client):
    response = client.get("/desserts/suggestions", params={"category": "fruits"})
    assert response.status_code == 200
    assert "morango" in response.json()["suggestions"]


@pytest.mark.api
def test_upgrade_requires_payment_reference(client):
    ledger_mock = AsyncMock()
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.post("/users/upgrade", json={})

    assert response.status_code == 400
    ledger_mock.upgrade_to_premium.assert_not_called()


@pytest.mark.api
def test_upgrade_with_revenuecat(client, current_user):
    ledger_mock = AsyncMock()
    ledger_mock.upgrade_to_premium.return_value = current_user.model_copy(
        update={"plan": Plan.PREMIUM, "credits": 100}
    )
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.post("/users/upgrade", json={"revenuecatUserId": "rc_123"})

    assert response.status_code == 200
    assert response.json()["user"]["plan"] == "premium"
    assert ledger_mock.upgrade_to_premium.call_args.kwargs["method"] == "revenuecat"


@pytest.mark.api
def test_upgrade_disabled_in_production(client, monkeypatch):
    monkeypatch.setattr(config, "ENVIRONMENT", "production")
    monkeypatch.setattr(config, "ENABLE_DIRECT_UPGRADE", False)
    app.dependency_overrides[routes.get_ledger] = lambda: AsyncMock()

    response = client.post("/users/upgrade", json={"paymentToken": "tok_1"})

    assert response.status_code == 403


@pytest.mark.api
def test_admin_requires_admin_email(client):
    token = make_token("someone@example.com")
    response = client.get("/admin/cache/stats", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 403


@pytest.mark.api
def test_admin_cache_endpoints(client, cache):
    app.dependency_overrides[require_admin] = lambda: TokenData(
        subject="admin", email="admin@sweetmagic.test"
    )
    app.dependency_overrides[routes.get_cache_service] = lambda: cache

    stats = client.get("/admin/cache/stats")
    assert stats.status_code == 200
    assert stats.json()["memory_max_size"] == 10

    assert client.post("/admin/cache/cleanup").json() == {"removed": 0}
    assert client.delete("/admin/cache").json() == {"success": True}


def test_admin_email_grants_admin():
    assert TokenData(subject="x", email="admin@sweetmagic.test").is_admin
    assert not TokenData(subject="x", email="user@sweetmagic.test").is_admin


def as_admin():
    app.dependency_overrides[require_admin] = lambda: TokenData(
        subject="admin", email="admin@sweetmagic.test"
    )


@pytest.mark.api
def test_update_profile(client, current_user):
    ledger_mock = AsyncMock()
    ledger_mock.update_profile.return_value = current_user.model_copy(update={"name": "Ana Doce"})
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.put("/users/profile", json={"name": "  Ana Doce "})

    assert response.status_code == 200
    assert response.json()["user"]["name"] == "Ana Doce"
    assert ledger_mock.update_profile.call_args.args == (current_user.id, "Ana Doce")


@pytest.mark.api
def test_update_profile_rejects_short_name(client):
    ledger_mock = AsyncMock()
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.put("/users/profile", json={"name": "a"})

    assert response.status_code == 422
    ledger_mock.update_profile.assert_not_called()


@pytest.mark.api
def test_admin_list_users(client, current_user):
    as_admin()
    ledger_mock = AsyncMock()
    ledger_mock.list_users.return_value = [current_user]
    ledger_mock.count_users.return_value = 1
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.get("/admin/users", params={"limit": 10, "offset": 0})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 1
    assert body["users"][0]["id"] == str(current_user.id)
    ledger_mock.list_users.assert_awaited_once_with(10, 0)


@pytest.mark.api
def test_admin_get_user(client, current_user):
    as_admin()
    ledger_mock = AsyncMock()
    ledger_mock.get_user.return_value = current_user
    usage_log_mock = AsyncMock()
    usage_log_mock.find_by_user.return_value = []
    usage_log_mock.get_total_credits_used.return_value = 2
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock
    app.dependency_overrides[routes.get_usage_log] = lambda: usage_log_mock
    app.dependency_overrides[routes.get_dessert_store] = lambda: StubDessertStore(
        [make_dessert(current_user.id)]
    )

    response = client.get(f"/admin/users/{current_user.id}")

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["email"] == current_user.email
    assert len(body["recent_desserts"]) == 1
    assert body["stats"] == {"total_desserts": 1, "total_credits_used": 2}


@pytest.mark.api
def test_admin_get_unknown_user_is_404(client):
    as_admin()
    ledger_mock = AsyncMock()
    ledger_mock.get_user.side_effect = UserNotFoundError("missing")
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock
    app.dependency_overrides[routes.get_usage_log] = lambda: AsyncMock()
    app.dependency_overrides[routes.get_dessert_store] = lambda: StubDessertStore([])

    response = client.get(f"/admin/users/{uuid.uuid4()}")

    assert response.status_code == 404


@pytest.mark.api
def test_admin_set_credits(client, current_user):
    as_admin()
    ledger_mock = AsyncMock()
    ledger_mock.set_credits.return_value = current_user.model_copy(update={"credits": 42})
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.put(f"/admin/users/{current_user.id}/credits", json={"credits": 42})

    assert response.status_code == 200
    assert response.json()["user"]["credits"] == 42
    ledger_mock.set_credits.assert_awaited_once_with(
        current_user.id, 42, admin_email="admin@sweetmagic.test"
    )


@pytest.mark.api
def test_admin_set_credits_rejects_negative(client, current_user):
    as_admin()
    ledger_mock = AsyncMock()
    app.dependency_overrides[routes.get_ledger] = lambda: ledger_mock

    response = client.put(f"/admin/users/{current_user.id}/credits", json={"credits": -1})

    assert response.status_code == 422
    ledger_mock.set_credits.assert_not_called()
