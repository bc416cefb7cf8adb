"""Profile service tests — writes commit, then announce themselves.

Learn: The notifier wraps an AsyncMock publisher; after each write we
drain() the notifier and check which facts went out.
"""

import uuid
from unittest.mock import AsyncMock

import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from herpkeeper.auth.password import verify_password
from herpkeeper.db.engine import get_db
from herpkeeper.main import create_app
from herpkeeper.realtime.notifier import ProfileUpdateNotifier
from herpkeeper.realtime.publisher import BrokerConnectionError, Publisher
from herpkeeper.services.profile_service import (
    ProfileNotFoundError,
    ProfileService,
    get_profile_service,
)


@pytest.fixture()
def publisher():
    p = AsyncMock(spec=Publisher)
    p.publish.return_value = 1
    return p


@pytest.fixture()
def notifier(publisher):
    return ProfileUpdateNotifier(publisher)


@pytest.fixture()
def service(db_session, notifier):
    return ProfileService(db_session, notifier=notifier)


async def _create(service, username="alice", **kwargs):
    return await service.create(
        username=username,
        email=f"{username}@example.com",
        name="Alice",
        password="password",
        **kwargs,
    )


def _published(publisher):
    return [call.args[0] for call in publisher.publish.await_args_list]


# ═══════════════════════════════════════════════════════════
# Create / read
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_hashes_password_and_notifies(service, notifier, publisher):
    profile = await _create(service)
    await notifier.drain()

    assert profile.id is not None
    assert profile.password_hash != "password"
    assert verify_password("password", profile.password_hash)
    assert profile.active is False
    assert profile.role == "member"

    facts = _published(publisher)
    assert len(facts) == 1
    assert facts[0].data["profileId"] == str(profile.id)
    assert facts[0].data["username"] == "alice"


@pytest.mark.asyncio
async def test_create_rejects_unknown_role(service):
    with pytest.raises(ValueError):
        await _create(service, role="owner")


@pytest.mark.asyncio
async def test_find_by_username(service):
    profile = await _create(service)
    assert (await service.find_by_username("alice")).id == profile.id
    assert await service.find_by_username("nobody") is None


# ═══════════════════════════════════════════════════════════
# Update / activate / remove
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_update_changes_fields_and_notifies(service, notifier, publisher):
    profile = await _create(service)
    await notifier.drain()
    publisher.publish.reset_mock()

    updated = await service.update(
        profile.id, name="Updated Name", food_types=["crickets", "dubia"]
    )
    await notifier.drain()

    assert updated.name == "Updated Name"
    assert updated.food_types == ["crickets", "dubia"]
    assert updated.email == "alice@example.com"
    facts = _published(publisher)
    assert [f.data["username"] for f in facts] == ["alice"]


@pytest.mark.asyncio
async def test_update_rehashes_password(service):
    profile = await _create(service)
    updated = await service.update(profile.id, password="new-password")
    assert verify_password("new-password", updated.password_hash)
    assert not verify_password("password", updated.password_hash)


@pytest.mark.asyncio
async def test_update_missing_profile(service, notifier, publisher):
    with pytest.raises(ProfileNotFoundError):
        await service.update(uuid.uuid4(), name="x")
    await notifier.drain()
    publisher.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_activate_with_key(service):
    profile = await _create(service, activation_key="key-123")

    with pytest.raises(ProfileNotFoundError):
        await service.activate(profile.id, "wrong-key")

    activated = await service.activate(profile.id, "key-123")
    assert activated.active is True
    assert activated.activation_key is None


@pytest.mark.asyncio
async def test_remove(service):
    profile = await _create(service)
    assert await service.remove(profile.id) is True
    assert await service.get(profile.id) is None
    assert await service.remove(profile.id) is False


@pytest.mark.asyncio
async def test_write_succeeds_when_broker_is_down(service, notifier, publisher):
    """A broker outage never fails the write."""
    publisher.publish.side_effect = BrokerConnectionError("refused")

    profile = await _create(service)
    await notifier.drain()

    assert await service.get(profile.id) is not None


@pytest.mark.asyncio
async def test_service_without_notifier(db_session):
    service = ProfileService(db_session)
    profile = await _create(service)
    assert profile.username == "alice"


# ═══════════════════════════════════════════════════════════
# Request wiring
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_request_service_announces_writes(db_session, notifier, publisher):
    """Writes made through the app's dependency reach the app's notifier."""
    app = create_app()
    app.state.notifier = notifier

    async def override_get_db():
        yield db_session

    @app.post("/test/profiles")
    async def create_profile(svc: ProfileService = Depends(get_profile_service)):
        profile = await _create(svc, username="carol")
        return {"id": str(profile.id), "wired": svc.notifier is notifier}

    app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        resp = await ac.post("/test/profiles")
    await notifier.drain()

    assert resp.status_code == 200
    body = resp.json()
    assert body["wired"] is True
    facts = _published(publisher)
    assert [f.data["username"] for f in facts] == ["carol"]
    assert facts[0].data["profileId"] == body["id"]
