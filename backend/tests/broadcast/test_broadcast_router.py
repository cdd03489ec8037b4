"""HTTP tests for the broadcast and admin limit routes."""

import uuid

import numpy as np
import pytest
from fastapi import Depends
from httpx import ASGITransport, AsyncClient

from voicecast.core.config import settings
from voicecast.core.database import get_session
from voicecast.main import app
from voicecast.modules.broadcast.locks import LocalSenderLock
from voicecast.modules.broadcast.router import get_orchestrator, get_sender_lock
from voicecast.modules.broadcast.service import BroadcastFanoutOrchestrator

API = settings.API_V1_PREFIX


@pytest.fixture
async def client(session_factory, dispatcher, publisher, clock):
    async def override_session():
        async with session_factory() as session:
            yield session

    def override_orchestrator(session=Depends(get_session)):
        return BroadcastFanoutOrchestrator(
            session,
            dispatcher=dispatcher,
            publisher=publisher,
            lock=LocalSenderLock(),
            rng=np.random.default_rng(3),
            clock=clock,
        )

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_sender_lock] = LocalSenderLock
    app.dependency_overrides[get_orchestrator] = override_orchestrator
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def as_user(user) -> dict[str, str]:
    return {"X-User-Id": str(user.id)}


def broadcast_payload(**overrides) -> dict:
    payload = {
        "audio": {"ref": "broadcasts/x.m4a", "content_type": "audio/mp4", "size": 1024},
        "content": "hello there",
        "recipient_count": 5,
    }
    payload.update(overrides)
    return payload


class TestCreateRoute:
    async def test_created(self, client, make_user, fund) -> None:
        sender = await make_user()
        await fund(sender)
        await make_user()
        await make_user()

        response = await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["recipient_count"] == 2
        assert "X-Correlation-ID" in response.headers

    async def test_payment_required(self, client, make_user) -> None:
        sender = await make_user()

        response = await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))

        assert response.status_code == 402
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "PAYMENT_REQUIRED"
        assert body["detail"] == {"balanceNeeded": 100, "currentBalance": 0}

    async def test_cooldown_returns_429(self, client, make_user, fund) -> None:
        sender = await make_user()
        await fund(sender)
        await make_user()

        await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))
        response = await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))

        assert response.status_code == 429
        assert response.json()["error_code"] == "COOLDOWN_ACTIVE"

    async def test_requires_identity(self, client) -> None:
        response = await client.post(f"{API}/broadcasts", json=broadcast_payload())

        assert response.status_code == 401


class TestQueryRoutes:
    async def test_limit_status(self, client, make_user) -> None:
        user = await make_user()

        response = await client.get(f"{API}/broadcasts/limit-status", headers=as_user(user))

        assert response.status_code == 200
        body = response.json()
        assert body["can_broadcast"] is True
        assert body["daily_remaining"] == body["daily_limit"]

    async def test_sent_received_and_read(self, client, make_user, fund) -> None:
        sender = await make_user()
        await fund(sender)
        recipient = await make_user()
        created = await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))
        broadcast_id = created.json()["broadcast_id"]

        sent = await client.get(f"{API}/broadcasts/sent", headers=as_user(sender))
        received = await client.get(f"{API}/broadcasts/received", headers=as_user(recipient))
        read = await client.post(f"{API}/broadcasts/{broadcast_id}/read", headers=as_user(recipient))

        assert [b["id"] for b in sent.json()] == [broadcast_id]
        assert received.json()[0]["status"] == "delivered"
        assert read.json() == {"broadcast_id": broadcast_id, "updated": True}

    async def test_reply_then_conflict(self, client, make_user, fund, dispatcher) -> None:
        sender = await make_user()
        await fund(sender)
        recipient = await make_user()
        created = await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))
        url = f"{API}/broadcasts/{created.json()['broadcast_id']}/reply"

        first = await client.post(url, json={"voice_ref": "replies/1.m4a"}, headers=as_user(recipient))
        second = await client.post(url, json={"voice_ref": "replies/2.m4a"}, headers=as_user(recipient))

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error_code"] == "ALREADY_REPLIED"
        assert len(dispatcher.reply_calls) == 1

    async def test_reply_to_unknown_broadcast(self, client, make_user) -> None:
        user = await make_user()

        response = await client.post(
            f"{API}/broadcasts/{uuid.uuid4()}/reply", json={"voice_ref": "r.m4a"}, headers=as_user(user)
        )

        assert response.status_code == 404

    async def test_statistics_scoped_to_caller(self, client, make_user, fund) -> None:
        sender = await make_user()
        await fund(sender)
        await make_user()
        await client.post(f"{API}/broadcasts", json=broadcast_payload(), headers=as_user(sender))
        other = await make_user()

        mine = await client.get(f"{API}/broadcasts/statistics", headers=as_user(sender))
        theirs = await client.get(f"{API}/broadcasts/statistics", headers=as_user(other))

        assert mine.json()["total_broadcasts"] == 1
        assert theirs.json()["total_broadcasts"] == 0


class TestAdminLimitRoutes:
    async def test_member_cannot_read_limits(self, client, make_user) -> None:
        member = await make_user()

        response = await client.get(f"{API}/admin/broadcast-limits", headers=as_user(member))

        assert response.status_code == 403

    async def test_admin_updates_limits(self, client, make_user) -> None:
        admin = await make_user(role="admin")

        response = await client.put(
            f"{API}/admin/broadcast-limits", json={"daily_limit": 30}, headers=as_user(admin)
        )

        assert response.status_code == 200
        assert response.json()["daily_limit"] == 30
        assert response.json()["hourly_limit"] == settings.BROADCAST_HOURLY_LIMIT

    async def test_invalid_update_is_rejected(self, client, make_user) -> None:
        admin = await make_user(role="admin")

        response = await client.put(
            f"{API}/admin/broadcast-limits", json={"daily_limit": 2, "hourly_limit": 3}, headers=as_user(admin)
        )

        assert response.status_code == 422
