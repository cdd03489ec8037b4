"""Tests for push delivery of broadcast and reply notifications."""

import json
import uuid
from types import SimpleNamespace

import httpx
import pytest

from voicecast.modules.notification.channels import ExpoPushChannel
from voicecast.modules.notification.dispatcher import BROADCAST_TITLE, NotificationDispatcher


def _user(**attrs):
    attrs.setdefault("id", uuid.uuid4())
    attrs.setdefault("nickname", "mina")
    attrs.setdefault("push_enabled", True)
    attrs.setdefault("push_token", "ExponentPushToken[abc]")
    return SimpleNamespace(**attrs)


def _broadcast():
    return SimpleNamespace(id=uuid.uuid4(), sender_id=uuid.uuid4(), content="good morning")


def _expo_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class RecordingChannel:
    channel_name = "recording"

    def __init__(self):
        self.calls = []

    async def deliver(self, token, title, body, data=None):
        self.calls.append((token, title, body, data))
        return ExpoPushChannel(enabled=False)._create_success_result(token)


class TestExpoPushChannel:
    async def test_posts_message_to_expo(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"data": {"status": "ok", "id": "ticket-1"}})

        async with _expo_client(handler) as client:
            result = await ExpoPushChannel(client=client, enabled=True).deliver(
                "ExponentPushToken[abc]", "title", "body", {"k": "v"}
            )

        assert result.success is True
        assert seen[0]["to"] == "ExponentPushToken[abc]"
        assert seen[0]["data"] == {"k": "v"}

    async def test_error_ticket_is_a_failure(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"data": {"status": "error", "message": "DeviceNotRegistered"}})

        async with _expo_client(handler) as client:
            result = await ExpoPushChannel(client=client, enabled=True).deliver("tok", "t", "b")

        assert result.success is False
        assert "DeviceNotRegistered" in result.error

    async def test_http_error_status(self) -> None:
        async with _expo_client(lambda request: httpx.Response(503, text="unavailable")) as client:
            result = await ExpoPushChannel(client=client, enabled=True).deliver("tok", "t", "b")

        assert result.success is False
        assert "503" in result.error

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with _expo_client(handler) as client:
            result = await ExpoPushChannel(client=client, enabled=True).deliver("tok", "t", "b")

        assert result.success is False
        assert "timed out" in result.error

    async def test_disabled_channel_skips_network(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            pytest.fail("no request expected while push is disabled")

        async with _expo_client(handler) as client:
            result = await ExpoPushChannel(client=client, enabled=False).deliver("tok", "t", "b")

        assert result.success is True
        assert result.response_data == {"skipped": True}

    async def test_missing_token(self) -> None:
        result = await ExpoPushChannel(enabled=True).deliver("", "t", "b")

        assert result.success is False


class TestNotificationDispatcher:
    async def test_broadcast_notification_payload(self) -> None:
        channel = RecordingChannel()
        recipient, broadcast = _user(), _broadcast()

        result = await NotificationDispatcher(channel).send_broadcast_notification(recipient, broadcast)

        assert result.success is True
        token, title, body, data = channel.calls[0]
        assert token == recipient.push_token
        assert title == BROADCAST_TITLE
        assert body == "good morning"
        assert data["broadcast_id"] == str(broadcast.id)

    @pytest.mark.parametrize("attrs", [{"push_enabled": False}, {"push_token": None}])
    async def test_opted_out_users_are_skipped(self, attrs) -> None:
        channel = RecordingChannel()

        result = await NotificationDispatcher(channel).send_broadcast_notification(_user(**attrs), _broadcast())

        assert result is None
        assert channel.calls == []

    async def test_reply_notification_names_replier(self) -> None:
        channel = RecordingChannel()
        sender, replier, broadcast = _user(), _user(nickname="jun"), _broadcast()

        await NotificationDispatcher(channel).send_reply_notification(sender, replier, broadcast)

        token, _, body, data = channel.calls[0]
        assert token == sender.push_token
        assert body == "jun replied to your voice broadcast"
        assert data["replier_id"] == str(replier.id)

    async def test_failed_delivery_is_returned_not_raised(self) -> None:
        async with _expo_client(lambda request: httpx.Response(500, text="boom")) as client:
            dispatcher = NotificationDispatcher(ExpoPushChannel(client=client, enabled=True))
            result = await dispatcher.send_broadcast_notification(_user(), _broadcast())

        assert result.success is False
