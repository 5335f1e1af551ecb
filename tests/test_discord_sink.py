"""
Tests for the Discord role/notification sink over httpx.MockTransport.
"""

from __future__ import annotations

import json

import httpx
import pytest

from backend_chaingate.core.exceptions import SinkError
from backend_chaingate.notifications import (
    DiscordRoleSink,
    GrantResult,
    Notification,
    verification_announcement,
    verified_direct_message,
)


def _sink(handler) -> DiscordRoleSink:
    return DiscordRoleSink("bot-token", "guild-1", transport=httpx.MockTransport(handler))


@pytest.mark.parametrize(
    "status,expected",
    [(204, GrantResult.OK), (200, GrantResult.OK), (404, GrantResult.NOT_FOUND), (403, GrantResult.FORBIDDEN)],
)
def test_grant_role_status_mapping(status, expected):
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status)

    assert _sink(handler).grant_role("user-1", "role-1") is expected
    assert seen[0].method == "PUT"
    assert seen[0].url.path == "/api/v10/guilds/guild-1/members/user-1/roles/role-1"
    assert seen[0].headers["Authorization"] == "Bot bot-token"


def test_grant_role_unexpected_status_raises():
    sink = _sink(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(SinkError, match="500"):
        sink.grant_role("user-1", "role-1")


def test_grant_role_transport_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    with pytest.raises(SinkError):
        _sink(handler).grant_role("user-1", "role-1")


def test_notify_direct_opens_dm_channel_then_posts():
    paths: list[str] = []
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        bodies.append(json.loads(request.content))
        if request.url.path.endswith("/users/@me/channels"):
            return httpx.Response(200, json={"id": "dm-9"})
        return httpx.Response(200, json={"id": "msg-1"})

    ok = _sink(handler).notify_direct("user-1", Notification(title="Hi", description="there"))
    assert ok is True
    assert paths == ["/api/v10/users/@me/channels", "/api/v10/channels/dm-9/messages"]
    assert bodies[0] == {"recipient_id": "user-1"}
    assert bodies[1]["embeds"][0]["title"] == "Hi"


def test_notify_direct_failure_returns_false():
    sink = _sink(lambda request: httpx.Response(403, json={"message": "Cannot send messages to this user"}))
    assert sink.notify_direct("user-1", Notification(title="Hi")) is False


def test_announce(settings):
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "m"})

    payload = verification_announcement("user-1", [settings.get_contract("contract1"), settings.get_contract("contract2")])
    assert _sink(handler).announce("chan-main", payload) is True
    embed = captured[0]["embeds"][0]
    assert embed["title"] == "New Verification!"
    assert "<@user-1>" in embed["description"]
    assert "Alpha" in embed["fields"][0]["value"] and "Beta" in embed["fields"][0]["value"]

    assert _sink(lambda request: httpx.Response(500)).announce("chan-main", payload) is False


def test_verified_direct_message_fields(settings):
    msg = verified_direct_message(settings.get_contract("contract1"), "0x" + "ab" * 32, "Gensyn Testnet")
    assert "Gensyn Testnet" in msg.description
    assert dict(msg.fields)["Contract"] == "Alpha"
    assert dict(msg.fields)["Transaction"].startswith("`0xabab")
