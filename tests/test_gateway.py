import asyncio
from types import SimpleNamespace

import discord
import pytest

from cogs.asyncrace_gateway import DiscordGateway
from cogs.asyncrace_shared import ExternalError


def http_error(cls, status):
    return cls(SimpleNamespace(status=status, reason="error"), "error")


class FakePartialMessage:
    def __init__(self, error=None):
        self.error = error
        self.edited = None
        self.deleted = False

    async def edit(self, content):
        if self.error:
            raise self.error
        self.edited = content

    async def delete(self):
        if self.error:
            raise self.error
        self.deleted = True


class FakeChannel:
    def __init__(self, message):
        self.message = message
        self.sent = []

    def get_partial_message(self, message_id):
        return self.message

    async def send(self, text):
        self.sent.append(text)
        return SimpleNamespace(id=77)


class FakeClient:
    def __init__(self, channel):
        self.channel = channel

    def get_channel(self, channel_id):
        return self.channel


def gateway_with(message):
    channel = FakeChannel(message)
    return DiscordGateway(FakeClient(channel)), channel


def test_send_and_edit():
    message = FakePartialMessage()
    gateway, channel = gateway_with(message)
    assert asyncio.run(gateway.send(1, "hi")) == 77
    asyncio.run(gateway.edit(1, 5, "new"))
    assert channel.sent == ["hi"]
    assert message.edited == "new"


def test_delete_tolerates_missing_message():
    gateway, _ = gateway_with(FakePartialMessage(http_error(discord.NotFound, 404)))
    asyncio.run(gateway.delete(1, 5))


def test_platform_errors_become_external_errors():
    gateway, _ = gateway_with(FakePartialMessage(http_error(discord.Forbidden, 403)))
    with pytest.raises(ExternalError):
        asyncio.run(gateway.edit(1, 5, "new"))
    with pytest.raises(ExternalError):
        asyncio.run(gateway.delete(1, 5))
