from __future__ import annotations

from typing import Optional, Tuple

import discord
from discord.ext import commands

from .asyncrace_shared import MAX_MESSAGE_LEN, ExternalError, logger


class ChatGateway:
    """Chat operations the race engine needs. Subclasses talk to a real platform."""

    max_message_len: int = MAX_MESSAGE_LEN

    async def send(self, channel_id: int, text: str) -> int:
        raise NotImplementedError

    async def edit(self, channel_id: int, message_id: int, text: str) -> None:
        raise NotImplementedError

    async def delete(self, channel_id: int, message_id: int) -> None:
        raise NotImplementedError

    async def grant_role(self, server_id: int, user_id: int, role_id: int) -> None:
        raise NotImplementedError

    async def revoke_role(self, server_id: int, user_id: int, role_id: int) -> None:
        raise NotImplementedError


class DiscordGateway(ChatGateway):
    def __init__(self, client: commands.Bot):
        self.client = client

    async def _channel(self, channel_id: int) -> discord.abc.Messageable:
        channel = self.client.get_channel(channel_id)
        if channel is not None:
            return channel
        try:
            return await self.client.fetch_channel(channel_id)
        except discord.HTTPException as exc:
            raise ExternalError(f"Channel {channel_id} is unavailable: {exc}") from exc

    async def send(self, channel_id: int, text: str) -> int:
        channel = await self._channel(channel_id)
        try:
            message = await channel.send(text)
        except discord.HTTPException as exc:
            raise ExternalError(f"Failed to send a message to channel {channel_id}: {exc}") from exc
        return message.id

    async def edit(self, channel_id: int, message_id: int, text: str) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.get_partial_message(message_id).edit(content=text)
        except discord.HTTPException as exc:
            raise ExternalError(f"Failed to edit message {message_id} in channel {channel_id}: {exc}") from exc

    async def delete(self, channel_id: int, message_id: int) -> None:
        channel = await self._channel(channel_id)
        try:
            await channel.get_partial_message(message_id).delete()
        except discord.NotFound:
            logger.debug("Message %s in channel %s was already deleted", message_id, channel_id)
        except discord.HTTPException as exc:
            raise ExternalError(f"Failed to delete message {message_id} in channel {channel_id}: {exc}") from exc

    async def _member_and_role(
        self, server_id: int, user_id: int, role_id: int
    ) -> Tuple[Optional[discord.Member], Optional[discord.Role]]:
        guild = self.client.get_guild(server_id)
        if guild is None:
            raise ExternalError(f"Server {server_id} is unavailable.")
        role = guild.get_role(role_id)
        member = guild.get_member(user_id)
        if member is None:
            try:
                member = await guild.fetch_member(user_id)
            except discord.NotFound:
                member = None
            except discord.HTTPException as exc:
                raise ExternalError(f"Failed to look up member {user_id}: {exc}") from exc
        return member, role

    async def grant_role(self, server_id: int, user_id: int, role_id: int) -> None:
        member, role = await self._member_and_role(server_id, user_id, role_id)
        if member is None or role is None:
            raise ExternalError(f"Cannot grant role {role_id} to {user_id} in server {server_id}.")
        try:
            await member.add_roles(role, reason="Async race submission")
        except discord.HTTPException as exc:
            raise ExternalError(f"Failed to grant role {role_id} to {user_id}: {exc}") from exc

    async def revoke_role(self, server_id: int, user_id: int, role_id: int) -> None:
        member, role = await self._member_and_role(server_id, user_id, role_id)
        if member is None or role is None:
            logger.debug("Skipping role %s removal for %s in server %s, member or role is gone", role_id, user_id, server_id)
            return
        if role not in member.roles:
            logger.debug("Member %s does not have role %s", user_id, role_id)
            return
        try:
            await member.remove_roles(role, reason="Async race finished")
        except discord.NotFound:
            logger.debug("Role %s already removed from %s", role_id, user_id)
        except discord.HTTPException as exc:
            raise ExternalError(f"Failed to remove role {role_id} from {user_id}: {exc}") from exc
