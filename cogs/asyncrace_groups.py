from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from .asyncrace_models import ChannelGroup
from .asyncrace_shared import (
    MAX_GROUP_NAME_LEN,
    MAX_GROUPS_PER_SERVER,
    GroupConfigError,
    GroupNotFound,
    logger,
)
from .asyncrace_storage import RaceStorage


class ChannelGroupCache:
    """Submission channel id -> ChannelGroup, rebuilt from storage on demand."""

    def __init__(self) -> None:
        self._by_channel: Dict[int, ChannelGroup] = {}

    def replace(self, groups: List[ChannelGroup]) -> None:
        self._by_channel = {g.submission_channel_id: g for g in groups}

    def get(self, channel_id: int) -> Optional[ChannelGroup]:
        return self._by_channel.get(channel_id)

    def put(self, group: ChannelGroup) -> None:
        self._by_channel[group.submission_channel_id] = group

    def discard(self, group: ChannelGroup) -> None:
        self._by_channel.pop(group.submission_channel_id, None)

    def __len__(self) -> int:
        return len(self._by_channel)


class ChannelGroupRegistry:
    def __init__(self, storage: RaceStorage, cache: Optional[ChannelGroupCache] = None):
        self.storage = storage
        self.cache = cache or ChannelGroupCache()

    async def load(self) -> None:
        groups = await asyncio.to_thread(self.storage.list_groups)
        self.cache.replace(groups)
        logger.info("Loaded %s channel group(s)", len(groups))

    def for_submission_channel(self, channel_id: int) -> Optional[ChannelGroup]:
        return self.cache.get(channel_id)

    async def list_groups(self, server_id: int) -> List[ChannelGroup]:
        return await asyncio.to_thread(self.storage.list_groups, server_id)

    async def add(
        self,
        server_id: int,
        name: str,
        submission_channel_id: int,
        leaderboard_channel_id: int,
        spoiler_channel_id: int,
        spoiler_role_id: int,
        role_name: str = "",
    ) -> ChannelGroup:
        name = name.strip()
        if not name:
            raise GroupConfigError("Group name cannot be empty.")
        if len(name) > MAX_GROUP_NAME_LEN or len(role_name) > MAX_GROUP_NAME_LEN:
            raise GroupConfigError(f"Group and role names must be at most {MAX_GROUP_NAME_LEN} characters.")
        if len({submission_channel_id, leaderboard_channel_id, spoiler_channel_id}) != 3:
            raise GroupConfigError("Submission, leaderboard and spoiler channels must all be different.")
        existing = await self.list_groups(server_id)
        if len(existing) >= MAX_GROUPS_PER_SERVER:
            raise GroupConfigError(f"A server can have at most {MAX_GROUPS_PER_SERVER} channel groups.")
        for group in existing:
            if group.name.lower() == name.lower():
                raise GroupConfigError(f"A group named `{name}` already exists.")
        taken = await asyncio.to_thread(self.storage.find_group_by_submission_channel, submission_channel_id)
        if taken is not None:
            raise GroupConfigError(f"That submission channel already belongs to group `{taken.name}`.")
        group = await asyncio.to_thread(
            self.storage.add_group,
            server_id,
            name,
            submission_channel_id,
            leaderboard_channel_id,
            spoiler_channel_id,
            spoiler_role_id,
        )
        self.cache.put(group)
        logger.info("Added channel group %s in server %s", name, server_id)
        return group

    async def get(self, server_id: int, name: str) -> ChannelGroup:
        for group in await self.list_groups(server_id):
            if group.name.lower() == name.strip().lower():
                return group
        raise GroupNotFound(f"No channel group named `{name}`.")

    async def remove(self, server_id: int, name: str) -> ChannelGroup:
        group = await self.get(server_id, name)
        await asyncio.to_thread(self.storage.remove_group, server_id, group.name)
        self.cache.discard(group)
        logger.info("Removed channel group %s in server %s", group.name, server_id)
        return group
