from __future__ import annotations

import asyncio
from typing import List, Optional, Tuple

from .asyncrace_gateway import ChatGateway
from .asyncrace_models import MessageSlot, Race
from .asyncrace_shared import (
    PLACEHOLDER_TEXT,
    GroupNotFound,
    PaginationOverflow,
    SlotKind,
    gather_all,
    logger,
    utcnow,
)
from .asyncrace_storage import RaceStorage


def pack_lines(text: str, limit: int) -> List[str]:
    """Greedily pack the lines of ``text`` into pages of at most ``limit`` characters.

    Joining the pages with a newline gives back ``text`` unless a single line
    was longer than ``limit``; such lines are cut into ``limit`` sized pieces.
    Pages that would be empty are dropped.
    """
    if not text:
        return []
    pages: List[str] = []
    buf: Optional[str] = None
    for line in text.split("\n"):
        while len(line) > limit:
            if buf is not None:
                pages.append(buf)
                buf = None
            pages.append(line[:limit])
            line = line[limit:]
        if buf is None:
            buf = line
        elif len(buf) + 1 + len(line) <= limit:
            buf = f"{buf}\n{line}"
        else:
            pages.append(buf)
            buf = line
    if buf is not None:
        pages.append(buf)
    # discord refuses empty message content
    return [page for page in pages if page]


class MessagePaginator:
    """Lays rendered text out over a race's message slots, adding slots as needed."""

    def __init__(self, storage: RaceStorage, gateway: ChatGateway, max_len: Optional[int] = None):
        self.storage = storage
        self.gateway = gateway
        self.max_len = max_len or gateway.max_message_len

    async def _target(self, race: Race, kind: SlotKind) -> Tuple[int, int]:
        group = await asyncio.to_thread(self.storage.get_group, race.group_id)
        if group is None:
            raise GroupNotFound(f"Channel group {race.group_id} no longer exists.")
        if kind == SlotKind.SUBMISSION:
            return group.server_id, group.submission_channel_id
        return group.server_id, group.leaderboard_channel_id

    async def _allocate(self, race: Race, kind: SlotKind, count: int) -> List[MessageSlot]:
        server_id, channel_id = await self._target(race, kind)
        created: List[MessageSlot] = []
        # sequential so creation order matches message order in the channel
        for _ in range(count):
            message_id = await self.gateway.send(channel_id, PLACEHOLDER_TEXT)
            slot = await asyncio.to_thread(
                self.storage.insert_message_slot,
                message_id,
                utcnow(),
                race.race_id,
                server_id,
                channel_id,
                kind,
            )
            created.append(slot)
        logger.debug("Allocated %s %s message slot(s) for race %s", count, kind, race.race_id)
        return created

    async def publish(self, race: Race, kind: SlotKind, text: str) -> List[MessageSlot]:
        """Write ``text`` into the race's ``kind`` slots, oldest first.

        Returns the slots that were written. Slots beyond those keep their
        previous content.
        """
        slots = await asyncio.to_thread(self.storage.list_message_slots, race.race_id, kind)
        pages = pack_lines(text, self.max_len)
        if len(pages) > len(slots):
            slots.extend(await self._allocate(race, kind, len(pages) - len(slots)))
        available = iter(slots)
        edits = []
        used: List[MessageSlot] = []
        for page in pages:
            slot = next(available, None)
            if slot is None:
                for pending in edits:
                    pending.close()
                raise PaginationOverflow(
                    f"Race {race.race_id} ran out of {kind} slots with {len(pages) - len(used)} page(s) left."
                )
            edits.append(self.gateway.edit(slot.channel_id, slot.message_id, page))
            used.append(slot)
        await gather_all(edits)
        return used
