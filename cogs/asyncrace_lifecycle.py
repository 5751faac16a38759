from __future__ import annotations

import asyncio
from datetime import date
from typing import Optional

from .asyncrace_games import GameDescriptor
from .asyncrace_gateway import ChatGateway
from .asyncrace_ledger import SubmissionLedger
from .asyncrace_models import ChannelGroup, Race
from .asyncrace_paginator import MessagePaginator
from .asyncrace_render import render
from .asyncrace_shared import (
    AsyncRaceError,
    RaceNotActive,
    RaceType,
    SlotKind,
    StartError,
    gather_all,
    logger,
    utcnow,
)
from .asyncrace_storage import RaceStorage


def describe(descriptor: GameDescriptor, race_date: date) -> str:
    parts = [race_date.isoformat(), str(descriptor.name()), descriptor.settings_summary()]
    url = descriptor.source_url()
    if url:
        # angle brackets keep Discord from embedding the link
        parts.append(f"<{url}>")
    return " - ".join(parts)


class RaceLifecycleManager:
    """Start, stop and refresh races. At most one race per group is active."""

    def __init__(
        self,
        storage: RaceStorage,
        gateway: ChatGateway,
        paginator: MessagePaginator,
        ledger: SubmissionLedger,
    ):
        self.storage = storage
        self.gateway = gateway
        self.paginator = paginator
        self.ledger = ledger

    async def get_active(self, group: ChannelGroup) -> Optional[Race]:
        return await asyncio.to_thread(self.storage.find_active_race, group.group_id)

    async def start(
        self,
        group: ChannelGroup,
        descriptor: GameDescriptor,
        race_type: RaceType,
        race_date: Optional[date] = None,
    ) -> Race:
        previous = await self.get_active(group)
        if previous is not None:
            logger.info("Closing race %s in group %s before starting a new one", previous.race_id, group.name)
            await self._finalize(group, previous)
        race_date = race_date or utcnow().date()
        try:
            description = describe(descriptor, race_date)
        except AsyncRaceError as exc:
            raise StartError(f"Could not read the game settings: {exc}") from exc
        try:
            race = await asyncio.to_thread(
                self.storage.insert_race,
                group.group_id,
                race_date,
                descriptor.name(),
                race_type,
                description,
                descriptor.source_url(),
            )
        except AsyncRaceError as exc:
            raise StartError(f"Could not record the race: {exc}") from exc
        try:
            await gather_all(
                [
                    self.paginator.publish(race, SlotKind.SUBMISSION, race.description),
                    self.paginator.publish(race, SlotKind.LEADERBOARD, render(race, [])),
                ]
            )
        except AsyncRaceError as exc:
            await self._abandon(race)
            raise StartError(f"Could not post the race messages: {exc}") from exc
        logger.info("Started %s %s race %s in group %s", race.race_type, race.game, race.race_id, group.name)
        return race

    async def _abandon(self, race: Race) -> None:
        await asyncio.to_thread(self.storage.set_race_active, race.race_id, False)
        for kind in SlotKind:
            slots = await asyncio.to_thread(self.storage.list_message_slots, race.race_id, kind)
            for slot in slots:
                try:
                    await self.gateway.delete(slot.channel_id, slot.message_id)
                    await asyncio.to_thread(self.storage.delete_message_slot, slot.message_id)
                except AsyncRaceError:
                    logger.warning("Could not clean up message %s of abandoned race %s", slot.message_id, race.race_id, exc_info=True)
        logger.info("Abandoned race %s after a failed start", race.race_id)

    async def stop(self, group: ChannelGroup) -> Race:
        race = await self.get_active(group)
        if race is None:
            raise RaceNotActive(f"There is no active race in {group.name}.")
        await self._finalize(group, race)
        return race

    async def _finalize(self, group: ChannelGroup, race: Race) -> None:
        await asyncio.to_thread(self.storage.set_race_active, race.race_id, False)
        race.active = False
        submissions = await asyncio.to_thread(self.storage.list_submissions, race.race_id)
        await self.paginator.publish(race, SlotKind.SUBMISSION, render(race, submissions, emphasize_recent=False))
        slots = await asyncio.to_thread(self.storage.list_message_slots, race.race_id, SlotKind.LEADERBOARD)
        await gather_all(self.gateway.delete(slot.channel_id, slot.message_id) for slot in slots)
        for slot in slots:
            await asyncio.to_thread(self.storage.delete_message_slot, slot.message_id)
        failures = await self.ledger.revoke_all(group, submissions)
        logger.info(
            "Stopped race %s in group %s with %s submission(s), %s role removal failure(s)",
            race.race_id,
            group.name,
            len(submissions),
            failures,
        )

    async def refresh(self, group: ChannelGroup) -> Optional[Race]:
        race = await self.get_active(group)
        if race is None:
            return None
        submissions = await asyncio.to_thread(self.storage.list_submissions, race.race_id)
        await self.paginator.publish(race, SlotKind.LEADERBOARD, render(race, submissions))
        return race
