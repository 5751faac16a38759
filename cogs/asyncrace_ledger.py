from __future__ import annotations

import asyncio
import enum
from datetime import datetime
from typing import Iterable, Optional, Tuple

from .asyncrace_gateway import ChatGateway
from .asyncrace_models import ChannelGroup, Race, Runner, Submission
from .asyncrace_rules import Extra, rules_for
from .asyncrace_saves import read_save, supports_saves
from .asyncrace_shared import (
    FORFEIT_WORDS,
    ExternalError,
    GroupNotFound,
    MalformedSubmission,
    RaceNotActive,
    RaceType,
    SubmissionNotFound,
    logger,
    parse_duration,
    utcnow,
)
from .asyncrace_storage import RaceStorage


class SubmitOutcome(enum.Enum):
    ACCEPTED = "accepted"
    FORFEIT = "forfeit"
    DUPLICATE = "duplicate"


class SubmissionLedger:
    """Records at most one submission per runner and race.

    Callers refresh the leaderboard after a successful mutation; the ledger
    never renders.
    """

    def __init__(self, storage: RaceStorage, gateway: ChatGateway):
        self.storage = storage
        self.gateway = gateway

    async def _group(self, race: Race) -> ChannelGroup:
        group = await asyncio.to_thread(self.storage.get_group, race.group_id)
        if group is None:
            raise GroupNotFound(f"Channel group {race.group_id} no longer exists.")
        return group

    def _parse(self, race: Race, raw_text: str, attachment: Optional[bytes]) -> Tuple[bool, Optional[int], Extra]:
        tokens = raw_text.replace("\\", "").split()
        if tokens and tokens[0].lower() in FORFEIT_WORDS:
            return True, None, Extra()
        rules = rules_for(race.game)
        if race.race_type == RaceType.IGT and attachment is not None and supports_saves(race.game):
            save = read_save(race.game, attachment)
            if not save.is_finished():
                raise MalformedSubmission("That save file is not from a finished game.")
            score = save.score()
            if score is not None:
                score = rules.validate_score(score)
            return False, save.duration(), Extra(score=score)
        if not tokens:
            raise MalformedSubmission("Submissions must start with a time, or `ff` to forfeit.")
        return False, parse_duration(tokens[0]), rules.parse_extra(tokens[1:])

    async def submit(
        self,
        race: Race,
        runner: Runner,
        raw_text: str,
        attachment: Optional[bytes] = None,
        now: Optional[datetime] = None,
    ) -> SubmitOutcome:
        if not race.active:
            raise RaceNotActive(f"Race {race.race_id} is not active.")
        existing = await asyncio.to_thread(self.storage.find_submission, race.race_id, runner.runner_id)
        if existing is not None:
            logger.info("Dropping duplicate submission from %s in race %s", runner.runner_id, race.race_id)
            return SubmitOutcome.DUPLICATE
        forfeit, duration, extra = self._parse(race, raw_text, attachment)
        created = await asyncio.to_thread(
            self.storage.insert_submission,
            race.race_id,
            runner.runner_id,
            runner.name,
            now or utcnow(),
            duration,
            extra.score,
            extra.option_number,
            extra.option_text,
            forfeit,
        )
        if created is None:
            logger.info("Dropping concurrent duplicate from %s in race %s", runner.runner_id, race.race_id)
            return SubmitOutcome.DUPLICATE
        group = await self._group(race)
        await self.gateway.grant_role(group.server_id, runner.runner_id, group.spoiler_role_id)
        logger.info(
            "Recorded %s for %s in race %s",
            "forfeit" if forfeit else "submission",
            runner.runner_id,
            race.race_id,
        )
        return SubmitOutcome.FORFEIT if forfeit else SubmitOutcome.ACCEPTED

    async def _find(self, race: Race, runner_name: str) -> Submission:
        sub = await asyncio.to_thread(self.storage.find_submission_by_name, race.race_id, runner_name)
        if sub is None:
            raise SubmissionNotFound(f"No submission from `{runner_name}` in the current race.")
        return sub

    async def amend_time(self, race: Race, runner_name: str, new_duration: int) -> Submission:
        sub = await self._find(race, runner_name)
        await asyncio.to_thread(self.storage.update_submission_time, sub.submission_id, new_duration)
        sub.duration = new_duration
        logger.info("Changed time for %s in race %s", sub.runner_id, race.race_id)
        return sub

    async def amend_score(self, race: Race, runner_name: str, new_score: int) -> Submission:
        sub = await self._find(race, runner_name)
        new_score = rules_for(race.game).validate_score(new_score)
        await asyncio.to_thread(self.storage.update_submission_score, sub.submission_id, new_score)
        sub.score = new_score
        logger.info("Changed score for %s in race %s", sub.runner_id, race.race_id)
        return sub

    async def remove(self, race: Race, runner_name: str) -> Submission:
        sub = await self._find(race, runner_name)
        await asyncio.to_thread(self.storage.delete_submission, sub.submission_id)
        group = await self._group(race)
        try:
            await self.gateway.revoke_role(group.server_id, sub.runner_id, group.spoiler_role_id)
        except ExternalError:
            logger.warning("Could not remove spoiler role from %s after deleting their submission", sub.runner_id, exc_info=True)
        logger.info("Removed submission from %s in race %s", sub.runner_id, race.race_id)
        return sub

    async def revoke_all(self, group: ChannelGroup, submissions: Iterable[Submission]) -> int:
        """Take the spoiler role from every runner, forfeits included. Returns the failure count."""
        failures = 0
        for runner_id in sorted({s.runner_id for s in submissions}):
            try:
                await self.gateway.revoke_role(group.server_id, runner_id, group.spoiler_role_id)
            except ExternalError:
                failures += 1
                logger.warning("Could not remove spoiler role from %s in group %s", runner_id, group.name, exc_info=True)
        return failures
