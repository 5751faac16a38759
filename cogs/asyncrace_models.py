from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .asyncrace_shared import GameTag, RaceType, SlotKind


@dataclass(frozen=True)
class ChannelGroup:
    group_id: int
    server_id: int
    name: str
    submission_channel_id: int
    leaderboard_channel_id: int
    spoiler_channel_id: int
    spoiler_role_id: int


@dataclass
class Race:
    race_id: int
    group_id: int
    active: bool
    race_date: date
    game: GameTag
    race_type: RaceType
    # "<date> - <game> - <settings>[ - <url>]", fixed at start
    description: str
    url: Optional[str] = None


@dataclass
class Submission:
    submission_id: int
    race_id: int
    runner_id: int
    runner_name: str
    submitted_at: datetime
    duration: Optional[int] = None
    score: Optional[int] = None
    option_number: Optional[int] = None
    option_text: Optional[str] = None
    forfeit: bool = False


@dataclass(frozen=True)
class MessageSlot:
    message_id: int
    created_at: datetime
    race_id: int
    server_id: int
    channel_id: int
    kind: SlotKind


@dataclass(frozen=True)
class Runner:
    runner_id: int
    name: str
