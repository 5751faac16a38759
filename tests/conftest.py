from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

import pytest

from cogs.asyncrace_games import GameDescriptor
from cogs.asyncrace_gateway import ChatGateway
from cogs.asyncrace_ledger import SubmissionLedger
from cogs.asyncrace_lifecycle import RaceLifecycleManager
from cogs.asyncrace_models import Submission
from cogs.asyncrace_paginator import MessagePaginator
from cogs.asyncrace_shared import ExternalError, GameTag
from cogs.asyncrace_storage import RaceStorage

SERVER_ID = 1
SUBMISSION_CHANNEL = 10
LEADERBOARD_CHANNEL = 20
SPOILER_CHANNEL = 30
SPOILER_ROLE = 40


class FakeGateway(ChatGateway):
    def __init__(self, max_message_len: int = 2000):
        self.max_message_len = max_message_len
        self.messages: Dict[int, Tuple[int, str]] = {}
        self.calls: List[tuple] = []
        self.roles: Set[Tuple[int, int]] = set()
        self.next_id = 1000
        self.fail_sends_to: Set[int] = set()
        self.fail_revoke_for: Set[int] = set()

    async def send(self, channel_id, text):
        self.calls.append(("send", channel_id, text))
        if channel_id in self.fail_sends_to:
            raise ExternalError(f"cannot send to {channel_id}")
        self.next_id += 1
        self.messages[self.next_id] = (channel_id, text)
        return self.next_id

    async def edit(self, channel_id, message_id, text):
        self.calls.append(("edit", channel_id, message_id, text))
        if message_id not in self.messages:
            raise ExternalError(f"unknown message {message_id}")
        self.messages[message_id] = (channel_id, text)

    async def delete(self, channel_id, message_id):
        self.calls.append(("delete", channel_id, message_id))
        self.messages.pop(message_id, None)

    async def grant_role(self, server_id, user_id, role_id):
        self.calls.append(("grant", user_id, role_id))
        self.roles.add((user_id, role_id))

    async def revoke_role(self, server_id, user_id, role_id):
        self.calls.append(("revoke", user_id, role_id))
        if user_id in self.fail_revoke_for:
            raise ExternalError(f"cannot revoke from {user_id}")
        self.roles.discard((user_id, role_id))

    def texts(self, channel_id: int) -> List[str]:
        return [text for _, (cid, text) in sorted(self.messages.items()) if cid == channel_id]

    def sends(self) -> List[tuple]:
        return [c for c in self.calls if c[0] == "send"]


class FakeDescriptor(GameDescriptor):
    def __init__(
        self,
        tag: GameTag = GameTag.ALTTPR,
        summary: str = "Open Defeat Ganon 2/2",
        url: Optional[str] = "https://alttpr.com/h/abc",
        error: Optional[Exception] = None,
    ):
        super().__init__(url)
        self.tag = tag
        self.summary = summary
        self.error = error

    def settings_summary(self) -> str:
        if self.error is not None:
            raise self.error
        return self.summary


class RecordingStorage:
    """Forwards to a real storage and records which methods were called."""

    def __init__(self, inner: RaceStorage):
        self.inner = inner
        self.calls: List[str] = []

    def __getattr__(self, name):
        attr = getattr(self.inner, name)
        if not callable(attr):
            return attr

        def wrapper(*args, **kwargs):
            self.calls.append(name)
            return attr(*args, **kwargs)

        return wrapper


def make_submission(
    submission_id: int,
    name: str,
    duration: Optional[int],
    score: Optional[int] = None,
    option_number: Optional[int] = None,
    forfeit: bool = False,
    submitted_at: Optional[datetime] = None,
) -> Submission:
    return Submission(
        submission_id=submission_id,
        race_id=1,
        runner_id=100 + submission_id,
        runner_name=name,
        submitted_at=submitted_at or datetime(2024, 1, 1, 12, 0, submission_id % 60, tzinfo=timezone.utc),
        duration=duration,
        score=score,
        option_number=option_number,
        forfeit=forfeit,
    )


@pytest.fixture
def storage(tmp_path):
    return RaceStorage(str(tmp_path / "asyncrace.sqlite3"))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def group(storage):
    return storage.add_group(SERVER_ID, "Weekly", SUBMISSION_CHANNEL, LEADERBOARD_CHANNEL, SPOILER_CHANNEL, SPOILER_ROLE)


@pytest.fixture
def ledger(storage, gateway):
    return SubmissionLedger(storage, gateway)


@pytest.fixture
def paginator(storage, gateway):
    return MessagePaginator(storage, gateway)


@pytest.fixture
def manager(storage, gateway, paginator, ledger):
    return RaceLifecycleManager(storage, gateway, paginator, ledger)
