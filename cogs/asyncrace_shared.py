from __future__ import annotations

import asyncio
import enum
import logging
import os
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Iterable, List, Optional

DATA_DIR = os.getenv("ASYNCRACE_DATA_DIR", "data")
DB_FILE = os.getenv("ASYNCRACE_DB_FILE", os.path.join(DATA_DIR, "asyncrace.sqlite3"))
MAX_MESSAGE_LEN = 2000
RECENT_WINDOW = timedelta(hours=6)
FORFEIT_WORDS = frozenset({"ff", "forfeit"})
PLACEHOLDER_TEXT = "Updating leaderboard..."
MAX_GROUPS_PER_SERVER = 10
MAX_GROUP_NAME_LEN = 255
MAX_OTHER_GAME_TEXT = 400
MAX_OPTION_TEXT_LEN = 255
MAX_DURATION_HOURS = 1000
MAX_STORED_INT = 2**63 - 1

logger = logging.getLogger("asyncrace")


class GameTag(str, enum.Enum):
    ALTTPR = "ALTTPR"
    SMZ3 = "SMZ3"
    FF4FE = "FF4 FE"
    SMVARIA = "SM VARIA"
    SMTOTAL = "SM Total"
    OTHER = "Other"

    def __str__(self) -> str:
        return self.value


class RaceType(str, enum.Enum):
    IGT = "IGT"
    RTA = "RTA"

    def __str__(self) -> str:
        return self.value


class SlotKind(str, enum.Enum):
    SUBMISSION = "Submission"
    LEADERBOARD = "Leaderboard"

    def __str__(self) -> str:
        return self.value


class AsyncRaceError(Exception):
    """Base class for every failure the race engine reports."""


class ValidationError(AsyncRaceError):
    pass


class MalformedSubmission(ValidationError):
    pass


class UnknownGame(ValidationError):
    pass


class GroupConfigError(ValidationError):
    pass


class NotFoundError(AsyncRaceError):
    pass


class RaceNotActive(NotFoundError):
    pass


class SubmissionNotFound(NotFoundError):
    pass


class GroupNotFound(NotFoundError):
    pass


class ExternalError(AsyncRaceError):
    """Store, chat platform or seed API failure. Never swallowed."""


class StartError(AsyncRaceError):
    pass


class PaginationOverflow(AsyncRaceError):
    pass


_DURATION_RE = re.compile(r"^\d+(?::\d{1,2}){0,2}$")


def parse_duration(text: str) -> int:
    """Parse ``H:M:S``, ``M:S`` or ``S`` into whole seconds.

    Every component after the first must be below 60, and the total must stay
    under ``MAX_DURATION_HOURS``.
    """
    cleaned = text.strip()
    if not _DURATION_RE.match(cleaned):
        raise MalformedSubmission(f"`{text}` is not a valid time. Use H:MM:SS.")
    seconds = 0
    for index, part in enumerate(int(p) for p in cleaned.split(":")):
        if index and part >= 60:
            raise MalformedSubmission(f"`{text}` is not a valid time. Minutes and seconds must be below 60.")
        seconds = seconds * 60 + part
    if seconds >= MAX_DURATION_HOURS * 3600:
        raise MalformedSubmission(f"`{text}` is not a valid time. Times must be under {MAX_DURATION_HOURS} hours.")
    return seconds


def format_duration(seconds: Optional[int]) -> str:
    if seconds is None:
        return "--:--:--"
    hours, rem = divmod(int(seconds), 3600)
    minutes, secs = divmod(rem, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def frames_to_seconds(frames: int) -> int:
    # consoles report IGT in 60 fps frames
    return frames // 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def maintenance_user_id() -> Optional[int]:
    raw = os.getenv("ASYNCRACE_MAINTENANCE_USER")
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring ASYNCRACE_MAINTENANCE_USER=%r, expected a user id", raw)
        return None


def ensure_dirs(db_path: str = DB_FILE) -> None:
    os.makedirs(os.path.dirname(db_path) or DATA_DIR, exist_ok=True)


async def gather_all(aws: Iterable[Awaitable[Any]]) -> List[Any]:
    """Await every call, then raise the first failure if any of them failed."""
    results = await asyncio.gather(*aws, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results
