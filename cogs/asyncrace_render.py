from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from discord.utils import escape_markdown

from .asyncrace_models import Race, Submission
from .asyncrace_rules import rules_for
from .asyncrace_shared import RECENT_WINDOW, format_duration, utcnow


def header_for(race: Race) -> str:
    return f"Leaderboard for {race.description}"


def _rank_key(sub: Submission) -> Tuple:
    # fastest first, then higher score, then higher extension number
    return (
        sub.duration is None,
        sub.duration or 0,
        sub.score is None,
        -(sub.score or 0),
        sub.option_number is None,
        -(sub.option_number or 0),
        sub.submitted_at,
        sub.submission_id,
    )


def rank_submissions(submissions: Iterable[Submission]) -> List[Submission]:
    return sorted((s for s in submissions if not s.forfeit), key=_rank_key)


def render(
    race: Race,
    submissions: Iterable[Submission],
    *,
    emphasize_recent: bool = True,
    now: Optional[datetime] = None,
) -> str:
    """Build the leaderboard text for ``race``.

    Forfeits are left out. With ``emphasize_recent`` runners who submitted
    within the last six hours are wrapped in ``*``; archived copies pass
    False.
    """
    now = now or utcnow()
    rules = rules_for(race.game)
    lines = [header_for(race)]
    for rank, sub in enumerate(rank_submissions(submissions), start=1):
        name = escape_markdown(sub.runner_name)
        if emphasize_recent and now - sub.submitted_at < RECENT_WINDOW:
            name = f"*{name}*"
        line = f"{rank}) {name} - {format_duration(sub.duration)}"
        extra = rules.format_extra(sub)
        if extra:
            line += f" - {extra}"
        lines.append(line)
    return "\n".join(lines)
