import itertools
from datetime import date, datetime, timedelta, timezone

from discord.utils import escape_markdown

from cogs.asyncrace_models import Race
from cogs.asyncrace_render import rank_submissions, render
from cogs.asyncrace_shared import GameTag, RaceType
from conftest import make_submission

NOW = datetime(2024, 1, 2, 12, 0, tzinfo=timezone.utc)


def race_for(game=GameTag.ALTTPR):
    return Race(
        race_id=1,
        group_id=1,
        active=True,
        race_date=date(2024, 1, 1),
        game=game,
        race_type=RaceType.RTA,
        description="2024-01-01 - ALTTPR - Open Defeat Ganon 7/7 - <https://alttpr.com/h/abc>",
        url="https://alttpr.com/h/abc",
    )


def test_render_header_and_lines():
    subs = [
        make_submission(1, "A", 5025, score=180),
        make_submission(2, "B", 4200, score=200),
    ]
    text = render(race_for(), subs, now=NOW)
    assert text.split("\n") == [
        "Leaderboard for 2024-01-01 - ALTTPR - Open Defeat Ganon 7/7 - <https://alttpr.com/h/abc>",
        "1) B - 01:10:00 - 200/216",
        "2) A - 01:23:45 - 180/216",
    ]


def test_render_empty_race_is_header_only():
    assert render(race_for(), [], now=NOW) == "Leaderboard for " + race_for().description


def test_forfeits_are_not_ranked():
    subs = [make_submission(1, "A", None, forfeit=True), make_submission(2, "B", 100, score=1)]
    lines = render(race_for(), subs, now=NOW).split("\n")
    assert lines[1:] == ["1) B - 00:01:40 - 1/216"]


def test_ties_break_on_score_then_extension_number():
    subs = [
        make_submission(1, "low", 3600, score=100),
        make_submission(2, "high", 3600, score=200),
        make_submission(3, "none", 3600),
        make_submission(4, "slow", 4000, score=216),
    ]
    assert [s.runner_name for s in rank_submissions(subs)] == ["high", "low", "none", "slow"]
    other = [
        make_submission(1, "a", 3600, option_number=3),
        make_submission(2, "b", 3600, option_number=9),
        make_submission(3, "c", 3600),
    ]
    assert [s.runner_name for s in rank_submissions(other)] == ["b", "a", "c"]


def test_render_ignores_input_order():
    subs = [
        make_submission(1, "A", 3600, score=150),
        make_submission(2, "B", 3600, score=150),
        make_submission(3, "C", 3500, score=10),
        make_submission(4, "D", 3700, score=216),
        make_submission(5, "E", None, forfeit=True),
    ]
    expected = render(race_for(), subs, now=NOW)
    for perm in itertools.permutations(subs):
        assert render(race_for(), list(perm), now=NOW) == expected
    assert expected.split("\n")[1:3] == ["1) C - 00:58:20 - 10/216", "2) A - 01:00:00 - 150/216"]


def test_recent_runners_emphasized_only_when_live():
    recent = make_submission(1, "Fresh", 3600, score=1, submitted_at=NOW - timedelta(hours=1))
    old = make_submission(2, "Stale", 3700, score=1, submitted_at=NOW - timedelta(hours=7))
    live = render(race_for(), [recent, old], now=NOW).split("\n")
    assert live[1] == "1) *Fresh* - 01:00:00 - 1/216"
    assert live[2] == "2) Stale - 01:01:40 - 1/216"
    archived = render(race_for(), [recent, old], emphasize_recent=False, now=NOW).split("\n")
    assert archived[1] == "1) Fresh - 01:00:00 - 1/216"


def test_other_game_lines_omit_empty_extra():
    subs = [make_submission(1, "A", 60)]
    assert render(race_for(GameTag.OTHER), subs, now=NOW).split("\n")[1] == "1) A - 00:01:00"


def test_names_are_escaped_before_emphasis():
    recent = make_submission(1, "**x_y_**", 3600, score=1, submitted_at=NOW - timedelta(hours=1))
    live = render(race_for(), [recent], now=NOW).split("\n")[1]
    assert live == f"1) *{escape_markdown('**x_y_**')}* - 01:00:00 - 1/216"
    assert "\\*" in live and "\\_" in live
    archived = render(race_for(), [recent], emphasize_recent=False, now=NOW).split("\n")[1]
    assert archived.startswith("1) " + escape_markdown("**x_y_**") + " - ")
