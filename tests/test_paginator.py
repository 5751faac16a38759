import asyncio
from datetime import date

import pytest

from cogs.asyncrace_paginator import MessagePaginator, pack_lines
from cogs.asyncrace_shared import GameTag, PaginationOverflow, RaceType, SlotKind, utcnow
from conftest import LEADERBOARD_CHANNEL, SERVER_ID


def board_text(lines, width=99):
    return "\n".join(f"{i:03d}) " + "x" * (width - 5) for i in range(lines))


@pytest.fixture
def race(storage, group):
    return storage.insert_race(group.group_id, date(2024, 1, 1), GameTag.OTHER, RaceType.RTA, "desc")


def slot_contents(storage, gateway, race, kind=SlotKind.LEADERBOARD):
    return [gateway.messages[s.message_id][1] for s in storage.list_message_slots(race.race_id, kind)]


def test_pack_lines_respects_limit_and_round_trips():
    text = board_text(45, width=100)
    pages = pack_lines(text, 2000)
    assert len(pages) == 3
    assert all(len(p) <= 2000 for p in pages)
    assert "\n".join(pages) == text


def test_pack_lines_edge_cases():
    assert pack_lines("", 10) == []
    assert pack_lines("abc", 10) == ["abc"]
    assert pack_lines("aaaa\nbbbb\ncc", 9) == ["aaaa\nbbbb", "cc"]
    assert pack_lines("x" * 25, 10) == ["x" * 10, "x" * 10, "x" * 5]
    assert pack_lines("head\n" + "y" * 12 + "\ntail", 10) == ["head", "y" * 10, "yy\ntail"]
    assert pack_lines("x" * 10 + "\n", 10) == ["x" * 10]
    assert pack_lines("x" * 20, 10) == ["x" * 10, "x" * 10]


def test_publish_grows_by_full_deficit(storage, gateway, paginator, race):
    existing = asyncio.run(gateway.send(LEADERBOARD_CHANNEL, "old"))
    storage.insert_message_slot(existing, utcnow(), race.race_id, SERVER_ID, LEADERBOARD_CHANNEL, SlotKind.LEADERBOARD)
    text = board_text(45, width=100)
    assert len(text) > 4400

    used = asyncio.run(paginator.publish(race, SlotKind.LEADERBOARD, text))

    assert len(used) == 3
    assert len(storage.list_message_slots(race.race_id, SlotKind.LEADERBOARD)) == 3
    assert len(gateway.sends()) == 3  # the pre-existing slot plus two placeholders
    contents = slot_contents(storage, gateway, race)
    assert used[0].message_id == existing
    assert "\n".join(contents) == text


def test_publish_is_idempotent(storage, gateway, paginator, race):
    text = board_text(60)
    asyncio.run(paginator.publish(race, SlotKind.LEADERBOARD, text))
    first = slot_contents(storage, gateway, race)
    sends = len(gateway.sends())
    asyncio.run(paginator.publish(race, SlotKind.LEADERBOARD, text))
    assert len(gateway.sends()) == sends
    assert slot_contents(storage, gateway, race) == first


def test_unused_slots_keep_previous_content(storage, gateway, paginator, race):
    asyncio.run(paginator.publish(race, SlotKind.LEADERBOARD, board_text(60)))
    before = slot_contents(storage, gateway, race)
    assert len(before) >= 3
    asyncio.run(paginator.publish(race, SlotKind.LEADERBOARD, "short"))
    after = slot_contents(storage, gateway, race)
    assert after[0] == "short"
    assert after[1:] == before[1:]


def test_publish_targets_channel_by_kind(storage, gateway, paginator, race, group):
    asyncio.run(paginator.publish(race, SlotKind.SUBMISSION, "hello"))
    slots = storage.list_message_slots(race.race_id, SlotKind.SUBMISSION)
    assert [s.channel_id for s in slots] == [group.submission_channel_id]
    assert gateway.texts(group.submission_channel_id) == ["hello"]
    assert storage.list_message_slots(race.race_id, SlotKind.LEADERBOARD) == []


def test_overflow_is_reported_not_truncated(storage, gateway, race, monkeypatch):
    paginator = MessagePaginator(storage, gateway, max_len=10)

    async def no_growth(race, kind, count):
        return []

    monkeypatch.setattr(paginator, "_allocate", no_growth)
    with pytest.raises(PaginationOverflow):
        asyncio.run(paginator.publish(race, SlotKind.LEADERBOARD, "a" * 25))
    assert [c for c in gateway.calls if c[0] == "edit"] == []
