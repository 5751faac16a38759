from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime
from typing import Iterator, List, Optional

from .asyncrace_models import ChannelGroup, MessageSlot, Race, Submission
from .asyncrace_shared import DB_FILE, ExternalError, GameTag, GroupConfigError, RaceType, SlotKind


def _ts(value: datetime) -> str:
    # fixed width so lexical order matches chronological order
    return value.isoformat(timespec="microseconds")


class RaceStorage:
    """SQLite persistence for channel groups, races, submissions and message slots.

    Every method is synchronous and serialised by one lock; async callers go
    through ``asyncio.to_thread``.
    """

    def __init__(self, db_path: str = DB_FILE):
        self.db_path = db_path
        self._lock = threading.Lock()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                conn = self._connect()
            except sqlite3.Error as exc:
                raise ExternalError(f"Could not open race database: {exc}") from exc
            try:
                with conn:
                    yield conn
            except sqlite3.Error as exc:
                raise ExternalError(f"Race database failure: {exc}") from exc
            finally:
                conn.close()

    def _ensure_schema(self) -> None:
        with self._session() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS channel_groups (
                    group_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    server_id INTEGER NOT NULL,
                    group_name TEXT NOT NULL,
                    submission_channel_id INTEGER NOT NULL UNIQUE,
                    leaderboard_channel_id INTEGER NOT NULL,
                    spoiler_channel_id INTEGER NOT NULL,
                    spoiler_role_id INTEGER NOT NULL,
                    UNIQUE (server_id, group_name)
                );
                CREATE TABLE IF NOT EXISTS async_races (
                    race_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    group_id INTEGER NOT NULL REFERENCES channel_groups (group_id) ON DELETE CASCADE,
                    race_active INTEGER NOT NULL,
                    race_date TEXT NOT NULL,
                    race_game TEXT NOT NULL,
                    race_type TEXT NOT NULL,
                    race_info TEXT NOT NULL,
                    race_url TEXT
                );
                CREATE INDEX IF NOT EXISTS idx_races_group ON async_races (group_id, race_active);
                CREATE UNIQUE INDEX IF NOT EXISTS idx_races_one_active
                    ON async_races (group_id) WHERE race_active = 1;
                CREATE TABLE IF NOT EXISTS submissions (
                    submission_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    race_id INTEGER NOT NULL REFERENCES async_races (race_id) ON DELETE CASCADE,
                    runner_id INTEGER NOT NULL,
                    runner_name TEXT NOT NULL,
                    submission_datetime TEXT NOT NULL,
                    runner_time INTEGER,
                    runner_score INTEGER,
                    option_number INTEGER,
                    option_text TEXT,
                    runner_forfeit INTEGER NOT NULL DEFAULT 0,
                    UNIQUE (race_id, runner_id)
                );
                CREATE TABLE IF NOT EXISTS messages (
                    message_id INTEGER PRIMARY KEY,
                    message_datetime TEXT NOT NULL,
                    race_id INTEGER NOT NULL REFERENCES async_races (race_id) ON DELETE CASCADE,
                    server_id INTEGER NOT NULL,
                    channel_id INTEGER NOT NULL,
                    channel_type TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_messages_race ON messages (race_id, channel_type);
                """
            )

    @staticmethod
    def _group_from_row(row: sqlite3.Row) -> ChannelGroup:
        return ChannelGroup(
            group_id=row["group_id"],
            server_id=row["server_id"],
            name=row["group_name"],
            submission_channel_id=row["submission_channel_id"],
            leaderboard_channel_id=row["leaderboard_channel_id"],
            spoiler_channel_id=row["spoiler_channel_id"],
            spoiler_role_id=row["spoiler_role_id"],
        )

    @staticmethod
    def _race_from_row(row: sqlite3.Row) -> Race:
        return Race(
            race_id=row["race_id"],
            group_id=row["group_id"],
            active=bool(row["race_active"]),
            race_date=date.fromisoformat(row["race_date"]),
            game=GameTag(row["race_game"]),
            race_type=RaceType(row["race_type"]),
            description=row["race_info"],
            url=row["race_url"],
        )

    @staticmethod
    def _submission_from_row(row: sqlite3.Row) -> Submission:
        return Submission(
            submission_id=row["submission_id"],
            race_id=row["race_id"],
            runner_id=row["runner_id"],
            runner_name=row["runner_name"],
            submitted_at=datetime.fromisoformat(row["submission_datetime"]),
            duration=row["runner_time"],
            score=row["runner_score"],
            option_number=row["option_number"],
            option_text=row["option_text"],
            forfeit=bool(row["runner_forfeit"]),
        )

    @staticmethod
    def _slot_from_row(row: sqlite3.Row) -> MessageSlot:
        return MessageSlot(
            message_id=row["message_id"],
            created_at=datetime.fromisoformat(row["message_datetime"]),
            race_id=row["race_id"],
            server_id=row["server_id"],
            channel_id=row["channel_id"],
            kind=SlotKind(row["channel_type"]),
        )

    # channel groups

    def add_group(
        self,
        server_id: int,
        name: str,
        submission_channel_id: int,
        leaderboard_channel_id: int,
        spoiler_channel_id: int,
        spoiler_role_id: int,
    ) -> ChannelGroup:
        with self._session() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO channel_groups (
                        server_id, group_name, submission_channel_id,
                        leaderboard_channel_id, spoiler_channel_id, spoiler_role_id
                    )
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (server_id, name, submission_channel_id, leaderboard_channel_id, spoiler_channel_id, spoiler_role_id),
                )
            except sqlite3.IntegrityError as exc:
                raise GroupConfigError(f"Group `{name}` conflicts with an existing group.") from exc
            return ChannelGroup(
                group_id=cur.lastrowid,
                server_id=server_id,
                name=name,
                submission_channel_id=submission_channel_id,
                leaderboard_channel_id=leaderboard_channel_id,
                spoiler_channel_id=spoiler_channel_id,
                spoiler_role_id=spoiler_role_id,
            )

    def remove_group(self, server_id: int, name: str) -> Optional[ChannelGroup]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM channel_groups WHERE server_id=? AND group_name=?",
                (server_id, name),
            ).fetchone()
            if row is None:
                return None
            conn.execute("DELETE FROM channel_groups WHERE group_id=?", (row["group_id"],))
            return self._group_from_row(row)

    def get_group(self, group_id: int) -> Optional[ChannelGroup]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM channel_groups WHERE group_id=?", (group_id,)).fetchone()
            return self._group_from_row(row) if row else None

    def find_group_by_submission_channel(self, channel_id: int) -> Optional[ChannelGroup]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM channel_groups WHERE submission_channel_id=?",
                (channel_id,),
            ).fetchone()
            return self._group_from_row(row) if row else None

    def list_groups(self, server_id: Optional[int] = None) -> List[ChannelGroup]:
        with self._session() as conn:
            if server_id is None:
                rows = conn.execute("SELECT * FROM channel_groups ORDER BY group_id").fetchall()
            else:
                rows = conn.execute(
                    "SELECT * FROM channel_groups WHERE server_id=? ORDER BY group_id",
                    (server_id,),
                ).fetchall()
            return [self._group_from_row(row) for row in rows]

    # races

    def insert_race(
        self,
        group_id: int,
        race_date: date,
        game: GameTag,
        race_type: RaceType,
        description: str,
        url: Optional[str] = None,
    ) -> Race:
        with self._session() as conn:
            cur = conn.execute(
                """
                INSERT INTO async_races (group_id, race_active, race_date, race_game, race_type, race_info, race_url)
                VALUES (?, 1, ?, ?, ?, ?, ?)
                """,
                (group_id, race_date.isoformat(), game.value, race_type.value, description, url),
            )
            return Race(
                race_id=cur.lastrowid,
                group_id=group_id,
                active=True,
                race_date=race_date,
                game=game,
                race_type=race_type,
                description=description,
                url=url,
            )

    def get_race(self, race_id: int) -> Optional[Race]:
        with self._session() as conn:
            row = conn.execute("SELECT * FROM async_races WHERE race_id=?", (race_id,)).fetchone()
            return self._race_from_row(row) if row else None

    def find_active_race(self, group_id: int) -> Optional[Race]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM async_races WHERE group_id=? AND race_active=1 ORDER BY race_id DESC LIMIT 1",
                (group_id,),
            ).fetchone()
            return self._race_from_row(row) if row else None

    def set_race_active(self, race_id: int, active: bool) -> None:
        with self._session() as conn:
            conn.execute("UPDATE async_races SET race_active=? WHERE race_id=?", (int(active), race_id))

    # submissions

    def insert_submission(
        self,
        race_id: int,
        runner_id: int,
        runner_name: str,
        submitted_at: datetime,
        duration: Optional[int] = None,
        score: Optional[int] = None,
        option_number: Optional[int] = None,
        option_text: Optional[str] = None,
        forfeit: bool = False,
    ) -> Optional[Submission]:
        """Insert one submission; returns None if the runner already has one in this race."""
        with self._session() as conn:
            try:
                cur = conn.execute(
                    """
                    INSERT INTO submissions (
                        race_id, runner_id, runner_name, submission_datetime,
                        runner_time, runner_score, option_number, option_text, runner_forfeit
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        race_id,
                        runner_id,
                        runner_name,
                        _ts(submitted_at),
                        duration,
                        score,
                        option_number,
                        option_text,
                        int(forfeit),
                    ),
                )
            except sqlite3.IntegrityError:
                row = conn.execute(
                    "SELECT 1 FROM submissions WHERE race_id=? AND runner_id=?",
                    (race_id, runner_id),
                ).fetchone()
                if row is None:
                    raise
                return None
            return Submission(
                submission_id=cur.lastrowid,
                race_id=race_id,
                runner_id=runner_id,
                runner_name=runner_name,
                submitted_at=submitted_at,
                duration=duration,
                score=score,
                option_number=option_number,
                option_text=option_text,
                forfeit=forfeit,
            )

    def find_submission(self, race_id: int, runner_id: int) -> Optional[Submission]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM submissions WHERE race_id=? AND runner_id=?",
                (race_id, runner_id),
            ).fetchone()
            return self._submission_from_row(row) if row else None

    def find_submission_by_name(self, race_id: int, runner_name: str) -> Optional[Submission]:
        with self._session() as conn:
            row = conn.execute(
                """
                SELECT * FROM submissions
                WHERE race_id=? AND runner_name=? COLLATE NOCASE
                ORDER BY submission_id ASC
                LIMIT 1
                """,
                (race_id, runner_name.strip()),
            ).fetchone()
            return self._submission_from_row(row) if row else None

    def list_submissions(self, race_id: int) -> List[Submission]:
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM submissions WHERE race_id=? ORDER BY submission_datetime ASC, submission_id ASC",
                (race_id,),
            ).fetchall()
            return [self._submission_from_row(row) for row in rows]

    def update_submission_time(self, submission_id: int, duration: int) -> None:
        with self._session() as conn:
            conn.execute("UPDATE submissions SET runner_time=? WHERE submission_id=?", (duration, submission_id))

    def update_submission_score(self, submission_id: int, score: Optional[int]) -> None:
        with self._session() as conn:
            conn.execute("UPDATE submissions SET runner_score=? WHERE submission_id=?", (score, submission_id))

    def delete_submission(self, submission_id: int) -> None:
        with self._session() as conn:
            conn.execute("DELETE FROM submissions WHERE submission_id=?", (submission_id,))

    # message slots

    def insert_message_slot(
        self,
        message_id: int,
        created_at: datetime,
        race_id: int,
        server_id: int,
        channel_id: int,
        kind: SlotKind,
    ) -> MessageSlot:
        with self._session() as conn:
            conn.execute(
                """
                INSERT INTO messages (message_id, message_datetime, race_id, server_id, channel_id, channel_type)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (message_id, _ts(created_at), race_id, server_id, channel_id, kind.value),
            )
            return MessageSlot(
                message_id=message_id,
                created_at=created_at,
                race_id=race_id,
                server_id=server_id,
                channel_id=channel_id,
                kind=kind,
            )

    def list_message_slots(self, race_id: int, kind: SlotKind) -> List[MessageSlot]:
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM messages
                WHERE race_id=? AND channel_type=?
                ORDER BY message_datetime ASC, message_id ASC
                """,
                (race_id, kind.value),
            ).fetchall()
            return [self._slot_from_row(row) for row in rows]

    def delete_message_slot(self, message_id: int) -> None:
        with self._session() as conn:
            conn.execute("DELETE FROM messages WHERE message_id=?", (message_id,))
