"""
Vibes Assistant — SQLite storage.

Three tables share one database file: users (profile + conversation state),
daily_plans and event_ratings (both cascade-deleted with their user).
Every save of a user is a single UPDATE, so concurrent writers see
last-write-wins semantics and never a half-written record.
"""

from __future__ import annotations

import logging
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from vibes.data.models import (
    ConversationState,
    DailyPlan,
    EventRating,
    User,
    Vibe,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


class _SQLiteStore(ABC):
    """Connection handling shared by the table classes below."""

    def __init__(self, db_path: str | None = None) -> None:
        if db_path is None:
            from vibes.config import settings
            db_path = settings.DATABASE_PATH

        self._db_path = db_path
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @abstractmethod
    def _init_db(self) -> None:
        """Create tables and run migrations."""


class UserDB(_SQLiteStore):
    """SQLite-backed storage for bot users and their dialog state."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS users (
                    id                           INTEGER PRIMARY KEY AUTOINCREMENT,
                    telegram_id                  INTEGER NOT NULL UNIQUE,
                    first_name                   TEXT,
                    last_name                    TEXT,
                    username                     TEXT,
                    language_code                TEXT    NOT NULL DEFAULT 'en',
                    timezone                     TEXT,
                    state                        TEXT    NOT NULL DEFAULT 'none',
                    context                      TEXT,
                    onboarding_completed         INTEGER NOT NULL DEFAULT 0,
                    calendar_refresh_token       TEXT,
                    last_morning_checkup_sent_at TEXT,
                    last_evening_checkup_sent_at TEXT,
                    last_seen_at                 TEXT,
                    created_at                   TEXT    NOT NULL
                )
            """)
            # Migrate existing DBs: add new columns if missing
            existing_cols = {
                row[1] for row in conn.execute("PRAGMA table_info(users)").fetchall()
            }
            if "last_seen_at" not in existing_cols:
                conn.execute("ALTER TABLE users ADD COLUMN last_seen_at TEXT")
        logger.debug("Users table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> User:
        try:
            state = ConversationState(row["state"])
        except ValueError:
            logger.warning(
                "Unknown state %r for user %d, resetting", row["state"], row["telegram_id"]
            )
            state = ConversationState.NONE
        return User(
            id=row["id"],
            telegram_id=row["telegram_id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            username=row["username"],
            language_code=row["language_code"],
            timezone=row["timezone"],
            state=state,
            context=row["context"] if state is not ConversationState.NONE else None,
            onboarding_completed=bool(row["onboarding_completed"]),
            calendar_refresh_token=row["calendar_refresh_token"],
            last_morning_checkup_sent_at=row["last_morning_checkup_sent_at"],
            last_evening_checkup_sent_at=row["last_evening_checkup_sent_at"],
            last_seen_at=row["last_seen_at"],
            created_at=row["created_at"],
        )

    def get_or_create_user(
        self,
        telegram_id: int,
        first_name: str | None = None,
        last_name: str | None = None,
        username: str | None = None,
        language_code: str | None = None,
    ) -> User:
        """Return the user for a Telegram ID, registering them on first contact."""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO users
                    (telegram_id, first_name, last_name, username, language_code, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (telegram_id, first_name, last_name, username,
                 language_code or "en", utc_now_iso()),
            )
            if cursor.rowcount:
                logger.info("User registered: %d '%s'", telegram_id, first_name or username)
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_id = ?", (telegram_id,)
            ).fetchone()
        return self._row_to_user(row)

    def get_user(self, telegram_id: int) -> User | None:
        """Fetch a user by Telegram ID."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE telegram_id = ?", (telegram_id,)
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def save_user(self, user: User) -> None:
        """Persist every mutable field of a user in one statement."""
        context = user.context if user.state is not ConversationState.NONE else None
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users SET
                    first_name = ?, last_name = ?, username = ?, language_code = ?,
                    timezone = ?, state = ?, context = ?, onboarding_completed = ?,
                    calendar_refresh_token = ?,
                    last_morning_checkup_sent_at = ?, last_evening_checkup_sent_at = ?,
                    last_seen_at = ?
                WHERE id = ?
                """,
                (
                    user.first_name, user.last_name, user.username, user.language_code,
                    user.timezone, user.state.value, context, int(user.onboarding_completed),
                    user.calendar_refresh_token,
                    user.last_morning_checkup_sent_at, user.last_evening_checkup_sent_at,
                    user.last_seen_at,
                    user.id,
                ),
            )

    def mark_seen(self, telegram_id: int, when: str | None = None) -> None:
        """Record user activity; feeds the evening checkup's eligibility query."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE users SET last_seen_at = ? WHERE telegram_id = ?",
                (when or utc_now_iso(), telegram_id),
            )

    def list_users(self) -> list[User]:
        """Every registered user, oldest first."""
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(r) for r in rows]

    def list_active_users(self, since: datetime) -> list[User]:
        """Onboarded users who interacted with the bot at or after `since`."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM users
                WHERE onboarding_completed = 1
                  AND last_seen_at IS NOT NULL
                  AND last_seen_at >= ?
                ORDER BY id
                """,
                (since.isoformat(timespec="seconds"),),
            ).fetchall()
        return [self._row_to_user(r) for r in rows]


class PlanDB(_SQLiteStore):
    """Accepted daily plans. Append-only."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS daily_plans (
                    id          INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id     INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    plan_date   TEXT    NOT NULL,
                    plan_text   TEXT    NOT NULL,
                    created_at  TEXT    NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS ix_daily_plans_user ON daily_plans(user_id, plan_date)"
            )
        logger.debug("Daily plans table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_plan(row: sqlite3.Row) -> DailyPlan:
        return DailyPlan(
            id=row["id"],
            user_id=row["user_id"],
            plan_date=row["plan_date"],
            plan_text=row["plan_text"],
            created_at=row["created_at"],
        )

    def add_plan(self, user_id: int, plan_date: str, plan_text: str) -> DailyPlan:
        now = utc_now_iso()
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT INTO daily_plans (user_id, plan_date, plan_text, created_at) VALUES (?, ?, ?, ?)",
                (user_id, plan_date, plan_text, now),
            )
            plan_id = cursor.lastrowid
        logger.info("Daily plan %d saved for user %d (%s)", plan_id, user_id, plan_date)
        return DailyPlan(
            id=plan_id, user_id=user_id, plan_date=plan_date,
            plan_text=plan_text, created_at=now,
        )

    def recent_plans(self, user_id: int, limit: int = 3) -> list[DailyPlan]:
        """Newest plans first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM daily_plans WHERE user_id = ? ORDER BY plan_date DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_plan(r) for r in rows]


class RatingDB(_SQLiteStore):
    """Event vibe ratings, at most one per (user, event)."""

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS event_ratings (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id        INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                    event_id       TEXT    NOT NULL,
                    event_summary  TEXT    NOT NULL,
                    vibe           TEXT    NOT NULL,
                    rated_at       TEXT    NOT NULL,
                    UNIQUE (user_id, event_id)
                )
            """)
        logger.debug("Event ratings table initialized at %s", self._db_path)

    @staticmethod
    def _row_to_rating(row: sqlite3.Row) -> EventRating:
        return EventRating(
            id=row["id"],
            user_id=row["user_id"],
            event_id=row["event_id"],
            event_summary=row["event_summary"],
            vibe=Vibe(row["vibe"]),
            rated_at=row["rated_at"],
        )

    def add_rating(
        self, user_id: int, event_id: str, event_summary: str, vibe: Vibe
    ) -> EventRating | None:
        """Store a rating. Returns None when this event was already rated."""
        now = utc_now_iso()
        with self._connect() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO event_ratings
                    (user_id, event_id, event_summary, vibe, rated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, event_id, event_summary, vibe.value, now),
            )
            if not cursor.rowcount:
                logger.info("Event %s already rated by user %d", event_id, user_id)
                return None
            rating_id = cursor.lastrowid
        return EventRating(
            id=rating_id, user_id=user_id, event_id=event_id,
            event_summary=event_summary, vibe=vibe, rated_at=now,
        )

    def has_rating(self, user_id: int, event_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM event_ratings WHERE user_id = ? AND event_id = ?",
                (user_id, event_id),
            ).fetchone()
        return row is not None

    def recent_ratings(self, user_id: int, limit: int = 10) -> list[EventRating]:
        """Newest ratings first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM event_ratings WHERE user_id = ? ORDER BY rated_at DESC, id DESC LIMIT ?",
                (user_id, limit),
            ).fetchall()
        return [self._row_to_rating(r) for r in rows]
