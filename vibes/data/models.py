"""
Vibes Assistant — Data Models.

Users carry the conversation state machine: `state` says what input is
expected next and `context` holds the JSON blob for the current dialog only.
Plans and event ratings are append-only history used as LLM "memory".
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class ConversationState(str, Enum):
    """What the bot expects from the user next."""

    NONE = "none"
    ONBOARDING_AWAITING_START = "onboarding_awaiting_start"
    ONBOARDING_AWAITING_TIMEZONE = "onboarding_awaiting_timezone"
    AWAITING_RETRO_DATA = "awaiting_retro_data"
    AWAITING_MORNING_ENERGY_RATING = "awaiting_morning_energy_rating"
    AWAITING_MORNING_SLEEP_HOURS = "awaiting_morning_sleep_hours"
    AWAITING_MORNING_PLANS = "awaiting_morning_plans"
    AWAITING_SCHEDULE_PHOTO_OR_TEXT = "awaiting_schedule_photo_or_text"
    AWAITING_EVENING_ENERGY_RATING = "awaiting_evening_energy_rating"
    AWAITING_EVENT_RATING = "awaiting_event_rating"
    # Legacy value kept readable for old rows; behaves like NONE.
    ONBOARDING_COMPLETED = "onboarding_completed"


class Vibe(str, Enum):
    """How a calendar event affected the user's energy."""

    ENERGIZE = "energize"
    NEUTRAL = "neutral"
    DRAIN = "drain"

    @classmethod
    def parse(cls, raw: str) -> Vibe | None:
        try:
            return cls(raw.strip().lower())
        except ValueError:
            return None


@dataclass
class User:
    """A Telegram user and their current dialog position."""

    id: int
    telegram_id: int
    first_name: str | None = None
    last_name: str | None = None
    username: str | None = None
    language_code: str = "en"
    timezone: str | None = None                 # IANA name, set during onboarding
    state: ConversationState = ConversationState.NONE
    context: str | None = None                  # JSON blob, see vibes.core.dialog
    onboarding_completed: bool = False
    calendar_refresh_token: str | None = None
    last_morning_checkup_sent_at: str | None = None   # ISO UTC timestamp
    last_evening_checkup_sent_at: str | None = None   # ISO UTC timestamp
    last_seen_at: str | None = None                   # ISO UTC timestamp
    created_at: str = ""

    @property
    def calendar_connected(self) -> bool:
        return bool(self.calendar_refresh_token)

    @property
    def display_name(self) -> str:
        return self.first_name or self.username or "there"


@dataclass
class DailyPlan:
    """A plan the user explicitly accepted. Never edited afterwards."""

    id: int
    user_id: int
    plan_date: str        # ISO date YYYY-MM-DD
    plan_text: str
    created_at: str = ""


@dataclass
class EventRating:
    """The vibe a user assigned to one calendar event."""

    id: int
    user_id: int
    event_id: str
    event_summary: str    # snapshot, so history renders without re-fetching
    vibe: Vibe
    rated_at: str = ""


def utc_now_iso() -> str:
    """Current UTC time in the ISO format every timestamp column uses."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def is_today_utc(stamp: str | None) -> bool:
    """True when an ISO timestamp falls on the current UTC date."""
    if not stamp:
        return False
    try:
        moment = datetime.fromisoformat(stamp)
    except ValueError:
        return False
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).date() == datetime.now(timezone.utc).date()
