"""
Vibes Assistant — Language model operations.

Every prompt the bot sends lives here. Free-text generators return a
`Generation`: either usable text, or a rejection reason when the model
signals the input was not useful (it is told to answer with an `[ERROR]`
line in that case). Transport/API failures are not caught here; they
propagate to the caller.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ValidationError

from vibes.core.llm import complete, complete_with_image
from vibes.core.transcriber import transcribe_audio
from vibes.data.models import DailyPlan, EventRating

logger = logging.getLogger(__name__)

ERROR_MARKER = "[ERROR]"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Generation:
    """Outcome of a free-text generation call."""

    text: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, text: str) -> Generation:
        return cls(text=text)

    @classmethod
    def rejected(cls, reason: str) -> Generation:
        return cls(error=reason)


class Intent(str, Enum):
    PLAN = "plan"
    SET_ENERGY = "set_energy"
    CHECK_CALENDAR = "check_calendar"
    ACTIVATE_CALENDAR = "activate_calendar"
    ABOUT = "about"
    GENERAL_CHAT = "general_chat"
    UNKNOWN = "unknown"


class ExtractedEvent(BaseModel):
    """First concrete, timed activity found in a plan.

    JSON example:
    {
        "found": true,
        "title": "Deep work on report",
        "start": "2025-08-17T10:00",
        "end": "2025-08-17T12:00"
    }
    """
    found: bool = False
    title: str = ""
    start: datetime | None = None
    end: datetime | None = None


# ---------------------------------------------------------------------------
# Response cleaning
# ---------------------------------------------------------------------------

def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code block delimiters from LLM's raw response."""
    cleaned_text = raw_text.strip()
    if cleaned_text.startswith("```json"):
        cleaned_text = cleaned_text.removeprefix("```json")
    elif cleaned_text.startswith("```"):
        cleaned_text = cleaned_text.removeprefix("```")
    if cleaned_text.endswith("```"):
        cleaned_text = cleaned_text.removesuffix("```")
    return cleaned_text.strip()


def _to_generation(raw_text: str | None, operation: str) -> Generation:
    text = (raw_text or "").strip()
    if not text:
        logger.warning("%s: model returned an empty response", operation)
        return Generation.rejected("empty")
    if text.startswith(ERROR_MARKER):
        reason = text.removeprefix(ERROR_MARKER).strip() or "rejected"
        logger.warning("%s: model rejected input (%s)", operation, reason)
        return Generation.rejected(reason)
    return Generation.success(text)


def _format_events(events: list[dict]) -> str:
    if not events:
        return "(no calendar events)"
    return "\n".join(
        f"- {e.get('start_time', '?')} → {e.get('end_time', '?')}: {e.get('summary', '(no title)')}"
        for e in events
    )


def _format_memory(plans: list[DailyPlan], ratings: list[EventRating]) -> str:
    lines = []
    for p in plans:
        lines.append(f"Plan for {p.plan_date}:\n{p.plan_text}")
    if ratings:
        lines.append("Event vibes:")
        lines.extend(f"- {r.event_summary}: {r.vibe.value}" for r in ratings)
    return "\n\n".join(lines) if lines else "(no history yet)"


# ---------------------------------------------------------------------------
# Intent classification
# ---------------------------------------------------------------------------

_INTENT_PROMPT = """\
You route messages for an energy and day-planning assistant bot.
Classify the user's message into exactly one label:

plan              : wants help planning the day, tasks, schedule
set_energy        : wants to log or talk about their current energy level
check_calendar    : wants to see their calendar / upcoming events
activate_calendar : wants to connect or link their Google Calendar
about             : asks what the bot is or what it can do
general_chat      : small talk, greetings, unrelated chatter
unknown           : none of the above

Return ONLY the label. No punctuation, no explanation.
"""


async def classify_intent(text: str) -> Intent:
    raw = await complete(_INTENT_PROMPT, text, max_tokens=10)
    label = _clean_llm_response(raw or "").lower().strip(" .`'\"")
    try:
        intent = Intent(label)
    except ValueError:
        logger.warning("Unrecognized intent label: '%s'", label)
        intent = Intent.UNKNOWN
    logger.info("Intent classified: %s", intent.value)
    return intent


# ---------------------------------------------------------------------------
# Plans and insights
# ---------------------------------------------------------------------------

_MORNING_PLAN_PROMPT = """\
You are an energy-aware day planner. Build a realistic plan for today that
protects the user's energy: put demanding work at their likely peak, add
short recovery breaks, and respect existing calendar events.

Energy right now (self-reported label): {energy}
Sleep last night (user's words): {sleep}
Existing calendar events:
{events}

Format: a short Markdown list with times, then one line of advice.
Reply in the same language as the user's tasks.
If the tasks message contains no tasks at all, reply with exactly:
[ERROR] no tasks
"""

_PLAN_FROM_TEXT_PROMPT = """\
You are an energy-aware day planner. Turn the user's schedule or task list
into a structured plan for today. Use their history: events they rated
"drain" need a recovery break after them, "energize" events are good
anchors for hard work.

Existing calendar events:
{events}

History:
{memory}

Format: a short Markdown list with times, then one line of advice.
Reply in the same language as the user's message.
If the message contains no tasks or schedule at all, reply with exactly:
[ERROR] no tasks
"""

_RETRO_PROMPT = """\
The user shares sleep hours and step counts for the last couple of days.
Give 2-3 short, specific insights about how this likely affects their
energy today and one concrete suggestion. Be warm and brief.
Reply in the same language as the user.
If the message contains no sleep or activity data, reply with exactly:
[ERROR] no data
"""

_EVENING_PROMPT = """\
The user reflects on how their day went and rates their energy.
Reply with one or two warm sentences acknowledging it and one tiny
suggestion for tomorrow. Reply in the same language as the user.
If the message is unrelated to their day or energy, reply with exactly:
[ERROR] irrelevant
"""

_CHAT_PROMPT = """\
You are Vibes, a friendly assistant focused on energy and day planning.
Answer small talk briefly (one or two sentences) and gently steer the
conversation back to planning the day or checking energy.
Reply in the same language as the user.
"""


async def generate_morning_plan(
    energy: str | None, sleep: str | None, tasks: str, events: list[dict]
) -> Generation:
    system = _MORNING_PLAN_PROMPT.format(
        energy=energy or "unknown",
        sleep=sleep or "unknown",
        events=_format_events(events),
    )
    raw = await complete(system, tasks, max_tokens=1024)
    return _to_generation(raw, "generate_morning_plan")


async def generate_plan_from_text(
    text: str,
    events: list[dict],
    recent_plans: list[DailyPlan],
    recent_ratings: list[EventRating],
) -> Generation:
    system = _PLAN_FROM_TEXT_PROMPT.format(
        events=_format_events(events),
        memory=_format_memory(recent_plans, recent_ratings),
    )
    raw = await complete(system, text, max_tokens=1024)
    return _to_generation(raw, "generate_plan_from_text")


async def generate_retro_insight(text: str) -> Generation:
    raw = await complete(_RETRO_PROMPT, text, max_tokens=512)
    return _to_generation(raw, "generate_retro_insight")


async def generate_evening_reflection(text: str) -> Generation:
    raw = await complete(_EVENING_PROMPT, text, max_tokens=256)
    return _to_generation(raw, "generate_evening_reflection")


async def general_chat_reply(text: str) -> Generation:
    raw = await complete(_CHAT_PROMPT, text, max_tokens=256)
    return _to_generation(raw, "general_chat_reply")


# ---------------------------------------------------------------------------
# Media
# ---------------------------------------------------------------------------

_SCHEDULE_IMAGE_PROMPT = """\
You read photos of schedules, to-do lists, planners and handwritten notes.
Transcribe every task or appointment you can see as a plain list, one per
line, keeping times where present. Do not add anything that is not in
the image.
If the image has nothing to do with schedules or tasks, reply with exactly:
[ERROR] irrelevant
If it looks like a schedule but you cannot read it, reply with exactly:
[ERROR] unreadable
"""


async def recognize_schedule_from_image(image: bytes, mime_type: str = "image/jpeg") -> Generation:
    raw = await complete_with_image(
        _SCHEDULE_IMAGE_PROMPT, "Transcribe this schedule.", image, mime_type
    )
    return _to_generation(raw, "recognize_schedule_from_image")


async def transcribe(data: bytes, mime_type: str = "audio/ogg") -> str:
    return await transcribe_audio(data, mime_type)


# ---------------------------------------------------------------------------
# Timezones
# ---------------------------------------------------------------------------

_TIMEZONE_PROMPT = """\
Convert the user's answer (a city, country, or UTC offset) into a single
IANA timezone identifier such as Europe/Moscow or America/New_York.
For a bare offset like UTC+3 return the matching Etc/GMT zone, remembering
that Etc/GMT signs are inverted (UTC+3 → Etc/GMT-3).
Return ONLY the identifier. If you cannot tell, return exactly: UNKNOWN
"""

_OFFSET_RE = re.compile(r"^(?:utc|gmt)\s*([+-])\s*(\d{1,2})$", re.IGNORECASE)


def _valid_zone(name: str) -> str | None:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return None
    return name


def _zone_from_offset(text: str) -> str | None:
    m = _OFFSET_RE.match(text.strip())
    if not m:
        return None
    sign, hours = m.group(1), int(m.group(2))
    if hours == 0:
        return "UTC"
    if hours > 14:
        return None
    # Etc/GMT zones use POSIX signs: UTC+3 is Etc/GMT-3
    return f"Etc/GMT{'-' if sign == '+' else '+'}{hours}"


async def resolve_timezone(text: str) -> str | None:
    """Map free text to a valid IANA timezone name, or None."""
    direct = _zone_from_offset(text) or (_valid_zone(text.strip()) if "/" in text else None)
    if direct:
        return direct

    raw = await complete(_TIMEZONE_PROMPT, text, max_tokens=20)
    candidate = _clean_llm_response(raw or "").strip(" .`'\"")
    if not candidate or candidate.upper() == "UNKNOWN":
        logger.info("Could not resolve timezone from '%s'", text)
        return None
    resolved = _valid_zone(candidate) or _zone_from_offset(candidate)
    if resolved is None:
        logger.warning("Model returned invalid timezone '%s' for '%s'", candidate, text)
    return resolved


# ---------------------------------------------------------------------------
# Event extraction
# ---------------------------------------------------------------------------

_EXTRACT_EVENT_PROMPT = """\
Find the FIRST concrete activity with a specific start time in the plan below.
Today's date is {today}. Times are local to the user.

Return ONLY a JSON object:
{{"found": true, "title": "string", "start": "YYYY-MM-DDTHH:MM", "end": "YYYY-MM-DDTHH:MM"}}

- "end" may be null if the plan gives no end time.
- If there is no timed activity, return: {{"found": false}}
- No markdown, no explanation.
"""


async def extract_first_event(plan_text: str, tz_name: str | None = None) -> ExtractedEvent:
    tz = ZoneInfo(_valid_zone(tz_name or "UTC") or "UTC")
    today = datetime.now(tz).date()
    raw = await complete(
        _EXTRACT_EVENT_PROMPT.format(today=today.isoformat()), plan_text, max_tokens=200
    )
    cleaned = _clean_llm_response(raw or "")
    try:
        event = ExtractedEvent.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, ValidationError) as exc:
        logger.error("Failed to parse extracted event: %s, raw: '%s'", exc, cleaned)
        return ExtractedEvent(found=False)

    if not event.found or event.start is None or not event.title.strip():
        return ExtractedEvent(found=False)

    if event.start.tzinfo is None:
        event.start = event.start.replace(tzinfo=tz)
    if event.end is not None and event.end.tzinfo is None:
        event.end = event.end.replace(tzinfo=tz)
    if event.end is not None and event.end <= event.start:
        event.end = None
    return event


def local_today(tz_name: str | None) -> date:
    """Today's date in the user's timezone (UTC when unset or invalid)."""
    return datetime.now(ZoneInfo(_valid_zone(tz_name or "UTC") or "UTC")).date()
