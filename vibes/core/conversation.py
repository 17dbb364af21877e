"""
Vibes Assistant — Conversation service.

Per-user state machine behind the bot. Every inbound update and every
scheduled checkup goes through `ConversationService`, which loads the user,
picks a handler from (state, input kind, payload), calls the calendar /
LLM / chat gateways and persists the next state.

Rules that hold across all handlers:
- Commands win in any state and clear the current dialog first.
- A failed gateway call leaves state and context untouched; nothing is
  saved before the call that can fail.
- Updates for one user are processed one at a time (keyed asyncio.Lock),
  including scheduled checkups.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from vibes.core import assistant
from vibes.core.dialog import (
    EventRatingContext,
    MorningCheckupContext,
    event_key,
    is_idle,
    read_context,
    transition,
)
from vibes.core.inbound import Inbound, InputKind
from vibes.data.db import PlanDB, RatingDB, UserDB
from vibes.data.models import ConversationState, User, Vibe, is_today_utc, utc_now_iso
from vibes.ports.calendar_port import CalendarError, CalendarPort
from vibes.ports.chat_port import Button, ChatPort, Keyboard

logger = logging.getLogger(__name__)

S = ConversationState

# ---------------------------------------------------------------------------
# Callback payloads
# ---------------------------------------------------------------------------

CB_ONBOARDING_START = "onboarding_start"
CB_CALENDAR_CONNECT = "calendar_connect"
CB_CALENDAR_SKIP = "calendar_skip"
CB_RETRO_START = "retro_start"
CB_ENERGY_PREFIX = "energy_rating_"
CB_PLAN_ACCEPT = "plan_accept"
CB_PLAN_EDIT = "plan_edit"
CB_RATE_PREFIX = "rate_event_"
CB_DIALOG_CANCEL = "dialog_cancel"
CB_COMMAND_PLAN = "command_plan"
CB_COMMAND_CHECK_CALENDAR = "command_check_calendar"

ENERGY_LEVELS: dict[str, str] = {
    "low": "🪫 Low",
    "medium": "🙂 Medium",
    "high": "⚡ High",
    "very_high": "🚀 Very high",
}

VIBE_LABELS: dict[Vibe, str] = {
    Vibe.ENERGIZE: "⚡ Energized",
    Vibe.NEUTRAL: "😐 Neutral",
    Vibe.DRAIN: "🪫 Drained",
}

# States where free text is not expected; the user has buttons to press.
_BUTTON_ONLY_STATES = frozenset({
    S.ONBOARDING_AWAITING_START,
    S.AWAITING_MORNING_ENERGY_RATING,
    S.AWAITING_EVENT_RATING,
})

_ONBOARDING_STATES = frozenset({
    S.ONBOARDING_AWAITING_START,
    S.ONBOARDING_AWAITING_TIMEZONE,
})

# ---------------------------------------------------------------------------
# User-facing texts
# ---------------------------------------------------------------------------

MSG_APOLOGY = "Sorry, something went wrong on my side. Please try again in a moment."
MSG_BUTTON_EXPIRED = "This button is no longer active."
MSG_USE_BUTTONS = "Please pick one of the buttons above 👆 (or send /start to start over)."
MSG_UNSUPPORTED = "Sorry, I don't know how to answer that yet."
MSG_ASK_TIMEZONE = (
    "Great! Tell me your city or timezone, or send it as UTC+X (for example, UTC+3)."
)
MSG_TIMEZONE_RETRY = (
    "I couldn't work out your timezone from that. Try a city name (Moscow, "
    "Berlin, New York) or an offset like UTC+3."
)
MSG_RETRO_PROMPT = (
    "Want to share your sleep and steps for the previous 2 days? Then I can "
    "send you insights right away.\n\n"
    "Just write it freely, e.g. 'Day before yesterday slept 6h, 5000 steps. "
    "Yesterday 8h, 10000 steps'."
)
MSG_RETRO_RETRY = (
    "I couldn't find sleep or step data in that. Try something like "
    "'Yesterday 7h sleep, 8000 steps'."
)
MSG_ASK_SLEEP = "Got it. And roughly how many hours did you sleep last night?"
MSG_ASK_TASKS = "Great. What's on for today? Name 1-3 must-do things."
MSG_TASKS_RETRY = "I couldn't find any tasks in that. Name 1-3 things you need to get done today."
MSG_PLAN_PROMPT = "Send a photo of your schedule or write your 1-3 main tasks, and I'll build a plan."
MSG_PLAN_WORKING = "Got it! Checking your calendar and putting together the best plan for today. One moment..."
MSG_PLAN_EDIT = "Okay, let's adjust it. Tell me what you'd like to change, or just send a new task list."
MSG_PLAN_SAVED = (
    "Plan accepted and saved! I'll be around to help during the day. 😉"
)
MSG_PHOTO_REDIRECT = "Thanks for the photo! If you want a plan from it, send /plan first."
MSG_PHOTO_WORKING = "Got the photo! Reading it now... 🤖"
MSG_PHOTO_IRRELEVANT = (
    "That doesn't look like a schedule or task list. Send a photo of your "
    "planner, or just type your tasks."
)
MSG_PHOTO_UNREADABLE = (
    "I couldn't read the schedule clearly. Try a sharper photo, or type your tasks."
)
MSG_VOICE_FAILED = "Sorry, I couldn't make out that voice message. Could you try again or type it?"
MSG_ENERGY_PROMPT = "Quick check: how's your energy right now?"
MSG_EVENING_NO_EVENTS = (
    "Looks like there was nothing in your calendar today. How did your day go "
    "overall? Tell me how your energy is, from 1 to 10."
)
MSG_EVENING_THANKS = "Thanks for sharing! Rest well, and see you tomorrow. 🌙"
MSG_RATING_DONE = "Thanks! The day is wrapped up. Have a great evening!"
MSG_CANCELLED = "Okay, cancelled. Send /plan or /energy whenever you're ready."
MSG_CALENDAR_NOT_CONNECTED = (
    "Your Google Calendar isn't connected yet. Use /connect_calendar first."
)
MSG_CALENDAR_FETCHING = "🔍 Fetching your upcoming events..."
MSG_CALENDAR_EMPTY = "✅ No upcoming events in your calendar."
MSG_CALENDAR_FAILED = (
    "I couldn't reach your calendar. Access may have expired; try /connect_calendar again."
)
MSG_CONNECT_CALENDAR = (
    "To take your schedule into account I need access to your Google Calendar."
)
MSG_CALENDAR_CONNECTED = "✅ Google Calendar connected! What would you like to do next?"
MSG_ONBOARDING_DONE = (
    "All set! I'll check in with you every morning and evening. "
    "Send /plan any time to plan your day."
)
MSG_CHAT_FALLBACK = "I'm here to help with planning and energy. Let's focus on that!"
MSG_HELP = (
    "I'm not sure what you mean. You can ask me to plan your day (/plan), "
    "check your calendar (/check_calendar) or log your energy (/energy)."
)
MSG_ABOUT = (
    "I'm Vibes 🌿 I help you plan days that fit your energy.\n\n"
    "/plan: build a plan from a photo or a task list\n"
    "/energy: quick energy check\n"
    "/connect_calendar: link Google Calendar\n"
    "/check_calendar: see upcoming events\n\n"
    "Every morning and evening I'll check in to see how you're doing."
)


def _welcome_text(user: User) -> str:
    return (
        f"{user.first_name or 'Hi'}! I'll help you plan your day so your energy "
        "lasts for what matters and you don't burn out. Let's take 30 seconds "
        "to set up your timezone."
    )


# ---------------------------------------------------------------------------
# Keyboards
# ---------------------------------------------------------------------------

def energy_keyboard() -> Keyboard:
    buttons = [Button(label, data=f"{CB_ENERGY_PREFIX}{key}") for key, label in ENERGY_LEVELS.items()]
    return [buttons[:2], buttons[2:]]


def vibe_keyboard(event_id: str) -> Keyboard:
    return [
        [Button(label, data=f"{CB_RATE_PREFIX}{event_key(event_id)}_{vibe.value}") for vibe, label in VIBE_LABELS.items()],
        [Button("Skip the rest", data=CB_DIALOG_CANCEL)],
    ]


def plan_keyboard() -> Keyboard:
    return [[
        Button("✅ Accept", data=CB_PLAN_ACCEPT),
        Button("✏️ Edit", data=CB_PLAN_EDIT),
    ]]


def _format_event_line(event: dict) -> str:
    start = event.get("start_time", "")
    try:
        when = datetime.fromisoformat(start)
        label = when.strftime("%a %d %b, %H:%M") if "T" in start else when.strftime("%a %d %b (all day)")
    except ValueError:
        label = start
    return f"• {label}: {event.get('summary', '(no title)')}"


_Handler = Callable[[User, int], Awaitable[None]]


class ConversationService:
    """State machine orchestrating chat, calendar, LLM and storage."""

    def __init__(
        self,
        chat: ChatPort,
        calendar: CalendarPort,
        users: UserDB,
        plans: PlanDB,
        ratings: RatingDB,
    ) -> None:
        self._chat = chat
        self._calendar = calendar
        self._users = users
        self._plans = plans
        self._ratings = ratings
        self._locks: defaultdict[int, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._commands: dict[str, _Handler] = {
            "/start": self._cmd_start,
            "/plan": self._cmd_plan,
            "/energy": self._cmd_energy,
            "/connect_calendar": self._cmd_connect_calendar,
            "/check_calendar": self._cmd_check_calendar,
            "/about": self._cmd_about,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def handle(self, inbound: Inbound) -> None:
        """Process one inbound update. Never raises."""
        sender = inbound.sender
        async with self._locks[sender.telegram_id]:
            try:
                user = self._users.get_or_create_user(
                    sender.telegram_id,
                    first_name=sender.first_name,
                    last_name=sender.last_name,
                    username=sender.username,
                    language_code=sender.language_code,
                )
                user.last_seen_at = utc_now_iso()
                self._users.mark_seen(user.telegram_id, user.last_seen_at)
                await self._dispatch(user, inbound)
            except Exception:
                logger.exception(
                    "Failed to handle %s update from user %d", inbound.kind.value, sender.telegram_id
                )
                await self._apologize(inbound)

    async def start_morning_checkup(self, user: User) -> bool:
        """Send the morning energy check. Returns False if already sent today."""
        async with self._locks[user.telegram_id]:
            user = self._users.get_user(user.telegram_id) or user
            if is_today_utc(user.last_morning_checkup_sent_at):
                return False

            # Stamp before sending: a crash after this point skips the checkup
            # instead of duplicating it.
            user.last_morning_checkup_sent_at = utc_now_iso()
            self._users.save_user(user)

            # The dialog state is saved only once the buttons are on screen.
            await self._chat.send_message(
                user.telegram_id,
                f"Good morning, {user.display_name}! Energy scan: how are you feeling right now?",
                energy_keyboard(),
            )
            transition(user, S.AWAITING_MORNING_ENERGY_RATING, MorningCheckupContext())
            self._users.save_user(user)
            logger.info("Morning checkup sent to user %d", user.telegram_id)
            return True

    async def start_evening_checkup(self, user: User) -> bool:
        """Start the evening wrap-up. Returns False if already sent today."""
        async with self._locks[user.telegram_id]:
            user = self._users.get_user(user.telegram_id) or user
            if is_today_utc(user.last_evening_checkup_sent_at):
                return False

            user.last_evening_checkup_sent_at = utc_now_iso()
            self._users.save_user(user)

            tz_name = user.timezone or "UTC"
            try:
                events = await self._calendar.list_events_for_date(
                    user.calendar_refresh_token, assistant.local_today(tz_name), tz_name
                )
            except CalendarError as exc:
                logger.warning("Evening checkup for user %d without events: %s", user.telegram_id, exc)
                events = []

            pending = {
                e["id"]: e.get("summary") or "(no title)"
                for e in events
                if e.get("id") and not self._ratings.has_rating(user.id, e["id"])
            }

            if not pending:
                await self._chat.send_message(user.telegram_id, MSG_EVENING_NO_EVENTS)
                transition(user, S.AWAITING_EVENING_ENERGY_RATING)
            else:
                ctx = EventRatingContext(pending=pending)
                first_id, first_summary = ctx.next_event()
                await self._chat.send_message(
                    user.telegram_id,
                    f'Let\'s wrap up the day. How did "{first_summary}" feel?',
                    vibe_keyboard(first_id),
                )
                transition(user, S.AWAITING_EVENT_RATING, ctx)
            self._users.save_user(user)
            logger.info("Evening checkup sent to user %d (%d events)", user.telegram_id, len(pending))
            return True

    async def complete_calendar_connection(self, telegram_id: int, code: str) -> User:
        """Finish the OAuth redirect: store the refresh token and notify the user.

        Raises:
            LookupError: If the Telegram ID is not a known user.
            CalendarError: If the code exchange fails.
        """
        async with self._locks[telegram_id]:
            user = self._users.get_user(telegram_id)
            if user is None:
                raise LookupError(f"Unknown user {telegram_id}")

            user.calendar_refresh_token = await self._calendar.exchange_code(code)
            if not user.onboarding_completed:
                user.onboarding_completed = True
            if user.state is S.ONBOARDING_AWAITING_START:
                transition(user, S.NONE)
            self._users.save_user(user)
            logger.info("Google Calendar connected for user %d", telegram_id)

            await self._chat.send_message(
                telegram_id,
                MSG_CALENDAR_CONNECTED,
                [
                    [Button("📅 Check calendar", data=CB_COMMAND_CHECK_CALENDAR)],
                    [Button("🗓 Plan my day", data=CB_COMMAND_PLAN)],
                ],
            )
            return user

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, user: User, inbound: Inbound) -> None:
        if inbound.kind is InputKind.CALLBACK:
            await self._on_callback(user, inbound)
        elif inbound.kind is InputKind.PHOTO:
            await self._on_photo(user, inbound)
        elif inbound.kind is InputKind.VOICE:
            await self._on_voice(user, inbound)
        elif inbound.kind is InputKind.TEXT:
            command = inbound.command
            if command in self._commands:
                await self._run_command(user, inbound.chat_id, command)
            else:
                await self._on_text(user, inbound.chat_id, inbound.text or "")
        else:
            await self._chat.send_message(inbound.chat_id, MSG_UNSUPPORTED)

    async def _run_command(self, user: User, chat_id: int, command: str) -> None:
        if not is_idle(user):
            logger.info("User %d left %s via %s", user.telegram_id, user.state.value, command)
            transition(user, S.NONE)
        await self._commands[command](user, chat_id)

    async def _on_text(self, user: User, chat_id: int, text: str) -> None:
        state = user.state
        if state is S.ONBOARDING_AWAITING_TIMEZONE:
            await self._on_timezone(user, chat_id, text)
        elif state is S.AWAITING_RETRO_DATA:
            await self._on_retro_data(user, chat_id, text)
        elif state is S.AWAITING_MORNING_SLEEP_HOURS:
            await self._on_sleep_hours(user, chat_id, text)
        elif state is S.AWAITING_MORNING_PLANS:
            await self._on_morning_plans(user, chat_id, text)
        elif state is S.AWAITING_SCHEDULE_PHOTO_OR_TEXT:
            await self._on_schedule_text(user, chat_id, text)
        elif state is S.AWAITING_EVENING_ENERGY_RATING:
            await self._on_evening_reflection(user, chat_id, text)
        elif state in _BUTTON_ONLY_STATES:
            await self._chat.send_message(chat_id, MSG_USE_BUTTONS)
        else:
            await self._on_free_text(user, chat_id, text)

    async def _apologize(self, inbound: Inbound) -> None:
        try:
            if inbound.kind is InputKind.CALLBACK and inbound.callback_id:
                await self._chat.answer_callback(inbound.callback_id)
            await self._chat.send_message(inbound.chat_id, MSG_APOLOGY)
        except Exception as exc:
            logger.error("Could not deliver apology to chat %d: %s", inbound.chat_id, exc)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def _cmd_start(self, user: User, chat_id: int) -> None:
        if user.onboarding_completed:
            transition(user, S.NONE)
            self._users.save_user(user)
            await self._chat.send_message(
                chat_id,
                f"Welcome back, {user.display_name}! Send /plan to plan your day or /energy for a quick check.",
            )
            return

        transition(user, S.ONBOARDING_AWAITING_START)
        self._users.save_user(user)
        await self._chat.send_message(
            chat_id,
            _welcome_text(user),
            [
                [Button("🚀 Let's start", data=CB_ONBOARDING_START)],
                [Button("📅 Connect Google Calendar", data=CB_CALENDAR_CONNECT)],
            ],
        )

    async def _cmd_plan(self, user: User, chat_id: int) -> None:
        transition(user, S.AWAITING_SCHEDULE_PHOTO_OR_TEXT)
        self._users.save_user(user)
        await self._chat.send_message(
            chat_id, MSG_PLAN_PROMPT, [[Button("Cancel", data=CB_DIALOG_CANCEL)]]
        )

    async def _cmd_energy(self, user: User, chat_id: int) -> None:
        transition(user, S.AWAITING_MORNING_ENERGY_RATING, MorningCheckupContext())
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_ENERGY_PROMPT, energy_keyboard())

    async def _cmd_connect_calendar(self, user: User, chat_id: int) -> None:
        self._users.save_user(user)
        await self._send_auth_link(user, chat_id)

    async def _cmd_check_calendar(self, user: User, chat_id: int) -> None:
        self._users.save_user(user)
        if not user.calendar_connected:
            await self._chat.send_message(chat_id, MSG_CALENDAR_NOT_CONNECTED)
            return

        await self._chat.send_message(chat_id, MSG_CALENDAR_FETCHING)
        try:
            events = await self._calendar.list_upcoming_events(user.calendar_refresh_token, 10)
        except CalendarError as exc:
            logger.error("Calendar check failed for user %d: %s", user.telegram_id, exc)
            await self._chat.send_message(chat_id, MSG_CALENDAR_FAILED)
            return

        if not events:
            await self._chat.send_message(chat_id, MSG_CALENDAR_EMPTY)
            return
        lines = ["🗓 Your upcoming events:", ""]
        lines.extend(_format_event_line(e) for e in events)
        await self._chat.send_message(chat_id, "\n".join(lines))

    async def _cmd_about(self, user: User, chat_id: int) -> None:
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_ABOUT)

    async def _send_auth_link(self, user: User, chat_id: int) -> None:
        url = self._calendar.generate_auth_url(user.telegram_id)
        await self._chat.send_message(
            chat_id,
            MSG_CONNECT_CALENDAR,
            [[Button("🔗 Connect Google Calendar", url=url)]],
        )

    # ------------------------------------------------------------------
    # Free text by state
    # ------------------------------------------------------------------

    async def _on_timezone(self, user: User, chat_id: int, text: str) -> None:
        tz_name = await assistant.resolve_timezone(text)
        if tz_name is None:
            await self._chat.send_message(chat_id, MSG_TIMEZONE_RETRY)
            return

        user.timezone = tz_name
        user.onboarding_completed = True
        transition(user, S.NONE)
        self._users.save_user(user)
        await self._chat.send_message(
            chat_id,
            f"Done! Your timezone is set to {tz_name}.\n\n"
            "Want to connect Google Calendar so I can plan around your meetings?",
            [
                [Button("📅 Connect Google Calendar", data=CB_CALENDAR_CONNECT)],
                [Button("Maybe later", data=CB_CALENDAR_SKIP)],
            ],
        )

    async def _on_retro_data(self, user: User, chat_id: int, text: str) -> None:
        result = await assistant.generate_retro_insight(text)
        if not result.ok:
            await self._chat.send_message(chat_id, MSG_RETRO_RETRY)
            return
        transition(user, S.NONE)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, result.text, markdown=True)

    async def _on_sleep_hours(self, user: User, chat_id: int, text: str) -> None:
        ctx = read_context(user)
        ctx.sleep_hours = text.strip()
        transition(user, S.AWAITING_MORNING_PLANS, ctx)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_ASK_TASKS)

    async def _on_morning_plans(self, user: User, chat_id: int, text: str) -> None:
        ctx = read_context(user)
        events = await self._calendar.list_upcoming_events(user.calendar_refresh_token, 5)
        result = await assistant.generate_morning_plan(ctx.energy_rating, ctx.sleep_hours, text, events)
        if not result.ok:
            await self._chat.send_message(chat_id, MSG_TASKS_RETRY)
            return
        await self._present_plan(user, chat_id, result.text)

    async def _on_schedule_text(self, user: User, chat_id: int, text: str) -> None:
        await self._chat.send_message(chat_id, MSG_PLAN_WORKING)
        events = await self._calendar.list_upcoming_events(user.calendar_refresh_token, 10)
        recent_plans = self._plans.recent_plans(user.id, 3)
        recent_ratings = self._ratings.recent_ratings(user.id, 10)
        result = await assistant.generate_plan_from_text(text, events, recent_plans, recent_ratings)
        if not result.ok:
            await self._chat.send_message(chat_id, MSG_TASKS_RETRY)
            return
        await self._present_plan(user, chat_id, result.text)

    async def _present_plan(self, user: User, chat_id: int, plan_text: str) -> None:
        transition(user, S.NONE)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, plan_text, plan_keyboard(), markdown=True)

    async def _on_evening_reflection(self, user: User, chat_id: int, text: str) -> None:
        result = await assistant.generate_evening_reflection(text)
        transition(user, S.NONE)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, result.text if result.ok else MSG_EVENING_THANKS)

    async def _on_free_text(self, user: User, chat_id: int, text: str) -> None:
        intent = await assistant.classify_intent(text)
        if intent is assistant.Intent.PLAN:
            await self._run_command(user, chat_id, "/plan")
        elif intent is assistant.Intent.SET_ENERGY:
            await self._run_command(user, chat_id, "/energy")
        elif intent is assistant.Intent.CHECK_CALENDAR:
            await self._run_command(user, chat_id, "/check_calendar")
        elif intent is assistant.Intent.ACTIVATE_CALENDAR:
            await self._run_command(user, chat_id, "/connect_calendar")
        elif intent is assistant.Intent.ABOUT:
            await self._run_command(user, chat_id, "/about")
        elif intent is assistant.Intent.GENERAL_CHAT:
            result = await assistant.general_chat_reply(text)
            await self._chat.send_message(chat_id, result.text if result.ok else MSG_CHAT_FALLBACK)
        else:
            await self._chat.send_message(chat_id, MSG_HELP)

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def _on_photo(self, user: User, inbound: Inbound) -> None:
        chat_id = inbound.chat_id
        if user.state is not S.AWAITING_SCHEDULE_PHOTO_OR_TEXT:
            await self._chat.send_message(chat_id, MSG_PHOTO_REDIRECT)
            return

        await self._chat.send_message(chat_id, MSG_PHOTO_WORKING)
        image = await self._chat.download_file(inbound.file_id)
        result = await assistant.recognize_schedule_from_image(image, inbound.mime_type or "image/jpeg")
        if not result.ok:
            reply = MSG_PHOTO_IRRELEVANT if "irrelevant" in result.error.lower() else MSG_PHOTO_UNREADABLE
            await self._chat.send_message(chat_id, reply)
            return

        await self._chat.send_message(
            chat_id,
            f"Here's what I see:\n\n{result.text}\n\n"
            "If that's right, send it back to me as a message (fix anything I got "
            "wrong) and I'll build your plan.",
        )

    async def _on_voice(self, user: User, inbound: Inbound) -> None:
        chat_id = inbound.chat_id
        try:
            data = await self._chat.download_file(inbound.file_id)
            text = await assistant.transcribe(data, inbound.mime_type or "audio/ogg")
        except Exception as exc:
            logger.error("Voice transcription failed for user %d: %s", user.telegram_id, exc)
            await self._chat.send_message(chat_id, MSG_VOICE_FAILED)
            return

        if not text:
            await self._chat.send_message(chat_id, MSG_VOICE_FAILED)
            return
        await self._chat.send_message(chat_id, f'🎙 I heard: "{text}"')
        await self._dispatch(
            user, replace(inbound, kind=InputKind.TEXT, text=text, file_id=None, mime_type=None)
        )

    # ------------------------------------------------------------------
    # Buttons
    # ------------------------------------------------------------------

    async def _on_callback(self, user: User, inbound: Inbound) -> None:
        data = inbound.text or ""
        handler = self._match_callback(user, inbound, data)
        if handler is None:
            logger.info("Expired button '%s' pressed by user %d in %s", data, user.telegram_id, user.state.value)
            await self._chat.answer_callback(inbound.callback_id, MSG_BUTTON_EXPIRED)
            return

        await self._chat.answer_callback(inbound.callback_id)
        if inbound.message_id is not None:
            await self._chat.clear_buttons(inbound.chat_id, inbound.message_id)
        await handler()

    def _match_callback(
        self, user: User, inbound: Inbound, data: str
    ) -> Callable[[], Awaitable[None]] | None:
        """Pick the handler for a button payload, or None if it is stale."""
        chat_id = inbound.chat_id

        if data == CB_ONBOARDING_START:
            if user.state is S.ONBOARDING_AWAITING_START:
                return lambda: self._cb_onboarding_start(user, chat_id)
        elif data == CB_CALENDAR_CONNECT:
            return lambda: self._cb_calendar_connect(user, chat_id)
        elif data == CB_CALENDAR_SKIP:
            return lambda: self._cb_calendar_skip(user, chat_id)
        elif data == CB_RETRO_START:
            return lambda: self._cb_retro_start(user, chat_id)
        elif data.startswith(CB_ENERGY_PREFIX):
            level = data.removeprefix(CB_ENERGY_PREFIX)
            if user.state is S.AWAITING_MORNING_ENERGY_RATING and level in ENERGY_LEVELS:
                return lambda: self._cb_energy(user, chat_id, level)
        elif data == CB_PLAN_ACCEPT:
            if inbound.message_text:
                return lambda: self._cb_plan_accept(user, chat_id, inbound.message_text)
        elif data == CB_PLAN_EDIT:
            return lambda: self._cb_plan_edit(user, chat_id)
        elif data.startswith(CB_RATE_PREFIX):
            key, _, raw_vibe = data.removeprefix(CB_RATE_PREFIX).rpartition("_")
            vibe = Vibe.parse(raw_vibe)
            if user.state is S.AWAITING_EVENT_RATING and vibe is not None:
                ctx = read_context(user)
                event_id = ctx.resolve(key)
                if event_id is not None:
                    return lambda: self._cb_rate_event(user, inbound, ctx, event_id, vibe)
        elif data == CB_DIALOG_CANCEL:
            if not is_idle(user):
                return lambda: self._cb_cancel(user, chat_id)
        elif data == CB_COMMAND_PLAN:
            return lambda: self._run_command(user, chat_id, "/plan")
        elif data == CB_COMMAND_CHECK_CALENDAR:
            return lambda: self._run_command(user, chat_id, "/check_calendar")
        return None

    async def _cb_onboarding_start(self, user: User, chat_id: int) -> None:
        transition(user, S.ONBOARDING_AWAITING_TIMEZONE)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_ASK_TIMEZONE)

    async def _cb_calendar_connect(self, user: User, chat_id: int) -> None:
        if user.state in _ONBOARDING_STATES or not user.onboarding_completed:
            user.onboarding_completed = True
            # The start button went away with the cleared keyboard; the
            # timezone step can still be answered by text.
            if user.state is S.ONBOARDING_AWAITING_START:
                transition(user, S.NONE)
            self._users.save_user(user)
        await self._send_auth_link(user, chat_id)

    async def _cb_calendar_skip(self, user: User, chat_id: int) -> None:
        user.onboarding_completed = True
        transition(user, S.NONE)
        self._users.save_user(user)
        await self._chat.send_message(
            chat_id,
            MSG_ONBOARDING_DONE,
            [[Button("📊 Share my last 2 days", data=CB_RETRO_START)]],
        )

    async def _cb_retro_start(self, user: User, chat_id: int) -> None:
        transition(user, S.AWAITING_RETRO_DATA)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_RETRO_PROMPT)

    async def _cb_energy(self, user: User, chat_id: int, level: str) -> None:
        ctx = read_context(user)
        ctx.energy_rating = level
        transition(user, S.AWAITING_MORNING_SLEEP_HOURS, ctx)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_ASK_SLEEP)

    async def _cb_plan_accept(self, user: User, chat_id: int, plan_text: str) -> None:
        plan_date = assistant.local_today(user.timezone).isoformat()
        self._plans.add_plan(user.id, plan_date, plan_text)

        link = ""
        title = ""
        if user.calendar_connected:
            try:
                extracted = await assistant.extract_first_event(plan_text, user.timezone)
                if extracted.found:
                    end = extracted.end or extracted.start + timedelta(hours=1)
                    created = await self._calendar.create_event(
                        user.calendar_refresh_token,
                        extracted.title,
                        extracted.start,
                        end,
                        user.timezone or "UTC",
                    )
                    title = extracted.title
                    link = created.get("html_link", "")
            except Exception as exc:
                logger.error("Could not add plan event to calendar for user %d: %s", user.telegram_id, exc)

        text = MSG_PLAN_SAVED
        if link:
            text += f'\n\n📅 I added "{title}" to your calendar: {link}'
        await self._chat.send_message(chat_id, text)

    async def _cb_plan_edit(self, user: User, chat_id: int) -> None:
        transition(user, S.AWAITING_SCHEDULE_PHOTO_OR_TEXT)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_PLAN_EDIT)

    async def _cb_rate_event(
        self,
        user: User,
        inbound: Inbound,
        ctx: EventRatingContext,
        event_id: str,
        vibe: Vibe,
    ) -> None:
        summary = ctx.pending.pop(event_id)
        self._ratings.add_rating(user.id, event_id, summary, vibe)

        upcoming = ctx.next_event()
        if upcoming is None:
            transition(user, S.NONE)
            self._users.save_user(user)
            await self._chat.send_message(inbound.chat_id, MSG_RATING_DONE)
            return

        next_id, next_summary = upcoming
        transition(user, S.AWAITING_EVENT_RATING, ctx)
        self._users.save_user(user)
        text = f'Great. And how about "{next_summary}"?'
        if inbound.message_id is not None:
            await self._chat.edit_message(inbound.chat_id, inbound.message_id, text, vibe_keyboard(next_id))
        else:
            await self._chat.send_message(inbound.chat_id, text, vibe_keyboard(next_id))

    async def _cb_cancel(self, user: User, chat_id: int) -> None:
        transition(user, S.NONE)
        self._users.save_user(user)
        await self._chat.send_message(chat_id, MSG_CANCELLED)
