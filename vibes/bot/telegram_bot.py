"""
Vibes Assistant — Telegram Bot.

Telegram is the only user interface. This module turns python-telegram-bot
updates into transport-neutral `Inbound` objects and hands every one of
them to the ConversationService; all routing decisions live there.

Also registers the morning/evening checkup jobs on the PTB JobQueue.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.triggers.cron import CronTrigger
from telegram import Update
from telegram.ext import (
    Application,
    ApplicationBuilder,
    CallbackQueryHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from vibes.config import settings
from vibes.core.inbound import Inbound, InputKind, Sender

if TYPE_CHECKING:
    from vibes.core.conversation import ConversationService
    from vibes.core.scheduler import CheckupTrigger
    from vibes.data.db import PlanDB, RatingDB, UserDB
    from vibes.ports.calendar_port import CalendarPort

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Update → Inbound
# ---------------------------------------------------------------------------


def inbound_from_update(update: Update) -> Inbound | None:
    """Describe a Telegram update, or None if it has no user to answer."""
    tg_user = update.effective_user
    if tg_user is None:
        return None

    sender = Sender(
        telegram_id=tg_user.id,
        first_name=tg_user.first_name,
        last_name=tg_user.last_name,
        username=tg_user.username,
        language_code=tg_user.language_code,
    )

    query = update.callback_query
    if query is not None:
        msg = query.message
        return Inbound(
            kind=InputKind.CALLBACK,
            chat_id=msg.chat.id if msg is not None else tg_user.id,
            sender=sender,
            text=query.data,
            message_id=msg.message_id if msg is not None else None,
            message_text=getattr(msg, "text", None),
            callback_id=query.id,
        )

    msg = update.message
    if msg is None:
        return None
    chat_id = msg.chat.id

    if msg.text:
        return Inbound(kind=InputKind.TEXT, chat_id=chat_id, sender=sender,
                       text=msg.text, message_id=msg.message_id)
    if msg.photo:
        largest = msg.photo[-1]
        return Inbound(kind=InputKind.PHOTO, chat_id=chat_id, sender=sender,
                       file_id=largest.file_id, mime_type="image/jpeg",
                       message_id=msg.message_id)
    if msg.voice:
        return Inbound(kind=InputKind.VOICE, chat_id=chat_id, sender=sender,
                       file_id=msg.voice.file_id,
                       mime_type=msg.voice.mime_type or "audio/ogg",
                       message_id=msg.message_id)
    if msg.video_note:
        return Inbound(kind=InputKind.VOICE, chat_id=chat_id, sender=sender,
                       file_id=msg.video_note.file_id, mime_type="video/mp4",
                       message_id=msg.message_id)
    return Inbound(kind=InputKind.OTHER, chat_id=chat_id, sender=sender,
                   message_id=msg.message_id)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def handle_update(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Single entry for messages and button presses."""
    inbound = inbound_from_update(update)
    if inbound is None:
        logger.debug("Ignoring update %s without a user", update.update_id)
        return
    service: ConversationService = context.bot_data["service"]
    await service.handle(inbound)


async def handle_error(update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
    logger.error("Unhandled error while processing update %s: %s", update, context.error)


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def build_app(
    calendar: CalendarPort | None = None,
    user_db: UserDB | None = None,
    plan_db: PlanDB | None = None,
    rating_db: RatingDB | None = None,
) -> Application:
    """Build the Telegram Application and wire the conversation service.

    Args:
        calendar: Calendar port implementation. Defaults to GoogleCalendarAdapter.
        user_db, plan_db, rating_db: Storage. Default to DATABASE_PATH.
    """
    from vibes.adapters.telegram_chat import TelegramChat
    from vibes.core.conversation import ConversationService
    from vibes.core.scheduler import CheckupTrigger
    from vibes.data.db import PlanDB, RatingDB, UserDB

    # Per-user ordering is enforced by the service, so updates may run concurrently
    app = ApplicationBuilder().token(settings.TELEGRAM_BOT_TOKEN).concurrent_updates(True).build()

    if calendar is None:
        from vibes.adapters.google_calendar import GoogleCalendarAdapter
        calendar = GoogleCalendarAdapter()
    users = user_db or UserDB()

    service = ConversationService(
        chat=TelegramChat(app.bot),
        calendar=calendar,
        users=users,
        plans=plan_db or PlanDB(),
        ratings=rating_db or RatingDB(),
    )
    trigger = CheckupTrigger(service, users)

    # Stored in bot_data for handler and web access
    app.bot_data["service"] = service
    app.bot_data["trigger"] = trigger

    app.add_handler(CallbackQueryHandler(handle_update))
    app.add_handler(MessageHandler(filters.UpdateType.MESSAGE, handle_update))
    app.add_error_handler(handle_error)

    _setup_checkups(app, trigger)

    logger.info("Telegram bot application built with %d handlers", len(app.handlers[0]))
    return app


def _setup_checkups(app: Application, trigger: CheckupTrigger) -> None:
    """Register the morning and evening checkup cron jobs (UTC)."""
    if app.job_queue is None:
        logger.warning("JobQueue unavailable; install python-telegram-bot[job-queue]")
        return

    async def _morning_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await trigger.run_morning()

    async def _evening_job_callback(context: ContextTypes.DEFAULT_TYPE) -> None:
        await trigger.run_evening()

    for name, callback, expr in (
        ("morning_checkup", _morning_job_callback, settings.MORNING_CHECKUP_CRON),
        ("evening_checkup", _evening_job_callback, settings.EVENING_CHECKUP_CRON),
    ):
        app.job_queue.run_custom(
            callback,
            job_kwargs={
                "trigger": CronTrigger.from_crontab(expr, timezone="UTC"),
                "max_instances": 1,
                "coalesce": True,
            },
            name=name,
        )
        logger.info("%s scheduled with cron '%s' (UTC)", name, expr)
