"""
Vibes Assistant — Daily checkup trigger.

Morning checkup: energy scan for every registered user.
Evening checkup: event-by-event wrap-up for active users only (onboarded
and seen within ACTIVE_USER_WINDOW_DAYS).

Each schedule runs at most once at a time; a firing that finds the
previous run of the same schedule still going is skipped. Morning and
evening runs may overlap.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Awaitable, Callable

from vibes.data.models import is_today_utc

if TYPE_CHECKING:
    from vibes.core.conversation import ConversationService
    from vibes.data.db import UserDB
    from vibes.data.models import User

logger = logging.getLogger(__name__)


class CheckupTrigger:
    """Fans a cron tick out to the conversation service, one user at a time."""

    def __init__(
        self,
        service: ConversationService,
        user_db: UserDB,
        active_window_days: int | None = None,
    ) -> None:
        if active_window_days is None:
            from vibes.config import settings
            active_window_days = settings.ACTIVE_USER_WINDOW_DAYS

        self._service = service
        self._user_db = user_db
        self._active_window = timedelta(days=active_window_days)
        self._morning_lock = asyncio.Lock()
        self._evening_lock = asyncio.Lock()

    async def run_morning(self) -> int:
        """Send the morning checkup to all users. Returns how many were sent."""
        return await self._run(
            "morning",
            self._morning_lock,
            self._user_db.list_users,
            lambda u: u.last_morning_checkup_sent_at,
            self._service.start_morning_checkup,
        )

    async def run_evening(self) -> int:
        """Send the evening checkup to recently active users."""
        since = datetime.now(timezone.utc) - self._active_window
        return await self._run(
            "evening",
            self._evening_lock,
            lambda: self._user_db.list_active_users(since),
            lambda u: u.last_evening_checkup_sent_at,
            self._service.start_evening_checkup,
        )

    async def _run(
        self,
        name: str,
        lock: asyncio.Lock,
        eligible: Callable[[], list[User]],
        last_sent: Callable[[User], str | None],
        start: Callable[[User], Awaitable[bool]],
    ) -> int:
        if lock.locked():
            logger.warning("Previous %s checkup run still in progress, skipping", name)
            return 0

        async with lock:
            users = eligible()
            logger.info("Starting %s checkup for %d user(s)", name, len(users))
            sent = 0
            for user in users:
                if is_today_utc(last_sent(user)):
                    logger.debug("%s checkup already sent today to %d", name, user.telegram_id)
                    continue
                try:
                    if await start(user):
                        sent += 1
                except Exception as exc:
                    logger.error(
                        "Failed to send %s checkup to %d: %s", name, user.telegram_id, exc
                    )
            logger.info("Finished %s checkup: %d sent", name, sent)
            return sent
