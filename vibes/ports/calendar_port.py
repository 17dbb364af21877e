"""Calendar port — abstract interface for calendar operations.

Core modules depend on this protocol, never on a specific provider.
Credentials are per-user refresh tokens; a missing token means "not
connected", and read operations then return empty results instead of raising.

Events are plain dicts with keys: id, summary, start_time, end_time,
html_link, description.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Protocol


class CalendarError(Exception):
    """Raised when any calendar provider operation fails."""


class CalendarPort(Protocol):
    """Abstract calendar interface used by core modules."""

    def generate_auth_url(self, telegram_id: int) -> str: ...

    async def exchange_code(self, code: str) -> str: ...

    async def list_upcoming_events(
        self, refresh_token: str | None, max_results: int = 10
    ) -> list[dict]: ...

    async def list_events_for_date(
        self, refresh_token: str | None, target_date: date, tz_name: str = "UTC"
    ) -> list[dict]: ...

    async def get_event(
        self, refresh_token: str | None, event_id: str
    ) -> dict | None: ...

    async def create_event(
        self,
        refresh_token: str | None,
        title: str,
        start: datetime,
        end: datetime,
        tz_name: str = "UTC",
    ) -> dict: ...
