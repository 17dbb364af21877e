"""Google Calendar adapter — implements CalendarPort.

All Google-specific logic lives here. Core modules never import this directly;
they receive a CalendarPort instance instead.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from vibes.integrations.google_auth import (
    exchange_google_auth_code,
    get_calendar_service_for_user,
    get_google_auth_url,
)
from vibes.ports.calendar_port import CalendarError

logger = logging.getLogger(__name__)


def _normalize_event(item: dict) -> dict:
    start = item.get("start", {})
    end = item.get("end", {})
    return {
        "id": item.get("id", ""),
        "summary": item.get("summary", "(no title)"),
        "start_time": start.get("dateTime", start.get("date", "")),
        "end_time": end.get("dateTime", end.get("date", "")),
        "html_link": item.get("htmlLink", ""),
        "description": item.get("description", ""),
    }


def _zone(tz_name: str) -> ZoneInfo:
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", tz_name)
        return ZoneInfo("UTC")


class GoogleCalendarAdapter:
    """Google Calendar implementation of CalendarPort."""

    def generate_auth_url(self, telegram_id: int) -> str:
        return get_google_auth_url(telegram_id)

    async def exchange_code(self, code: str) -> str:
        try:
            return exchange_google_auth_code(code)
        except Exception as exc:
            logger.error("Google OAuth code exchange failed: %s", exc)
            raise CalendarError(f"Failed to exchange auth code: {exc}") from exc

    async def list_upcoming_events(
        self, refresh_token: str | None, max_results: int = 10
    ) -> list[dict]:
        if not refresh_token:
            logger.warning("list_upcoming_events called without calendar credentials")
            return []

        time_min = datetime.now(ZoneInfo("UTC")).isoformat()
        try:
            service = get_calendar_service_for_user(refresh_token)
            result = (
                service.events()
                .list(
                    calendarId="primary",
                    timeMin=time_min,
                    maxResults=max_results,
                    singleEvents=True,
                    orderBy="startTime",
                )
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to list upcoming events: %s", exc)
            raise CalendarError(f"Failed to list upcoming events: {exc}") from exc

        events = [_normalize_event(item) for item in result.get("items", [])]
        logger.info("Found %d upcoming event(s)", len(events))
        return events

    async def list_events_for_date(
        self, refresh_token: str | None, target_date: date, tz_name: str = "UTC"
    ) -> list[dict]:
        if not refresh_token:
            logger.warning("list_events_for_date called without calendar credentials")
            return []

        tz = _zone(tz_name)
        day_start = datetime.combine(target_date, time.min, tzinfo=tz)
        day_end = day_start + timedelta(days=1)
        try:
            service = get_calendar_service_for_user(refresh_token)
            result = (
                service.events()
                .list(
                    calendarId="primary",
                    timeMin=day_start.isoformat(),
                    timeMax=day_end.isoformat(),
                    singleEvents=True,
                    orderBy="startTime",
                )
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to list events for %s: %s", target_date, exc)
            raise CalendarError(f"Failed to list events: {exc}") from exc

        events = [_normalize_event(item) for item in result.get("items", [])]
        logger.info("Found %d event(s) on %s (%s)", len(events), target_date, tz_name)
        return events

    async def get_event(self, refresh_token: str | None, event_id: str) -> dict | None:
        if not refresh_token:
            logger.warning("get_event called without calendar credentials")
            return None
        try:
            service = get_calendar_service_for_user(refresh_token)
            item = service.events().get(calendarId="primary", eventId=event_id).execute()
        except Exception as exc:
            logger.error("Failed to get event %s: %s", event_id, exc)
            raise CalendarError(f"Failed to get event: {exc}") from exc
        return _normalize_event(item)

    async def create_event(
        self,
        refresh_token: str | None,
        title: str,
        start: datetime,
        end: datetime,
        tz_name: str = "UTC",
    ) -> dict:
        if not refresh_token:
            raise CalendarError("Calendar is not connected")

        body = {
            "summary": title,
            "start": {"dateTime": start.isoformat(), "timeZone": tz_name},
            "end": {"dateTime": end.isoformat(), "timeZone": tz_name},
        }
        try:
            service = get_calendar_service_for_user(refresh_token)
            created = service.events().insert(calendarId="primary", body=body).execute()
        except Exception as exc:
            logger.error("Google Calendar API error: %s", exc)
            raise CalendarError(f"Failed to create event: {exc}") from exc

        logger.info("Event created: '%s' at %s (%s)", title, start, created.get("htmlLink", ""))
        return _normalize_event(created)
