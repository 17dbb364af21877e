"""Tests for vibes.core.assistant — prompts, result handling, parsing.

The LLM itself is always mocked via `vibes.core.assistant.complete`.
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import pytest

from vibes.core.assistant import (
    Generation,
    Intent,
    _clean_llm_response,
    _zone_from_offset,
    classify_intent,
    extract_first_event,
    general_chat_reply,
    generate_morning_plan,
    generate_plan_from_text,
    recognize_schedule_from_image,
    resolve_timezone,
)
from vibes.data.models import DailyPlan, EventRating, Vibe


class TestCleanResponse:
    def test_strips_json_fence(self):
        assert _clean_llm_response('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_bare_fence(self):
        assert _clean_llm_response("```\nplan\n```") == "plan"

    def test_plain_text_untouched(self):
        assert _clean_llm_response("  hello  ") == "hello"


class TestGeneration:
    @pytest.mark.asyncio
    async def test_success(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="- 09:00 Deep work")):
            result = await generate_morning_plan("high", "7", "write report", [])
        assert result.ok
        assert result.text == "- 09:00 Deep work"

    @pytest.mark.asyncio
    async def test_error_marker_becomes_rejection(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="[ERROR] no tasks")):
            result = await generate_morning_plan("high", "7", "hmm", [])
        assert not result.ok
        assert result.error == "no tasks"
        assert result.text == ""

    @pytest.mark.asyncio
    async def test_empty_reply_is_rejection_not_success(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="   ")):
            result = await general_chat_reply("hi")
        assert result == Generation.rejected("empty")

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        with patch("vibes.core.assistant.complete", AsyncMock(side_effect=RuntimeError("503"))):
            with pytest.raises(RuntimeError):
                await general_chat_reply("hi")

    @pytest.mark.asyncio
    async def test_plan_from_text_includes_memory_in_prompt(self):
        mock = AsyncMock(return_value="plan")
        plans = [DailyPlan(id=1, user_id=1, plan_date="2025-08-16", plan_text="gym at 7")]
        ratings = [EventRating(id=1, user_id=1, event_id="e", event_summary="Standup", vibe=Vibe.DRAIN)]
        events = [{"summary": "Dentist", "start_time": "2025-08-17T10:00:00Z", "end_time": "2025-08-17T11:00:00Z"}]
        with patch("vibes.core.assistant.complete", mock):
            await generate_plan_from_text("finish slides", events, plans, ratings)
        system, user_message = mock.call_args.args[0], mock.call_args.args[1]
        assert "gym at 7" in system
        assert "Standup: drain" in system
        assert "Dentist" in system
        assert user_message == "finish slides"

    @pytest.mark.asyncio
    async def test_image_recognition_rejection_reason(self):
        with patch("vibes.core.assistant.complete_with_image", AsyncMock(return_value="[ERROR] irrelevant")):
            result = await recognize_schedule_from_image(b"img")
        assert result.error == "irrelevant"


class TestClassifyIntent:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw, expected", [
        ("plan", Intent.PLAN),
        ("Check_Calendar\n", Intent.CHECK_CALENDAR),
        ("`general_chat`", Intent.GENERAL_CHAT),
        ("something else entirely", Intent.UNKNOWN),
    ])
    async def test_labels(self, raw, expected):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value=raw)):
            assert await classify_intent("text") is expected


class TestResolveTimezone:
    def test_offset_conversion_inverts_sign(self):
        assert _zone_from_offset("UTC+3") == "Etc/GMT-3"
        assert _zone_from_offset("gmt -5") == "Etc/GMT+5"
        assert _zone_from_offset("UTC+0") == "UTC"
        assert _zone_from_offset("UTC+20") is None
        assert _zone_from_offset("Moscow") is None

    @pytest.mark.asyncio
    async def test_offset_skips_llm(self):
        mock = AsyncMock()
        with patch("vibes.core.assistant.complete", mock):
            assert await resolve_timezone("UTC+3") == "Etc/GMT-3"
        mock.assert_not_called()

    @pytest.mark.asyncio
    async def test_city_resolved_by_llm(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="Europe/Moscow")):
            assert await resolve_timezone("Moscow") == "Europe/Moscow"

    @pytest.mark.asyncio
    async def test_invalid_llm_answer_returns_none(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="Mars/Olympus")):
            assert await resolve_timezone("Olympus Mons") is None

    @pytest.mark.asyncio
    async def test_unknown_returns_none(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="UNKNOWN")):
            assert await resolve_timezone("asdf") is None


class TestExtractFirstEvent:
    @pytest.mark.asyncio
    async def test_naive_times_get_user_timezone(self):
        raw = '```json\n{"found": true, "title": "Deep work", "start": "2025-08-17T10:00", "end": "2025-08-17T12:00"}\n```'
        with patch("vibes.core.assistant.complete", AsyncMock(return_value=raw)):
            event = await extract_first_event("10:00 deep work", "Europe/Moscow")
        assert event.found is True
        assert event.title == "Deep work"
        assert event.start == datetime(2025, 8, 17, 10, 0, tzinfo=ZoneInfo("Europe/Moscow"))
        assert event.end - event.start == timedelta(hours=2)

    @pytest.mark.asyncio
    async def test_explicit_offset_kept(self):
        raw = '{"found": true, "title": "Call", "start": "2025-08-17T10:00:00+00:00", "end": null}'
        with patch("vibes.core.assistant.complete", AsyncMock(return_value=raw)):
            event = await extract_first_event("call", "Europe/Moscow")
        assert event.start.utcoffset() == timedelta(0)
        assert event.end is None

    @pytest.mark.asyncio
    async def test_end_before_start_dropped(self):
        raw = '{"found": true, "title": "Call", "start": "2025-08-17T10:00", "end": "2025-08-17T09:00"}'
        with patch("vibes.core.assistant.complete", AsyncMock(return_value=raw)):
            event = await extract_first_event("call", None)
        assert event.start.tzinfo == ZoneInfo("UTC")
        assert event.end is None

    @pytest.mark.asyncio
    async def test_not_found(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value='{"found": false}')):
            assert (await extract_first_event("rest all day", "UTC")).found is False

    @pytest.mark.asyncio
    async def test_garbage_is_not_found(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value="Sure! Here it is")):
            assert (await extract_first_event("plan", "UTC")).found is False

    @pytest.mark.asyncio
    async def test_found_without_start_is_not_found(self):
        with patch("vibes.core.assistant.complete", AsyncMock(return_value='{"found": true, "title": "X"}')):
            assert (await extract_first_event("plan", "UTC")).found is False
