"""Tests for vibes.bot.telegram_bot — update translation and app wiring.

Telegram objects are MagicMocks; no network access.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from apscheduler.triggers.cron import CronTrigger

from vibes.bot.telegram_bot import _setup_checkups, build_app, handle_update, inbound_from_update
from vibes.core.inbound import InputKind


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tg_user(user_id=12345, first_name="Anna"):
    user = MagicMock()
    user.id = user_id
    user.first_name = first_name
    user.last_name = None
    user.username = "anna"
    user.language_code = "ru"
    return user


def _message(text=None, photo=None, voice=None, video_note=None, chat_id=12345, message_id=10):
    msg = MagicMock()
    msg.chat.id = chat_id
    msg.message_id = message_id
    msg.text = text
    msg.photo = photo or []
    msg.voice = voice
    msg.video_note = video_note
    return msg


def _update(message=None, callback_query=None, user=None):
    update = MagicMock()
    update.update_id = 1
    update.effective_user = user if user is not None else _tg_user()
    update.message = message
    update.callback_query = callback_query
    return update


# ---------------------------------------------------------------------------
# Tests for inbound_from_update
# ---------------------------------------------------------------------------


class TestInboundFromUpdate:
    def test_text_message(self):
        inbound = inbound_from_update(_update(message=_message(text="/plan")))
        assert inbound.kind is InputKind.TEXT
        assert inbound.text == "/plan"
        assert inbound.command == "/plan"
        assert inbound.sender.telegram_id == 12345
        assert inbound.sender.language_code == "ru"

    def test_photo_uses_largest_size(self):
        small, large = MagicMock(file_id="small"), MagicMock(file_id="large")
        inbound = inbound_from_update(_update(message=_message(photo=[small, large])))
        assert inbound.kind is InputKind.PHOTO
        assert inbound.file_id == "large"
        assert inbound.mime_type == "image/jpeg"

    def test_voice(self):
        voice = MagicMock(file_id="v1", mime_type=None)
        inbound = inbound_from_update(_update(message=_message(voice=voice)))
        assert inbound.kind is InputKind.VOICE
        assert inbound.mime_type == "audio/ogg"

    def test_video_note_is_voice(self):
        note = MagicMock(file_id="vn1")
        inbound = inbound_from_update(_update(message=_message(video_note=note)))
        assert inbound.kind is InputKind.VOICE
        assert inbound.mime_type == "video/mp4"

    def test_sticker_is_other(self):
        inbound = inbound_from_update(_update(message=_message()))
        assert inbound.kind is InputKind.OTHER

    def test_callback_query(self):
        query = MagicMock()
        query.id = "cb-9"
        query.data = "plan_accept"
        query.message = _message(text="- 10:00 Deep work", message_id=55)
        inbound = inbound_from_update(_update(callback_query=query))
        assert inbound.kind is InputKind.CALLBACK
        assert inbound.text == "plan_accept"
        assert inbound.callback_id == "cb-9"
        assert inbound.message_id == 55
        assert inbound.message_text == "- 10:00 Deep work"

    def test_update_without_user_ignored(self):
        update = _update(message=_message(text="hi"))
        update.effective_user = None
        assert inbound_from_update(update) is None

    def test_plain_text_has_no_command(self):
        inbound = inbound_from_update(_update(message=_message(text="good morning")))
        assert inbound.command is None


class TestHandleUpdate:
    @pytest.mark.asyncio
    async def test_forwards_to_service(self):
        service = MagicMock()
        service.handle = AsyncMock()
        context = MagicMock()
        context.bot_data = {"service": service}
        await handle_update(_update(message=_message(text="hi")), context)
        service.handle.assert_awaited_once()
        assert service.handle.await_args.args[0].text == "hi"


# ---------------------------------------------------------------------------
# Tests for app wiring
# ---------------------------------------------------------------------------


class TestBuildApp:
    def test_wires_service_and_trigger(self, user_db, plan_db, rating_db, calendar):
        with patch("vibes.bot.telegram_bot._setup_checkups") as setup:
            app = build_app(calendar=calendar, user_db=user_db, plan_db=plan_db, rating_db=rating_db)
        assert "service" in app.bot_data
        assert "trigger" in app.bot_data
        setup.assert_called_once_with(app, app.bot_data["trigger"])
        assert len(app.handlers[0]) == 2

    def test_checkup_jobs_registered_with_cron(self):
        app = MagicMock()
        _setup_checkups(app, MagicMock())
        calls = app.job_queue.run_custom.call_args_list
        assert [c.kwargs["name"] for c in calls] == ["morning_checkup", "evening_checkup"]
        for c in calls:
            job_kwargs = c.kwargs["job_kwargs"]
            assert isinstance(job_kwargs["trigger"], CronTrigger)
            assert job_kwargs["max_instances"] == 1

    def test_missing_job_queue_is_tolerated(self):
        app = MagicMock()
        app.job_queue = None
        _setup_checkups(app, MagicMock())
