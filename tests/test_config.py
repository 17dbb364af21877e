"""Tests for vibes.config — settings loading and validation."""

import pytest

from vibes.config import DEFAULT_EVENING_CRON, DEFAULT_MORNING_CRON, Settings, _load_settings


def _settings(**overrides):
    values = {"TELEGRAM_BOT_TOKEN": "t", "LLM_API_KEY": "k"}
    values.update(overrides)
    return Settings(**values)


class TestCronValidation:
    def test_defaults(self):
        s = _settings()
        assert s.MORNING_CHECKUP_CRON == DEFAULT_MORNING_CRON
        assert s.EVENING_CHECKUP_CRON == DEFAULT_EVENING_CRON

    def test_custom_cron_kept(self):
        assert _settings(MORNING_CHECKUP_CRON=" 30 5 * * 1-5 ").MORNING_CHECKUP_CRON == "30 5 * * 1-5"

    def test_invalid_cron_falls_back(self):
        s = _settings(MORNING_CHECKUP_CRON="every morning", EVENING_CHECKUP_CRON="61 25 * * *")
        assert s.MORNING_CHECKUP_CRON == DEFAULT_MORNING_CRON
        assert s.EVENING_CHECKUP_CRON == DEFAULT_EVENING_CRON

    def test_empty_cron_falls_back(self):
        assert _settings(EVENING_CHECKUP_CRON="").EVENING_CHECKUP_CRON == DEFAULT_EVENING_CRON


class TestLoadSettings:
    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("ACTIVE_USER_WINDOW_DAYS", "14")
        monkeypatch.setenv("PORT", "9000")
        s = _load_settings()
        assert s.ACTIVE_USER_WINDOW_DAYS == 14
        assert s.PORT == 9000

    def test_missing_bot_token_exits(self, monkeypatch):
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "")
        with pytest.raises(SystemExit):
            _load_settings()

    def test_placeholder_llm_key_exits(self, monkeypatch):
        monkeypatch.setenv("LLM_API_KEY", "your-key-here")
        with pytest.raises(SystemExit):
            _load_settings()
