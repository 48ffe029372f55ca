"""
Tests for settings, the container and shared helpers.
"""

import pytest

from shared.config.settings import DatabaseConfig, Settings, StreamingConfig, TelegramConfig
from shared.container import Container, load_chunk_source
from shared.errors import AppError, format_error_for_user
from shared.utils import safe_split_callback_data, truncate_for_telegram
from tests.fakes import stream_of


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("TELEGRAM_TOKEN", "42:TEST-TOKEN")
    monkeypatch.setenv("ALLOWED_USER_IDS", "1, 2,")
    monkeypatch.setenv("STREAM_UPDATE_INTERVAL", "0.25")
    monkeypatch.setenv("EDIT_HARD_CAP", "15")
    monkeypatch.delenv("CHUNK_SOURCE", raising=False)
    return monkeypatch


class TestSettings:
    """Settings.from_env tests"""

    def test_reads_environment(self, env):
        settings = Settings.from_env()

        assert settings.telegram.token == "42:TEST-TOKEN"
        assert settings.telegram.allowed_user_ids == [1, 2]
        assert settings.streaming.update_interval == 0.25
        assert settings.streaming.edit_hard_cap == 15
        assert settings.streaming.chunk_source is None

    def test_token_is_required(self, env):
        env.delenv("TELEGRAM_TOKEN")
        with pytest.raises(ValueError, match="TELEGRAM_TOKEN"):
            TelegramConfig.from_env()


class TestContainer:
    """Container wiring tests"""

    def make_settings(self, tmp_path, chunk_source=None):
        return Settings(
            telegram=TelegramConfig(token="42:TEST-TOKEN", allowed_user_ids=[]),
            database=DatabaseConfig(path=str(tmp_path / "bot.db")),
            streaming=StreamingConfig(chunk_source=chunk_source, default_model="gemini-test", edit_soft_cap=5),
        )

    @pytest.mark.asyncio
    async def test_builds_services_once(self, tmp_path):
        container = Container(self.make_settings(tmp_path, "tests.fakes:stream_of"))
        await container.init()

        runner = container.turn_runner()

        assert runner is container.turn_runner()
        assert runner.chunk_source is stream_of
        assert container.app_state().current_model == "gemini-test"
        assert container.app_state().rate_limiter.config.soft_cap == 5
        assert container.bot_message_service().message_editor is container.message_editor()
        await container.close()

    def test_missing_chunk_source(self, tmp_path):
        container = Container(self.make_settings(tmp_path))
        with pytest.raises(ValueError, match="CHUNK_SOURCE"):
            container.chunk_source()

    def test_malformed_chunk_source(self):
        with pytest.raises(ValueError):
            load_chunk_source("no_attribute_here")


class TestSharedHelpers:
    """errors and utils tests"""

    def test_app_error_user_message(self):
        assert format_error_for_user(AppError("internal detail", "Try again later")) == "Try again later"

    def test_timeout_message(self):
        assert "too long" in format_error_for_user(TimeoutError())

    def test_plain_error_message(self):
        assert format_error_for_user(RuntimeError("boom")) == "boom"
        assert format_error_for_user(RuntimeError()) == "RuntimeError"

    def test_truncate(self):
        assert truncate_for_telegram("abcdef", 5) == "ab..."
        assert truncate_for_telegram("abc", 5) == "abc"

    def test_split_callback_data_pads(self):
        assert safe_split_callback_data("resp") == ["resp", ""]
        assert safe_split_callback_data("resp:retry") == ["resp", "retry"]
