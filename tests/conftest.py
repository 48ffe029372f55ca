"""Shared fixtures: a fully wired streaming stack on top of a fake bot"""

from typing import List

import pytest
import pytest_asyncio

from application.services.app_state import AppState
from application.services.bot_message_service import BotMessageService, BotMessageSession
from infrastructure.telegram.edit_rate_limiter import EditRateLimiter
from infrastructure.telegram.message_editor import MessageEditor
from presentation.handlers.message.response_handler import ResponseHandler
from presentation.handlers.streaming.editor import StreamingEditor
from presentation.handlers.streaming.renderer import ResponseRenderer
from presentation.keyboards.keyboards import Keyboards
from shared.config.settings import StreamingConfig
from tests.fakes import FakeBot, FakeClock, InMemoryResponseRepository, no_sleep

# Long enough that idle rotation and typing never fire during a test
QUIET_INTERVAL = 1000.0


class Harness:
    """Everything a turn needs, wired the way the container does it"""

    def __init__(self):
        self.clock = FakeClock()
        self.bot = FakeBot()
        self.rate_limiter = EditRateLimiter(clock=self.clock)
        self.message_editor = MessageEditor(self.bot, self.rate_limiter, sleep=no_sleep)
        self.repository = InMemoryResponseRepository()
        self.app_state = AppState(self.rate_limiter, current_model="test-model")
        self.renderer = ResponseRenderer()
        self.editors: List[StreamingEditor] = []
        self.config = StreamingConfig(
            update_interval=0.5,
            idle_interval=QUIET_INTERVAL,
            typing_interval=QUIET_INTERVAL,
            error_retry_delay=0,
        )
        self.service = BotMessageService(
            message_editor=self.message_editor,
            repository=self.repository,
            app_state=self.app_state,
            editor_factory=self._make_editor,
            button_factory=Keyboards.response_buttons,
            renderer=self.renderer,
        )
        self.handler = ResponseHandler(
            bot=self.bot,
            bot_message_service=self.service,
            message_editor=self.message_editor,
            app_state=self.app_state,
            renderer=self.renderer,
            config=self.config,
            clock=self.clock,
        )

    def _make_editor(self, session: BotMessageSession, message_id: int, initial_content: str) -> StreamingEditor:
        editor = StreamingEditor(
            self.message_editor,
            session.chat_id,
            message_id,
            get_buttons=session.current_buttons,
            initial_content=initial_content,
            idle_interval=QUIET_INTERVAL,
            clock=self.clock,
        )
        self.editors.append(editor)
        return editor

    async def close(self) -> None:
        for editor in self.editors:
            editor.stop()
        await self.app_state.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bot():
    return FakeBot()


@pytest_asyncio.fixture
async def harness():
    h = Harness()
    yield h
    await h.close()

