"""
Dependency Injection Container

Builds every service once, lazily, from Settings. Nothing else in the
application constructs collaborators or keeps module-level instances.
"""

import importlib
import logging
from typing import Optional

from aiogram import Bot
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode

from application.services.app_state import AppState
from application.services.bot_message_service import BotMessageService, BotMessageSession
from domain.value_objects.turn_request import ChunkSource
from infrastructure.persistence.sqlite_response_repository import SQLiteResponseRepository
from infrastructure.telegram.edit_rate_limiter import EditRateLimitConfig, EditRateLimiter
from infrastructure.telegram.message_editor import MessageEditor
from presentation.handlers.callbacks.response import ResponseCallbackHandler
from presentation.handlers.message.response_handler import ResponseHandler
from presentation.handlers.message.turn_handlers import TurnMessageHandlers
from presentation.handlers.message.turn_runner import TurnRunner
from presentation.handlers.streaming.editor import StreamingEditor
from presentation.handlers.streaming.renderer import ResponseRenderer
from presentation.keyboards.keyboards import Keyboards
from shared.config.settings import Settings

logger = logging.getLogger(__name__)


def load_chunk_source(path: str) -> ChunkSource:
    """Import a chunk source given as "package.module:attribute"."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"CHUNK_SOURCE must look like 'module:attribute', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attribute)


class Container:
    """Lazily-built application services"""

    def __init__(self, settings: Settings, chunk_source: Optional[ChunkSource] = None):
        self.settings = settings
        self._chunk_source = chunk_source
        self._bot: Optional[Bot] = None
        self._repository: Optional[SQLiteResponseRepository] = None
        self._app_state: Optional[AppState] = None
        self._message_editor: Optional[MessageEditor] = None
        self._renderer: Optional[ResponseRenderer] = None
        self._bot_message_service: Optional[BotMessageService] = None
        self._response_handler: Optional[ResponseHandler] = None
        self._turn_runner: Optional[TurnRunner] = None

    async def init(self) -> None:
        await self.repository().init()

    async def close(self) -> None:
        if self._app_state is not None:
            await self._app_state.close()
        if self._bot is not None:
            await self._bot.session.close()

    def bot(self) -> Bot:
        if self._bot is None:
            self._bot = Bot(
                token=self.settings.telegram.token,
                default=DefaultBotProperties(parse_mode=ParseMode.HTML)
            )
        return self._bot

    def repository(self) -> SQLiteResponseRepository:
        if self._repository is None:
            self._repository = SQLiteResponseRepository(self.settings.database.path)
        return self._repository

    def app_state(self) -> AppState:
        if self._app_state is None:
            streaming = self.settings.streaming
            rate_limiter = EditRateLimiter(EditRateLimitConfig(
                window=streaming.edit_window,
                soft_cap=streaming.edit_soft_cap,
                hard_cap=streaming.edit_hard_cap,
                min_interval=streaming.edit_min_interval,
            ))
            self._app_state = AppState(rate_limiter, current_model=streaming.default_model)
        return self._app_state

    def message_editor(self) -> MessageEditor:
        if self._message_editor is None:
            self._message_editor = MessageEditor(self.bot(), self.app_state().rate_limiter)
        return self._message_editor

    def renderer(self) -> ResponseRenderer:
        if self._renderer is None:
            self._renderer = ResponseRenderer()
        return self._renderer

    def _make_editor(self, session: BotMessageSession, message_id: int, initial_content: str) -> StreamingEditor:
        return StreamingEditor(
            self.message_editor(),
            session.chat_id,
            message_id,
            get_buttons=session.current_buttons,
            initial_content=initial_content,
            idle_interval=self.settings.streaming.idle_interval,
        )

    def bot_message_service(self) -> BotMessageService:
        if self._bot_message_service is None:
            self._bot_message_service = BotMessageService(
                message_editor=self.message_editor(),
                repository=self.repository(),
                app_state=self.app_state(),
                editor_factory=self._make_editor,
                button_factory=Keyboards.response_buttons,
                renderer=self.renderer(),
            )
        return self._bot_message_service

    def response_handler(self) -> ResponseHandler:
        if self._response_handler is None:
            self._response_handler = ResponseHandler(
                bot=self.bot(),
                bot_message_service=self.bot_message_service(),
                message_editor=self.message_editor(),
                app_state=self.app_state(),
                renderer=self.renderer(),
                config=self.settings.streaming,
            )
        return self._response_handler

    def chunk_source(self) -> ChunkSource:
        if self._chunk_source is None:
            path = self.settings.streaming.chunk_source
            if not path:
                raise ValueError("CHUNK_SOURCE is required")
            self._chunk_source = load_chunk_source(path)
            logger.info(f"Chunk source loaded from {path}")
        return self._chunk_source

    def turn_runner(self) -> TurnRunner:
        if self._turn_runner is None:
            self._turn_runner = TurnRunner(self.response_handler(), self.chunk_source(), self.app_state())
        return self._turn_runner

    def response_callbacks(self) -> ResponseCallbackHandler:
        return ResponseCallbackHandler(self.bot_message_service(), self.turn_runner(), self.app_state())

    def turn_handlers(self) -> TurnMessageHandlers:
        return TurnMessageHandlers(self.turn_runner(), self.bot_message_service())
