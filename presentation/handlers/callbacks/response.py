"""
Response Callbacks

Stop / Retry / ◀ / ▶ buttons under bot answers. The query is answered
right away; the action itself runs in the background.
"""

import logging

from aiogram import F, Router
from aiogram.types import CallbackQuery

from application.services.app_state import AppState
from application.services.bot_message_service import BotMessageService, VersionDirection
from presentation.handlers.callbacks.base import BaseCallbackHandler
from presentation.handlers.message.turn_runner import TurnRunner
from presentation.keyboards.keyboards import ResponseAction
from shared.constants import RESPONSE_CALLBACK_PREFIX

logger = logging.getLogger(__name__)


class ResponseCallbackHandler(BaseCallbackHandler):
    """Handles resp:* callbacks"""

    def __init__(
        self,
        bot_message_service: BotMessageService,
        turn_runner: TurnRunner,
        app_state: AppState,
    ):
        self.bot_message_service = bot_message_service
        self.turn_runner = turn_runner
        self.app_state = app_state
        self.router = Router(name="response")
        self._register_handlers()

    def _register_handlers(self):
        self.router.callback_query.register(
            self.handle_callback,
            F.data.startswith(f"{RESPONSE_CALLBACK_PREFIX}:")
        )

    async def handle_callback(self, callback: CallbackQuery) -> None:
        if callback.message is None:
            await self._answer_error(callback, "Message is no longer available")
            return

        _, action = self.parse_callback_data(callback.data)
        chat_id = callback.message.chat.id
        message_id = callback.message.message_id

        if action == ResponseAction.STOP:
            stopped = await self.bot_message_service.stop_response(chat_id, message_id)
            await self._answer(callback, "Stopping..." if stopped else "Already finished")
            return

        if action == ResponseAction.RETRY:
            await self._answer(callback, "Retrying...")
            self.app_state.spawn(self._retry(chat_id, message_id), name=f"retry-{chat_id}-{message_id}")
        elif action in (ResponseAction.PREV, ResponseAction.NEXT):
            await self._answer(callback)
            self.app_state.spawn(
                self._switch(chat_id, message_id, VersionDirection(action)),
                name=f"switch-{chat_id}-{message_id}",
            )
        else:
            logger.warning(f"Unknown response action: {callback.data}")
            await self._answer_error(callback, "Unknown action")

    async def _retry(self, chat_id: int, message_id: int) -> None:
        response = await self.bot_message_service.find_turn(chat_id, message_id)
        if response is None:
            logger.warning(f"[{chat_id}] Retry on unknown message {message_id}")
            return
        session = await self.bot_message_service.start_retry(chat_id, response.message_id)
        if session is not None:
            await self.turn_runner.retry(session)

    async def _switch(self, chat_id: int, message_id: int, direction: VersionDirection) -> None:
        response = await self.bot_message_service.find_turn(chat_id, message_id)
        if response is None:
            logger.warning(f"[{chat_id}] Version switch on unknown message {message_id}")
            return
        await self.bot_message_service.switch_version(chat_id, response.message_id, direction)


def register_response_callbacks(dp, handler: ResponseCallbackHandler) -> None:
    """Register response callbacks with dispatcher"""
    dp.include_router(handler.router)
