"""User messages that start turns, and edits of those messages"""

import logging

from aiogram import F, Router
from aiogram.types import Message

from application.services.bot_message_service import BotMessageService
from presentation.handlers.message.turn_runner import TurnRunner

logger = logging.getLogger(__name__)


class TurnMessageHandlers:
    """Text messages start a streamed answer; edits mark finished answers"""

    def __init__(self, turn_runner: TurnRunner, bot_message_service: BotMessageService):
        self.turn_runner = turn_runner
        self.bot_message_service = bot_message_service
        self.router = Router(name="turns")
        self._register_handlers()

    def _register_handlers(self):
        self.router.message.register(self.handle_text, F.text)
        self.router.edited_message.register(self.handle_edited_message, F.text)

    async def handle_text(self, message: Message) -> None:
        context = await self.turn_runner.start(message.chat.id, message.message_id, message.text)
        if context is None:
            logger.error(f"[{message.chat.id}] Could not start answer for message {message.message_id}")

    async def handle_edited_message(self, message: Message) -> None:
        if await self.bot_message_service.mark_edit_detected(message.chat.id, message.message_id):
            logger.info(f"[{message.chat.id}] Message {message.message_id} edited, retry offered")


def register_turn_handlers(dp, handlers: TurnMessageHandlers) -> None:
    dp.include_router(handlers.router)
