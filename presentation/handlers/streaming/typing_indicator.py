import asyncio
import logging
from typing import Optional

from aiogram import Bot
from aiogram.enums import ChatAction
from aiogram.exceptions import TelegramAPIError

from shared.constants import TYPING_INTERVAL_SECONDS

logger = logging.getLogger(__name__)


class TypingIndicator:
    """Keeps the "typing..." chat action alive while an answer streams"""

    def __init__(self, bot: Bot, chat_id: int, interval: float = TYPING_INTERVAL_SECONDS):
        self.bot = bot
        self.chat_id = chat_id
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._task = asyncio.create_task(self._run())

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        while True:
            try:
                await self.bot.send_chat_action(chat_id=self.chat_id, action=ChatAction.TYPING)
            except TelegramAPIError as e:
                logger.debug(f"[{self.chat_id}] typing action failed: {e}")
            await asyncio.sleep(self.interval)
