"""
Base Callback Handler

Common helpers for callback query handlers.
"""

import logging
from aiogram.exceptions import TelegramAPIError
from aiogram.types import CallbackQuery

from shared.constants import CALLBACK_ANSWER_LIMIT
from shared.utils import safe_split_callback_data, truncate_for_telegram

logger = logging.getLogger(__name__)


class BaseCallbackHandler:
    """Base class for callback handlers."""

    async def _answer(self, callback: CallbackQuery, text: str = "") -> None:
        """Answer the query; a late answer (query expired) is not an error."""
        try:
            await callback.answer(truncate_for_telegram(text, CALLBACK_ANSWER_LIMIT))
        except TelegramAPIError as e:
            logger.debug(f"Callback answer failed: {e}")

    async def _answer_error(self, callback: CallbackQuery, message: str) -> None:
        """Send error as callback answer."""
        await self._answer(callback, f"❌ {message}")

    @staticmethod
    def parse_callback_data(data: str, expected_parts: int = 2) -> list[str]:
        """
        Safely parse callback data into parts.

        Args:
            data: Callback data string (e.g., "resp:retry")
            expected_parts: Minimum expected parts

        Returns:
            List of parts, padded with empty strings
        """
        return safe_split_callback_data(data, expected_parts)
