"""Error types and user-facing error text"""

import asyncio
from typing import Optional

from aiogram.exceptions import TelegramAPIError, TelegramNetworkError, TelegramRetryAfter


class AppError(Exception):
    """Error carrying a message safe to show to the user"""

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.user_message = user_message or message


def get_error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__


def format_error_for_user(error: BaseException) -> str:
    """Short, non-technical description of an error for the chat"""
    if isinstance(error, AppError):
        return error.user_message
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return "The response took too long. Please try again."
    if isinstance(error, TelegramRetryAfter):
        return f"Telegram rate limit hit, retry in {error.retry_after}s."
    if isinstance(error, TelegramNetworkError):
        return "Network problem while talking to Telegram."
    if isinstance(error, TelegramAPIError):
        return f"Telegram error: {error.message}"
    return get_error_message(error)
