"""
Single-message Telegram primitives.

Every call waits on the EditRateLimiter where it edits, talks to Telegram
once and reports the outcome as a value. Nothing here raises on platform
errors; callers decide whether to retry.
"""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from aiogram import Bot
from aiogram.enums import ParseMode
from aiogram.exceptions import TelegramAPIError, TelegramBadRequest, TelegramRetryAfter
from aiogram.types import BufferedInputFile, InlineKeyboardMarkup, Message, ReplyParameters

from infrastructure.telegram.edit_rate_limiter import EditRateLimiter

logger = logging.getLogger(__name__)

EditGuard = Callable[[], bool]


class EditOutcome(str, Enum):
    OK = "ok"
    NOT_MODIFIED = "not_modified"
    UNCHANGED = "unchanged"
    DISCARDED = "discarded"
    PARSE_ERROR = "parse_error"
    FAILED = "failed"


@dataclass(frozen=True)
class EditResult:
    outcome: EditOutcome
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in (EditOutcome.OK, EditOutcome.NOT_MODIFIED, EditOutcome.UNCHANGED)

    @property
    def is_parse_error(self) -> bool:
        return self.outcome == EditOutcome.PARSE_ERROR


def _is_not_modified(error: TelegramBadRequest) -> bool:
    return "message is not modified" in str(error).lower()


def _is_parse_error(error: TelegramBadRequest) -> bool:
    return "can't parse entities" in str(error).lower()


def strip_html(text: str) -> str:
    return re.sub(r"<[^>]+>", "", text)


class MessageEditor:
    """
    Rate-limited edit/send/delete on behalf of streaming editors.

    Usage:
        result = await editor.edit(chat_id, message_id, "<b>Hi</b>")
        if not result.success:
            logger.warning(result.error)
    """

    def __init__(
        self,
        bot: Bot,
        rate_limiter: EditRateLimiter,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bot = bot
        self.rate_limiter = rate_limiter
        self._sleep = sleep

    async def wait_for_slot(self, chat_id: int) -> None:
        delay = self.rate_limiter.delay_before_next_edit(chat_id)
        if delay > 0:
            logger.debug(f"[{chat_id}] Waiting {delay:.2f}s for edit slot")
            await self._sleep(delay)

    async def edit(
        self,
        chat_id: int,
        message_id: int,
        text: str,
        parse_mode: Optional[str] = ParseMode.HTML,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        current_text: Optional[str] = None,
        current_markup: Optional[InlineKeyboardMarkup] = None,
        guard: Optional[EditGuard] = None,
    ) -> EditResult:
        """
        Edit a message's text.

        Args:
            current_text: What the message shows now
            current_markup: The keyboard it shows now; identical text and
                keyboard together are a no-op
            guard: Checked after the rate-limit wait; False discards the edit

        Returns:
            EditResult; success for ok, "not modified" and unchanged content
        """
        if current_text is not None and text == current_text and reply_markup == current_markup:
            return EditResult(EditOutcome.UNCHANGED)

        await self.wait_for_slot(chat_id)

        if guard is not None and not guard():
            logger.debug(f"Message {message_id}: edit superseded, discarding")
            return EditResult(EditOutcome.DISCARDED)

        try:
            await self.bot.edit_message_text(
                text=text,
                chat_id=chat_id,
                message_id=message_id,
                parse_mode=parse_mode,
                reply_markup=reply_markup,
            )
            self.rate_limiter.record_edit(chat_id)
            logger.debug(f"Message {message_id}: edited ({len(text)}ch)")
            return EditResult(EditOutcome.OK)

        except TelegramRetryAfter as e:
            logger.warning(f"Message {message_id}: Telegram asked to retry after {e.retry_after}s")
            return EditResult(EditOutcome.FAILED, error=str(e))

        except TelegramBadRequest as e:
            if _is_not_modified(e):
                self.rate_limiter.record_edit(chat_id)
                return EditResult(EditOutcome.NOT_MODIFIED)
            if _is_parse_error(e):
                logger.warning(f"Message {message_id}: markup rejected: {e.message}")
                return EditResult(EditOutcome.PARSE_ERROR, error=e.message)
            logger.error(f"Message {message_id}: Telegram error: {e}")
            return EditResult(EditOutcome.FAILED, error=e.message)

        except TelegramAPIError as e:
            logger.error(f"Message {message_id}: edit failed: {e}")
            return EditResult(EditOutcome.FAILED, error=str(e))

        except Exception as e:
            logger.error(f"Message {message_id}: unexpected error: {e}")
            return EditResult(EditOutcome.FAILED, error=str(e))

    async def edit_reply_markup(
        self,
        chat_id: int,
        message_id: int,
        reply_markup: Optional[InlineKeyboardMarkup],
    ) -> bool:
        await self.wait_for_slot(chat_id)
        try:
            await self.bot.edit_message_reply_markup(
                chat_id=chat_id,
                message_id=message_id,
                reply_markup=reply_markup,
            )
            self.rate_limiter.record_edit(chat_id)
            return True
        except TelegramBadRequest as e:
            if _is_not_modified(e):
                return True
            logger.error(f"Message {message_id}: cannot update buttons: {e}")
            return False
        except TelegramAPIError as e:
            logger.error(f"Message {message_id}: cannot update buttons: {e}")
            return False

    async def send(
        self,
        chat_id: int,
        text: str,
        reply_to: Optional[int] = None,
        parse_mode: Optional[str] = ParseMode.HTML,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> Optional[Message]:
        """Send a new message; falls back to plain text if the markup is rejected"""
        reply_parameters = (
            ReplyParameters(message_id=reply_to, allow_sending_without_reply=True)
            if reply_to else None
        )
        try:
            return await self.bot.send_message(
                chat_id=chat_id,
                text=text,
                parse_mode=parse_mode,
                reply_markup=reply_markup,
                reply_parameters=reply_parameters,
            )
        except TelegramBadRequest as e:
            if not (parse_mode and _is_parse_error(e)):
                logger.error(f"send: Telegram error: {e}")
                return None
            logger.warning(f"send: markup rejected, sending plain text: {e.message}")
            try:
                return await self.bot.send_message(
                    chat_id=chat_id,
                    text=strip_html(text),
                    parse_mode=None,
                    reply_markup=reply_markup,
                    reply_parameters=reply_parameters,
                )
            except TelegramAPIError as plain_error:
                logger.error(f"send: plain text also failed: {plain_error}")
                return None
        except TelegramAPIError as e:
            logger.error(f"send: failed: {e}")
            return None

    async def send_photo(
        self,
        chat_id: int,
        photo: bytes,
        reply_to: Optional[int] = None,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
    ) -> Optional[Message]:
        try:
            return await self.bot.send_photo(
                chat_id=chat_id,
                photo=BufferedInputFile(photo, filename="image.png"),
                reply_markup=reply_markup,
                reply_parameters=(
                    ReplyParameters(message_id=reply_to, allow_sending_without_reply=True)
                    if reply_to else None
                ),
            )
        except TelegramAPIError as e:
            logger.error(f"send_photo: failed: {e}")
            return None

    async def delete(self, chat_id: int, message_id: int) -> bool:
        try:
            await self.bot.delete_message(chat_id=chat_id, message_id=message_id)
            return True
        except TelegramAPIError as e:
            logger.warning(f"Message {message_id}: delete failed: {e}")
            return False
