from aiogram.types import InlineKeyboardMarkup, InlineKeyboardButton
from typing import Optional

from domain.value_objects.button_state import ButtonState
from shared.constants import RESPONSE_CALLBACK_PREFIX


class ResponseAction:
    STOP = "stop"
    RETRY = "retry"
    PREV = "prev"
    NEXT = "next"


def response_callback(action: str) -> str:
    return f"{RESPONSE_CALLBACK_PREFIX}:{action}"


class Keyboards:
    """Factory class for creating keyboard layouts"""

    @staticmethod
    def stop_button() -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(inline_keyboard=[[
            InlineKeyboardButton(text="⏹ Stop", callback_data=response_callback(ResponseAction.STOP))
        ]])

    @staticmethod
    def retry_button(text: str = "🔄 Retry") -> InlineKeyboardMarkup:
        return InlineKeyboardMarkup(inline_keyboard=[[
            InlineKeyboardButton(text=text, callback_data=response_callback(ResponseAction.RETRY))
        ]])

    @staticmethod
    def version_navigation(current_index: int, total: int) -> InlineKeyboardMarkup:
        """
        Version pager: ◀ (if not first), Retry with position, ▶ (if not last).

        Args:
            current_index: Zero-based index of the shown version
            total: Number of versions
        """
        row = []
        if current_index > 0:
            row.append(InlineKeyboardButton(text="◀", callback_data=response_callback(ResponseAction.PREV)))
        row.append(InlineKeyboardButton(
            text=f"🔄 {current_index + 1}/{total}",
            callback_data=response_callback(ResponseAction.RETRY),
        ))
        if current_index < total - 1:
            row.append(InlineKeyboardButton(text="▶", callback_data=response_callback(ResponseAction.NEXT)))
        return InlineKeyboardMarkup(inline_keyboard=[row])

    @staticmethod
    def response_buttons(
        state: ButtonState,
        current_index: int = 0,
        total: int = 1,
    ) -> Optional[InlineKeyboardMarkup]:
        """Keyboard for a turn in the given state, None when it shows no buttons"""
        if state == ButtonState.PROCESSING:
            return Keyboards.stop_button()
        if state == ButtonState.RETRY_ONLY:
            return Keyboards.retry_button()
        if state == ButtonState.HAS_VERSIONS:
            return Keyboards.version_navigation(current_index, total)
        if state == ButtonState.EDIT_DETECTED:
            return Keyboards.retry_button("✏️ Edited · Retry")
        return None
