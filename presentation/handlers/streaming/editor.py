"""
Live message controller for streaming answers.

One StreamingEditor owns one Telegram message while an answer streams
into it. Every content update bumps ``edit_version``; an edit that was
overtaken while waiting for its rate-limit slot is dropped, so the last
caller always wins. Between content updates an idle task rotates the
status line so the user sees the bot is still working.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from aiogram.enums import ParseMode
from aiogram.types import InlineKeyboardMarkup

from domain.value_objects.grounding import GroundingData
from infrastructure.telegram.message_editor import EditOutcome, MessageEditor
from presentation.handlers.streaming.formatting import format_response_safe
from presentation.handlers.streaming.grounding import append_grounding
from presentation.handlers.streaming.status_text import STATUS_ENTRIES, status_line
from shared.constants import (
    IDLE_BASE_INTERVAL_SECONDS,
    IDLE_MAX_STRETCH,
    IDLE_STRETCH_STEP_SECONDS,
    IDLE_TOLERANCE_SECONDS,
    STATUS_ROTATE_SECONDS,
    STOPPED_MARKER,
)

logger = logging.getLogger(__name__)

# Returns the keyboard for the live message, None once the turn is finalized
ButtonsProvider = Callable[[], Optional[InlineKeyboardMarkup]]

_LAST_LINE_RE = re.compile(r'\n[^\n]+$')


@dataclass
class RawMessageParts:
    """Unescaped answer parts, kept to rebuild a safe render"""

    text: str = ""
    thinking: str = ""
    grounding: List[GroundingData] = field(default_factory=list)
    was_stopped: bool = False


@dataclass
class EditorState:
    status_index: int = 0
    idle_task: Optional[asyncio.Task] = None
    idle_stretch_count: int = 0
    last_edit_time: float = 0.0
    stopped: bool = False
    # Latest render that was current when it landed
    last_content: str = ""
    # What Telegram actually shows, overtaken edits included
    shown_text: str = ""
    shown_markup: Optional[InlineKeyboardMarkup] = None
    edit_version: int = 0
    edit_in_progress: bool = False
    raw_parts: Optional[RawMessageParts] = None
    last_status_rotate_time: float = 0.0
    idle_edit: Optional[asyncio.Task] = None


class StreamingEditor:
    """
    Streams content into a single message.

    Usage:
        editor = StreamingEditor(message_editor, chat_id, message_id, get_buttons=session.current_buttons)
        await editor.update_content("partial answer")
        ...
        editor.stop()
        await editor.update_content("full answer", reply_markup=buttons, is_final=True)
    """

    def __init__(
        self,
        message_editor: MessageEditor,
        chat_id: int,
        message_id: int,
        get_buttons: Optional[ButtonsProvider] = None,
        initial_content: str = "",
        idle_interval: float = IDLE_BASE_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.message_editor = message_editor
        self.chat_id = chat_id
        self.message_id = message_id
        self._get_buttons = get_buttons
        self._idle_interval = idle_interval
        self._clock = clock

        now = clock()
        self.state = EditorState(
            last_edit_time=now,
            last_content=initial_content,
            shown_text=initial_content,
            last_status_rotate_time=now,
        )
        self._schedule_idle_check()

    @property
    def is_stopped(self) -> bool:
        return self.state.stopped

    @property
    def last_content(self) -> str:
        return self.state.last_content

    def set_raw_parts(self, parts: RawMessageParts) -> None:
        self.state.raw_parts = parts

    def status_text(self) -> str:
        """Current status line, rotated when it has been shown long enough"""
        state = self.state
        now = self._clock()
        if now - state.last_status_rotate_time >= STATUS_ROTATE_SECONDS:
            self._advance_status(now)
        return status_line(state.status_index)

    def _advance_status(self, now: Optional[float] = None) -> None:
        self.state.status_index = (self.state.status_index + 1) % len(STATUS_ENTRIES)
        self.state.last_status_rotate_time = self._clock() if now is None else now

    async def update_content(
        self,
        content: str,
        parse_mode: Optional[str] = ParseMode.HTML,
        reply_markup: Optional[InlineKeyboardMarkup] = None,
        is_final: bool = False,
    ) -> bool:
        """
        Render content into the message.

        Non-final renders get the status line appended. Returns False when
        the edit failed or was superseded by a newer one.
        """
        state = self.state
        if state.stopped and not is_final:
            return False

        state.edit_version += 1
        captured_version = state.edit_version
        state.edit_in_progress = True
        self._cancel_idle_check()
        if is_final:
            # A final render must land after any idle edit already sent
            await self._wait_for_idle_edit()

        text = content if is_final else f"{content}\n{self.status_text()}"
        if reply_markup is None and not is_final and self._get_buttons:
            reply_markup = self._get_buttons()

        try:
            success = await self._do_edit(text, parse_mode, reply_markup, captured_version, is_final)
        finally:
            if state.edit_version == captured_version:
                state.edit_in_progress = False

        if success and not is_final and not state.stopped and state.edit_version == captured_version:
            self._reset_idle_check()
        return success

    async def update_status_only(self, reply_markup: Optional[InlineKeyboardMarkup] = None) -> bool:
        """Replace the message with just the status line"""
        state = self.state
        if state.stopped:
            return False
        state.edit_version += 1
        return await self._do_edit(self.status_text(), ParseMode.HTML, reply_markup, state.edit_version)

    def stop(self) -> None:
        """Stop idle rotation and invalidate every pending non-final edit"""
        state = self.state
        state.stopped = True
        state.edit_version += 1
        self._cancel_idle_check()

    async def delete(self) -> bool:
        self.stop()
        return await self.message_editor.delete(self.chat_id, self.message_id)

    def _is_current(self, captured_version: int, is_final: bool) -> bool:
        if is_final:
            return True
        return not self.state.stopped and self.state.edit_version == captured_version

    def _safe_render(self) -> str:
        parts = self.state.raw_parts
        content = format_response_safe(parts.text, parts.thinking)
        if parts.was_stopped:
            content = f"{content}\n\n{STOPPED_MARKER}" if content else STOPPED_MARKER
        return append_grounding(content, parts.grounding, safe=True)

    async def _do_edit(
        self,
        text: str,
        parse_mode: Optional[str],
        reply_markup: Optional[InlineKeyboardMarkup],
        captured_version: int,
        is_final: bool = False,
        is_retry: bool = False,
    ) -> bool:
        state = self.state
        result = await self.message_editor.edit(
            self.chat_id,
            self.message_id,
            text,
            parse_mode=parse_mode,
            reply_markup=reply_markup,
            current_text=state.shown_text,
            current_markup=state.shown_markup,
            guard=lambda: self._is_current(captured_version, is_final),
        )

        if result.outcome == EditOutcome.DISCARDED:
            return False

        if result.is_parse_error:
            if is_retry or state.raw_parts is None:
                logger.error(f"Message {self.message_id}: markup rejected, no fallback left")
                return False
            logger.warning(f"Message {self.message_id}: markup rejected, retrying with safe render")
            return await self._do_edit(
                self._safe_render(), parse_mode, reply_markup, captured_version, is_final, is_retry=True
            )

        if not result.success:
            logger.warning(f"Message {self.message_id}: edit failed: {result.error}")
            return False

        state.shown_text = text
        state.shown_markup = reply_markup
        if not self._is_current(captured_version, is_final):
            logger.debug(f"Message {self.message_id}: edit overtaken while in flight")
            return False

        state.last_content = text
        if result.outcome != EditOutcome.UNCHANGED:
            state.last_edit_time = self._clock()
        return True

    async def _wait_for_idle_edit(self) -> None:
        pending = self.state.idle_edit
        if pending is not None and not pending.done():
            await asyncio.wait([pending])

    def _current_interval(self) -> float:
        stretch = min(self.state.idle_stretch_count, IDLE_MAX_STRETCH)
        return self._idle_interval + stretch * IDLE_STRETCH_STEP_SECONDS

    def _schedule_idle_check(self) -> None:
        state = self.state
        if state.stopped:
            return
        if state.idle_task is not None and not state.idle_task.done():
            return
        state.idle_task = asyncio.create_task(self._idle_loop(state.edit_version))

    def _cancel_idle_check(self) -> None:
        task = self.state.idle_task
        self.state.idle_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _reset_idle_check(self) -> None:
        self._cancel_idle_check()
        self.state.idle_stretch_count = 0
        self._schedule_idle_check()

    def _idle_text(self, status: str) -> str:
        content = self.state.last_content
        if not content or "\n" not in content:
            return status
        return _LAST_LINE_RE.sub("", content) + "\n" + status

    async def _idle_loop(self, version: int) -> None:
        """Rotate the status line while no content arrives"""
        state = self.state
        while True:
            interval = self._current_interval()
            await asyncio.sleep(interval)

            if state.stopped or state.edit_version != version:
                return
            if state.edit_in_progress:
                continue
            if self._clock() - state.last_edit_time < interval - IDLE_TOLERANCE_SECONDS:
                continue

            buttons = self._get_buttons() if self._get_buttons else None
            if buttons is None:
                logger.debug(f"Message {self.message_id}: turn finalized, idle rotation stopped")
                state.stopped = True
                return

            state.idle_stretch_count += 1
            self._advance_status()
            text = self._idle_text(status_line(state.status_index))

            # Shielded: cancelling the loop must not abort a request already sent
            state.idle_edit = asyncio.create_task(self._do_edit(text, ParseMode.HTML, buttons, version))
            await asyncio.shield(state.idle_edit)
