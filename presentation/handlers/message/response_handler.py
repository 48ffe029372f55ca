"""
Response Handler

Consumes a model's chunk stream for one turn: keeps the live message
up to date, opens continuation messages when the render grows past the
message limit, and renders the final answer with the turn's buttons.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, List, Optional

from aiogram import Bot

from application.services.app_state import AppState
from application.services.bot_message_service import (
    BotMessageService,
    BotMessageSession,
    FinalizeOptions,
)
from domain.entities.bot_response import BotResponse
from domain.services.smart_splitter import needs_split, smart_split
from domain.value_objects.button_state import ButtonState
from domain.value_objects.grounding import GroundingData
from domain.value_objects.stream_chunk import (
    CitationChunk,
    DoneChunk,
    ImageChunk,
    StreamChunk,
    TextChunk,
    ThinkingChunk,
)
from domain.value_objects.turn_request import CommandType
from infrastructure.telegram.message_editor import MessageEditor
from presentation.handlers.streaming.editor import RawMessageParts
from presentation.handlers.streaming.formatting import format_stream_display, format_thinking
from presentation.handlers.streaming.renderer import ResponseRenderer
from presentation.handlers.streaming.typing_indicator import TypingIndicator
from presentation.keyboards.keyboards import Keyboards
from shared.config.settings import StreamingConfig
from shared.constants import (
    EMPTY_RESPONSE_MARKER,
    IMAGE_PLACEHOLDER,
    NO_IMAGE_MARKER,
    SAFE_MESSAGE_LIMIT,
    STREAM_MESSAGE_LENGTH_LIMIT,
    STREAM_OVERFLOW_MARGIN,
    TEXT_SPLIT_RATIO,
    THINKING_SPLIT_RATIO,
    THINKING_SPLIT_RESERVE,
)
from shared.errors import format_error_for_user

logger = logging.getLogger(__name__)


@dataclass
class ResponseState:
    """Stream buffers; text/thinking buffers hold only what the live message shows"""

    text_buffer: str = ""
    thinking_buffer: str = ""
    full_text: str = ""
    full_thinking: str = ""
    images: List[bytes] = field(default_factory=list)
    grounding_data: List[GroundingData] = field(default_factory=list)
    model_parts: Optional[Any] = None
    is_done: bool = False


@dataclass
class AIResponse:
    text: str = ""
    thinking_text: Optional[str] = None
    images: List[bytes] = field(default_factory=list)
    grounding_data: List[GroundingData] = field(default_factory=list)
    model_parts: Optional[Any] = None


@dataclass
class ChatContext:
    session: BotMessageSession
    typing: TypingIndicator
    state: ResponseState = field(default_factory=ResponseState)
    # Background task consuming the stream, set once launched
    task: Optional[asyncio.Task] = None


class ResponseHandler:
    """
    Streams one turn into Telegram.

    Usage:
        context = await handler.create_chat_context(chat_id, user_message_id)
        await handler.run(context, chunk_stream)
    """

    def __init__(
        self,
        bot: Bot,
        bot_message_service: BotMessageService,
        message_editor: MessageEditor,
        app_state: AppState,
        renderer: ResponseRenderer,
        config: Optional[StreamingConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.bot = bot
        self.bot_message_service = bot_message_service
        self.message_editor = message_editor
        self.app_state = app_state
        self.renderer = renderer
        self.config = config or StreamingConfig()
        self._clock = clock

    async def create_chat_context(
        self,
        chat_id: int,
        user_message_id: int,
        command_type: CommandType = CommandType.CHAT,
    ) -> Optional[ChatContext]:
        session = await self.bot_message_service.create_session(
            chat_id, user_message_id, command_type=command_type
        )
        if session is None:
            return None
        return self.context_for_session(session)

    def context_for_session(self, session: BotMessageSession) -> ChatContext:
        typing = TypingIndicator(self.bot, session.chat_id, self.config.typing_interval)
        typing.start()
        return ChatContext(session=session, typing=typing)

    async def run(self, context: ChatContext, stream: AsyncIterator[StreamChunk]) -> None:
        """Process the stream and render the outcome, whatever it is"""
        try:
            response = await self.process_stream(stream, context)
            await self.send_final_response(context, response)
        except Exception as e:
            logger.error(f"Turn {context.session.chat_id}:{context.session.first_message_id}: {e}", exc_info=True)
            await self.handle_response_error(context, e)
        finally:
            context.typing.stop()

    def _apply_chunk(self, chunk: StreamChunk, context: ChatContext) -> None:
        state = context.state
        session = context.session

        if isinstance(chunk, TextChunk):
            state.text_buffer += chunk.content
            state.full_text += chunk.content
            session.append_text(chunk.content)
        elif isinstance(chunk, ThinkingChunk):
            state.thinking_buffer += chunk.content
            state.full_thinking += chunk.content
            session.append_thinking(chunk.content)
        elif isinstance(chunk, ImageChunk):
            state.images.append(chunk.data)
            session.add_image(chunk.data)
        elif isinstance(chunk, CitationChunk):
            state.grounding_data.append(chunk.grounding)
            session.add_grounding(chunk.grounding)
        elif isinstance(chunk, DoneChunk):
            state.model_parts = chunk.model_parts
            state.is_done = True
        else:
            raise TypeError(f"Unknown stream chunk: {chunk!r}")

    async def process_stream(self, stream: AsyncIterator[StreamChunk], context: ChatContext) -> AIResponse:
        """
        Read chunks until done or stop, updating the live message.

        Returns the complete answer; the live message still shows the
        status line afterwards.
        """
        session = context.session
        state = context.state
        limit = STREAM_MESSAGE_LENGTH_LIMIT
        last_update = self._clock()
        last_rendered = None

        async for chunk in stream:
            if session.is_aborted:
                logger.info(f"Turn {session.chat_id}:{session.first_message_id}: stream stopped by user")
                break

            self._apply_chunk(chunk, context)
            if state.is_done:
                break

            display = format_stream_display(state.text_buffer, state.thinking_buffer)

            if len(display) >= limit - STREAM_OVERFLOW_MARGIN:
                if not await self._open_continuation(context):
                    break
                last_update = self._clock()
                last_rendered = None
                continue

            if not (state.text_buffer or state.thinking_buffer):
                continue
            if self._clock() - last_update > self.config.update_interval:
                await session.editor.update_content(display)
                last_update = self._clock()
                last_rendered = display

        if not session.is_aborted and (state.text_buffer or state.thinking_buffer):
            display = format_stream_display(state.text_buffer, state.thinking_buffer)
            if display != last_rendered:
                await session.editor.update_content(display)

        return AIResponse(
            text=state.full_text,
            thinking_text=state.full_thinking or None,
            images=list(state.images),
            grounding_data=list(state.grounding_data),
            model_parts=state.model_parts,
        )

    async def _open_continuation(self, context: ChatContext) -> bool:
        """
        Finish the live message with what fits and move the rest to a new one.

        Thinking that alone fills the message is split first and all answer
        text is deferred; otherwise the answer text is split to fit below
        the thinking block. If the live message cannot be finished, the
        buffers are kept and the continuation waits.

        Returns False only when the continuation message cannot be sent.
        """
        session = context.session
        state = context.state
        limit = STREAM_MESSAGE_LENGTH_LIMIT

        thinking_display = format_thinking(state.thinking_buffer, collapsed=False)
        if len(thinking_display) >= limit - THINKING_SPLIT_RESERVE:
            split = smart_split(
                state.thinking_buffer, math.floor((limit - THINKING_SPLIT_RESERVE) / THINKING_SPLIT_RATIO)
            )
            thinking_now, thinking_rest = split.current_part, split.remaining
            text_now, text_rest = "", state.text_buffer
        else:
            newline = 1 if thinking_display else 0
            available = limit - len(thinking_display) - newline - THINKING_SPLIT_RESERVE
            split = smart_split(state.text_buffer, max(1, math.floor(available / TEXT_SPLIT_RATIO)))
            thinking_now, thinking_rest = state.thinking_buffer, ""
            text_now, text_rest = split.current_part, split.remaining

        editor = session.editor
        editor.stop()
        final = self.renderer.final(text_now, thinking_now)
        if not await editor.update_content(final, is_final=True):
            logger.warning(f"Message {editor.message_id}: overflow render failed, retrying once")
            if not await editor.update_content(final, is_final=True):
                # Buffers stay as they are; the next chunk or the final response renders them
                logger.error(f"Message {editor.message_id}: overflow render failed again, continuation deferred")
                return True

        if await session.create_continuation_message() is None:
            return False

        state.thinking_buffer = thinking_rest
        state.text_buffer = text_rest
        return True

    async def send_final_response(self, context: ChatContext, response: AIResponse) -> None:
        """Render the finished answer and attach the turn's buttons"""
        session = context.session
        editor = session.editor
        context.typing.stop()
        editor.stop()

        stopped = session.is_aborted
        # Earlier parts already live in continuation predecessors
        text = context.state.text_buffer
        thinking = context.state.thinking_buffer or None
        final = self.renderer.final(text, thinking, response.grounding_data, stopped)
        editor.set_raw_parts(RawMessageParts(
            text=text,
            thinking=thinking or "",
            grounding=list(response.grounding_data),
            was_stopped=stopped,
        ))
        options = FinalizeOptions(model_parts=response.model_parts, was_stopped_by_user=stopped)

        if needs_split(final, SAFE_MESSAGE_LIMIT):
            parts = self.renderer.split(final)
            await editor.update_content(parts[0], is_final=True)
            for part in parts[1:]:
                message = await self.message_editor.send(session.chat_id, part, reply_to=session.user_message_id)
                if message is None:
                    break
                session.add_message_id(message.message_id)
            await self._send_image(session, response)
            record = await session.finalize(options)
            await self._attach_buttons(session, record)
            return

        if response.images:
            await editor.update_content(final or IMAGE_PLACEHOLDER, is_final=True)
            await self._send_image(session, response)
            record = await session.finalize(options)
            await self._attach_buttons(session, record)
            return

        record = await session.finalize(options)
        state_after = record.button_state if record else ButtonState.NONE
        missing_image = session.command_type == CommandType.IMAGE and not stopped
        if missing_image and state_after == ButtonState.NONE:
            state_after = ButtonState.RETRY_ONLY

        buttons = self._buttons_for(state_after, record)
        if missing_image:
            final = f"{final}\n\n{NO_IMAGE_MARKER}" if final else NO_IMAGE_MARKER
        final = final or EMPTY_RESPONSE_MARKER
        if not await editor.update_content(final, reply_markup=buttons, is_final=True):
            logger.error(f"Turn {session.chat_id}:{session.first_message_id}: final render failed")

    async def handle_response_error(self, context: ChatContext, error: BaseException) -> None:
        """
        Show a failed stream.

        A stop that surfaced as an error still goes through the normal final
        path; anything else is stored as an errored version and rendered
        with a retry button, once more after a delay if that render fails.
        """
        session = context.session
        context.typing.stop()

        if session.is_aborted and not session.is_finalized:
            state = context.state
            await self.send_final_response(context, AIResponse(
                text=state.full_text,
                thinking_text=state.full_thinking or None,
                images=list(state.images),
                grounding_data=list(state.grounding_data),
                model_parts=state.model_parts,
            ))
            return

        if session.is_finalized:
            return

        state = context.state
        if await session.handle_error(error, state.text_buffer, state.thinking_buffer):
            return

        logger.warning(
            f"Turn {session.chat_id}:{session.first_message_id}: error render failed, "
            f"retrying in {self.config.error_retry_delay}s"
        )
        self.app_state.spawn(
            self._retry_error_render(context, format_error_for_user(error)),
            name=f"error-render-{session.chat_id}-{session.first_message_id}",
        )

    async def _retry_error_render(self, context: ChatContext, error_message: str) -> None:
        session = context.session
        await asyncio.sleep(self.config.error_retry_delay)
        state = context.state
        if not await session.render_error(error_message, None, state.text_buffer, state.thinking_buffer):
            logger.error(f"Turn {session.chat_id}:{session.first_message_id}: error render failed again")

    async def _send_image(self, session: BotMessageSession, response: AIResponse) -> None:
        if not response.images:
            return
        photo = await self.message_editor.send_photo(
            session.chat_id, response.images[0], reply_to=session.user_message_id
        )
        if photo is not None:
            session.add_message_id(photo.message_id)

    def _buttons_for(self, state: ButtonState, record: Optional[BotResponse]):
        if record is None:
            return Keyboards.response_buttons(state)
        return Keyboards.response_buttons(state, record.current_version_index, record.version_count)

    async def _attach_buttons(self, session: BotMessageSession, record: Optional[BotResponse]) -> None:
        if record is None or record.button_state == ButtonState.NONE:
            return
        buttons = self._buttons_for(record.button_state, record)
        await self.message_editor.edit_reply_markup(session.chat_id, session.current_message_id, buttons)
