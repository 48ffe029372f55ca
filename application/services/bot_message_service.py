"""
Bot Message Service

Owns the lifecycle of a bot answer: the live session while it streams,
the version history once it is finalized, and the retry / version
switching that happens afterwards through the turn's buttons.
"""

import asyncio
import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from aiogram.types import InlineKeyboardMarkup

from application.services.app_state import AppState
from domain.entities.bot_response import (
    BotResponse,
    LatestTextRecord,
    ResponseMetadata,
    ResponseVersion,
)
from domain.repositories.response_repository import ResponseRepository
from domain.value_objects.button_state import ButtonState, resolve_button_state
from domain.value_objects.grounding import GroundingData
from domain.value_objects.turn_request import CommandType
from infrastructure.telegram.message_editor import MessageEditor
from shared.constants import IMAGE_PLACEHOLDER, INITIAL_STATUS_TEXT
from shared.errors import format_error_for_user

if TYPE_CHECKING:
    from presentation.handlers.streaming.editor import StreamingEditor
    from presentation.handlers.streaming.renderer import ResponseRenderer

logger = logging.getLogger(__name__)

EditorFactory = Callable[["BotMessageSession", int, str], "StreamingEditor"]
ButtonFactory = Callable[[ButtonState, int, int], Optional[InlineKeyboardMarkup]]


class SessionStatus(str, Enum):
    ACTIVE = "active"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


class VersionDirection(str, Enum):
    PREV = "prev"
    NEXT = "next"


class StreamController:
    """Cooperative cancellation handle shared with the chunk source"""

    def __init__(self):
        self.signal = asyncio.Event()

    @property
    def aborted(self) -> bool:
        return self.signal.is_set()

    def abort(self) -> None:
        self.signal.set()


@dataclass
class FinalizeOptions:
    model_parts: Optional[Any] = None
    was_stopped_by_user: bool = False
    error_message: Optional[str] = None


class BotMessageSession:
    """
    One streaming answer (a first attempt or a retry).

    ``first_message_id`` anchors the turn and never changes. Buffers are
    only mutable while the session is ACTIVE; ``finalize`` runs once.
    """

    def __init__(
        self,
        service: "BotMessageService",
        chat_id: int,
        user_message_id: int,
        first_message_id: int,
        is_retry: bool = False,
        version_count: int = 0,
        command_type: CommandType = CommandType.CHAT,
    ):
        self._service = service
        self.chat_id = chat_id
        self.user_message_id = user_message_id
        self.first_message_id = first_message_id
        self.is_retry = is_retry
        self.version_count = version_count
        self.command_type = command_type

        self.message_ids: List[int] = [first_message_id]
        self.current_message_id = first_message_id
        self.text_buffer = ""
        self.thinking_buffer = ""
        self.images: List[bytes] = []
        self.grounding_data: List[GroundingData] = []

        self.controller = StreamController()
        self.status = SessionStatus.ACTIVE
        self.editor: Optional["StreamingEditor"] = None
        self.response: Optional[BotResponse] = None

    @property
    def is_aborted(self) -> bool:
        return self.controller.aborted

    @property
    def is_finalized(self) -> bool:
        return self.status != SessionStatus.ACTIVE

    def _can_mutate(self, what: str) -> bool:
        if self.status != SessionStatus.ACTIVE:
            logger.warning(f"Turn {self.chat_id}:{self.first_message_id}: {what} after finalize ignored")
            return False
        return True

    def append_text(self, text: str) -> bool:
        if not self._can_mutate("text"):
            return False
        self.text_buffer += text
        return True

    def append_thinking(self, text: str) -> bool:
        if not self._can_mutate("thinking"):
            return False
        self.thinking_buffer += text
        return True

    def add_image(self, data: bytes) -> bool:
        if not self._can_mutate("image"):
            return False
        self.images.append(data)
        return True

    def add_grounding(self, grounding: GroundingData) -> bool:
        if not self._can_mutate("grounding"):
            return False
        self.grounding_data.append(grounding)
        return True

    def add_message_id(self, message_id: int) -> None:
        self.message_ids.append(message_id)
        self.current_message_id = message_id

    def current_buttons(self) -> Optional[InlineKeyboardMarkup]:
        """Stop button while streaming; None signals the turn is over"""
        if self.status != SessionStatus.ACTIVE or self.is_aborted:
            return None
        return self._service.button_factory(ButtonState.PROCESSING, 0, 1)

    def stop(self) -> None:
        """Request cancellation; the stream consumer finalizes the turn"""
        if not self.is_aborted:
            logger.info(f"Turn {self.chat_id}:{self.first_message_id}: stop requested")
        self.controller.abort()

    async def create_continuation_message(self) -> Optional["StreamingEditor"]:
        """Open the next message of this answer and move the live editor to it"""
        if self.status != SessionStatus.ACTIVE:
            return None

        service = self._service
        message = await service.message_editor.send(
            self.chat_id,
            INITIAL_STATUS_TEXT,
            reply_to=self.user_message_id,
            reply_markup=self.current_buttons(),
        )
        if message is None:
            logger.error(f"Turn {self.chat_id}:{self.first_message_id}: cannot open continuation message")
            return None

        if self.editor is not None:
            self.editor.stop()
        self.add_message_id(message.message_id)
        self.editor = service.editor_factory(self, message.message_id, INITIAL_STATUS_TEXT)
        logger.info(
            f"Turn {self.chat_id}:{self.first_message_id}: continuation #{len(self.message_ids)} "
            f"-> message {message.message_id}"
        )
        return self.editor

    async def finalize(self, options: Optional[FinalizeOptions] = None) -> Optional[BotResponse]:
        """
        Store the answer as a new version and release the session.

        Runs once: later calls return None. A failed write is logged and
        the turn still ends.
        """
        if self.status != SessionStatus.ACTIVE:
            logger.debug(f"Turn {self.chat_id}:{self.first_message_id}: already finalized")
            return None
        # Set before the first await so a concurrent caller sees it
        self.status = SessionStatus.FINALIZING
        options = options or FinalizeOptions()
        service = self._service

        try:
            response = await service.repository.get_response(self.chat_id, self.first_message_id)
            version_id = (response.version_count if response else self.version_count) + 1
            version = ResponseVersion(
                version_id=version_id,
                message_ids=list(self.message_ids),
                current_message_id=self.current_message_id,
                text=self.text_buffer,
                thinking_text=self.thinking_buffer or None,
                grounding_data=list(self.grounding_data),
                error_message=options.error_message,
                model_parts=options.model_parts,
                was_stopped_by_user=options.was_stopped_by_user,
                image_base64=base64.b64encode(self.images[0]).decode("ascii") if self.images else None,
            )

            if response is None:
                logger.warning(f"Turn {self.chat_id}:{self.first_message_id}: no response record, version not stored")
            else:
                response.add_version(version)
                response.button_state = resolve_button_state(
                    response.version_count,
                    stopped=options.was_stopped_by_user,
                    errored=options.error_message is not None,
                )
                if self.images:
                    response.metadata.has_image = True
                await service.repository.save_response(response)
                self.response = response

                if response.button_state == ButtonState.NONE:
                    service.app_state.monitor_edits(self.chat_id, self.user_message_id, self.first_message_id)
                else:
                    service.app_state.stop_monitoring(self.chat_id, self.user_message_id)

            await service.repository.save_latest_text(LatestTextRecord(
                chat_id=self.chat_id,
                message_id=self.first_message_id,
                reply_to_message_id=self.user_message_id,
                text=version.history_text,
                image=self.images[0] if self.images else None,
                model_parts=options.model_parts,
            ))
            logger.info(
                f"Turn {self.chat_id}:{self.first_message_id}: finalized version {version_id} "
                f"({len(self.text_buffer)}ch, stopped={options.was_stopped_by_user}, "
                f"error={options.error_message is not None})"
            )
        except Exception as e:
            logger.error(f"Turn {self.chat_id}:{self.first_message_id}: failed to store version: {e}", exc_info=True)
        finally:
            self.status = SessionStatus.FINALIZED
            service.app_state.release_session(self)

        return self.response

    async def handle_error(
        self,
        error: BaseException,
        text: Optional[str] = None,
        thinking: Optional[str] = None,
    ) -> bool:
        """
        Finalize with the error and show it under the partial answer.

        ``text``/``thinking`` default to the whole buffers; pass the live
        message's share when earlier parts went to other messages.
        """
        error_message = format_error_for_user(error)
        logger.error(f"Turn {self.chat_id}:{self.first_message_id}: stream failed: {error}")
        response = await self.finalize(FinalizeOptions(error_message=error_message))
        return await self.render_error(error_message, response, text, thinking)

    async def render_error(
        self,
        error_message: str,
        response: Optional[BotResponse] = None,
        text: Optional[str] = None,
        thinking: Optional[str] = None,
    ) -> bool:
        if self.editor is None:
            return False
        response = response or self.response
        text = self.text_buffer if text is None else text
        thinking = self.thinking_buffer if thinking is None else thinking
        if response is not None and response.button_state == ButtonState.HAS_VERSIONS:
            buttons = self._service.button_factory(
                ButtonState.HAS_VERSIONS, response.current_version_index, response.version_count
            )
        else:
            buttons = self._service.button_factory(ButtonState.RETRY_ONLY, 0, 1)

        content = self._service.renderer.error(text, thinking, error_message)
        self.editor.stop()
        return await self.editor.update_content(content, reply_markup=buttons, is_final=True)


class BotMessageService:
    """
    Creates sessions and drives the post-stream actions of a turn.

    Collaborators are injected; the service holds no global state.
    """

    def __init__(
        self,
        message_editor: MessageEditor,
        repository: ResponseRepository,
        app_state: AppState,
        editor_factory: EditorFactory,
        button_factory: ButtonFactory,
        renderer: "ResponseRenderer",
    ):
        self.message_editor = message_editor
        self.repository = repository
        self.app_state = app_state
        self.editor_factory = editor_factory
        self.button_factory = button_factory
        self.renderer = renderer

    def get_active_session(self, chat_id: int, first_message_id: int) -> Optional[BotMessageSession]:
        return self.app_state.get_session(chat_id, first_message_id)

    async def find_turn(self, chat_id: int, message_id: int) -> Optional[BotResponse]:
        """Response record owning any message of the turn"""
        return await self.repository.find_by_message_id(chat_id, message_id)

    async def create_session(
        self,
        chat_id: int,
        user_message_id: int,
        is_retry: bool = False,
        existing_first_message_id: Optional[int] = None,
        command_type: CommandType = CommandType.CHAT,
        existing_response: Optional[BotResponse] = None,
    ) -> Optional[BotMessageSession]:
        """
        Start streaming a new answer.

        A first attempt replies to the user with a status message; a retry
        reuses the turn's anchor message instead.
        """
        stop_buttons = self.button_factory(ButtonState.PROCESSING, 0, 1)

        if is_retry and existing_first_message_id:
            first_message_id = existing_first_message_id
            result = await self.message_editor.edit(
                chat_id, first_message_id, INITIAL_STATUS_TEXT, reply_markup=stop_buttons
            )
            if not result.success:
                logger.warning(f"Turn {chat_id}:{first_message_id}: cannot reset anchor for retry: {result.error}")
        else:
            message = await self.message_editor.send(
                chat_id, INITIAL_STATUS_TEXT, reply_to=user_message_id, reply_markup=stop_buttons
            )
            if message is None:
                logger.error(f"[{chat_id}] Cannot send status message for {user_message_id}")
                return None
            first_message_id = message.message_id

        session = BotMessageSession(
            self,
            chat_id=chat_id,
            user_message_id=user_message_id,
            first_message_id=first_message_id,
            is_retry=is_retry,
            version_count=existing_response.version_count if existing_response else 0,
            command_type=command_type,
        )
        session.editor = self.editor_factory(session, first_message_id, INITIAL_STATUS_TEXT)
        self.app_state.register_session(session)

        try:
            if existing_response is not None:
                existing_response.button_state = ButtonState.PROCESSING
                await self.repository.save_response(existing_response)
            else:
                await self.repository.create_response(
                    chat_id,
                    first_message_id,
                    user_message_id,
                    ResponseMetadata(model=self.app_state.current_model, command_type=command_type),
                )
        except Exception as e:
            logger.error(f"Turn {chat_id}:{first_message_id}: cannot store response record: {e}", exc_info=True)

        logger.info(f"Turn {chat_id}:{first_message_id}: session started (retry={is_retry})")
        return session

    def find_active_session(self, chat_id: int, message_id: int) -> Optional[BotMessageSession]:
        session = self.app_state.get_session(chat_id, message_id)
        if session is not None:
            return session
        return self.app_state.find_session_by_message(chat_id, message_id)

    async def stop_response(self, chat_id: int, message_id: int) -> bool:
        session = self.find_active_session(chat_id, message_id)
        if session is None:
            return False
        session.stop()
        return True

    async def start_retry(self, chat_id: int, first_message_id: int) -> Optional[BotMessageSession]:
        """Clear the shown version's extra messages and stream a new attempt on the anchor"""
        if self.app_state.get_session(chat_id, first_message_id) is not None:
            logger.warning(f"Turn {chat_id}:{first_message_id}: retry while still streaming, ignored")
            return None

        response = await self.repository.get_response(chat_id, first_message_id)
        if response is None:
            logger.warning(f"Turn {chat_id}:{first_message_id}: retry of unknown turn")
            return None

        current = response.current_version()
        if current is not None:
            for message_id in current.message_ids:
                if message_id != first_message_id:
                    await self.message_editor.delete(chat_id, message_id)

        self.app_state.stop_monitoring(chat_id, response.user_message_id)
        return await self.create_session(
            chat_id,
            response.user_message_id,
            is_retry=True,
            existing_first_message_id=first_message_id,
            command_type=response.metadata.command_type,
            existing_response=response,
        )

    async def switch_version(self, chat_id: int, first_message_id: int, direction: VersionDirection) -> bool:
        """
        Show the previous or next stored version on the turn's messages.

        The anchor message is edited in place; extra messages of the old
        version are deleted and the new version's extras are sent again.
        """
        if self.app_state.get_session(chat_id, first_message_id) is not None:
            logger.warning(f"Turn {chat_id}:{first_message_id}: cannot switch while streaming")
            return False

        response = await self.repository.get_response(chat_id, first_message_id)
        if response is None or not response.versions:
            return False

        if direction == VersionDirection.PREV:
            if not response.can_switch_prev():
                return False
            new_index = response.current_version_index - 1
        else:
            if not response.can_switch_next():
                return False
            new_index = response.current_version_index + 1

        old_version = response.current_version()
        for message_id in old_version.message_ids:
            if message_id != first_message_id:
                await self.message_editor.delete(chat_id, message_id)

        target = response.versions[new_index]
        buttons = self.button_factory(ButtonState.HAS_VERSIONS, new_index, response.version_count)
        image = target.image_bytes

        if image and not target.text and not target.was_stopped_by_user:
            parts = [IMAGE_PLACEHOLDER]
        else:
            parts = self.renderer.split(self.renderer.version(target))

        message_ids = [first_message_id]
        first_markup = buttons if len(parts) == 1 and not image else None
        if not await self._edit_with_fallback(chat_id, first_message_id, parts[0], target, first_markup):
            logger.warning(f"Turn {chat_id}:{first_message_id}: anchor edit failed while switching")

        for number, part in enumerate(parts[1:], start=2):
            is_last = number == len(parts)
            message = await self.message_editor.send(
                chat_id,
                part,
                reply_to=response.user_message_id,
                reply_markup=buttons if is_last and not image else None,
            )
            if message is not None:
                message_ids.append(message.message_id)

        if image:
            photo = await self.message_editor.send_photo(
                chat_id, image, reply_to=response.user_message_id, reply_markup=buttons
            )
            if photo is not None:
                message_ids.append(photo.message_id)

        response.select_version(new_index)
        response.replace_version(
            new_index,
            target.model_copy(update={"message_ids": message_ids, "current_message_id": message_ids[-1]}),
        )
        response.button_state = ButtonState.HAS_VERSIONS
        await self.repository.save_response(response)
        await self.repository.save_latest_text(LatestTextRecord(
            chat_id=chat_id,
            message_id=first_message_id,
            reply_to_message_id=response.user_message_id,
            text=target.history_text,
            image=image,
            model_parts=target.model_parts,
        ))
        logger.info(f"Turn {chat_id}:{first_message_id}: showing version {new_index + 1}/{response.version_count}")
        return True

    async def mark_edit_detected(self, chat_id: int, user_message_id: int) -> bool:
        """Offer a retry on a finished turn whose source message was edited"""
        first_message_id = self.app_state.monitored_turn(chat_id, user_message_id)
        if first_message_id is None:
            return False
        self.app_state.stop_monitoring(chat_id, user_message_id)

        response = await self.repository.get_response(chat_id, first_message_id)
        if response is None:
            return False

        response.button_state = ButtonState.EDIT_DETECTED
        await self.repository.save_response(response)

        version = response.current_version()
        target_id = version.current_message_id if version else first_message_id
        buttons = self.button_factory(
            ButtonState.EDIT_DETECTED, response.current_version_index, response.version_count
        )
        return await self.message_editor.edit_reply_markup(chat_id, target_id, buttons)

    async def _edit_with_fallback(
        self,
        chat_id: int,
        message_id: int,
        content: str,
        version: ResponseVersion,
        reply_markup: Optional[InlineKeyboardMarkup],
    ) -> bool:
        result = await self.message_editor.edit(chat_id, message_id, content, reply_markup=reply_markup)
        if result.is_parse_error:
            safe = self.renderer.split(self.renderer.version_safe(version))[0]
            result = await self.message_editor.edit(chat_id, message_id, safe, reply_markup=reply_markup)
        return result.success
