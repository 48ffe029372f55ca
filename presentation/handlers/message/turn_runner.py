"""Starts streaming turns: first attempts and retries"""

import logging
from typing import Optional

from application.services.app_state import AppState
from application.services.bot_message_service import BotMessageSession
from domain.value_objects.turn_request import ChunkSource, CommandType, TurnRequest
from presentation.handlers.message.response_handler import ChatContext, ResponseHandler

logger = logging.getLogger(__name__)


class TurnRunner:
    """Connects a chunk source to the response handler for each turn"""

    def __init__(self, response_handler: ResponseHandler, chunk_source: ChunkSource, app_state: AppState):
        self.response_handler = response_handler
        self.chunk_source = chunk_source
        self.app_state = app_state

    async def start(
        self,
        chat_id: int,
        user_message_id: int,
        text: str,
        command_type: CommandType = CommandType.CHAT,
    ) -> Optional[ChatContext]:
        context = await self.response_handler.create_chat_context(chat_id, user_message_id, command_type)
        if context is None:
            return None
        request = TurnRequest(
            chat_id=chat_id,
            user_message_id=user_message_id,
            text=text,
            command_type=command_type,
            model=self.app_state.current_model,
        )
        self._launch(context, request)
        return context

    async def retry(self, session: BotMessageSession) -> ChatContext:
        """Stream a new attempt into a session created by start_retry"""
        context = self.response_handler.context_for_session(session)
        request = TurnRequest(
            chat_id=session.chat_id,
            user_message_id=session.user_message_id,
            exclude_message_ids=(session.first_message_id,),
            command_type=session.command_type,
            model=self.app_state.current_model,
            is_retry=True,
        )
        self._launch(context, request)
        return context

    def _launch(self, context: ChatContext, request: TurnRequest) -> None:
        session = context.session
        stream = self.chunk_source(request, session.controller.signal)
        context.task = self.app_state.spawn(
            self.response_handler.run(context, stream),
            name=f"turn-{session.chat_id}-{session.first_message_id}",
        )
        logger.info(f"Turn {session.chat_id}:{session.first_message_id}: streaming started (retry={request.is_retry})")
