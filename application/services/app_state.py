"""
Process-wide state of the running bot.

Built once by the container and passed to the components that need it.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Coroutine, Dict, Optional, Set, Tuple

from infrastructure.telegram.edit_rate_limiter import EditRateLimiter

if TYPE_CHECKING:
    from application.services.bot_message_service import BotMessageSession

logger = logging.getLogger(__name__)

TurnKey = Tuple[int, int]


class AppState:
    """Edit quotas, streaming sessions and edit-monitored turns"""

    def __init__(self, rate_limiter: EditRateLimiter, current_model: str = "unknown"):
        self.rate_limiter = rate_limiter
        self.current_model = current_model
        self._sessions: Dict[TurnKey, "BotMessageSession"] = {}
        # (chat_id, user_message_id) -> anchor message id
        self._edit_monitor: Dict[TurnKey, int] = {}
        self._tasks: Set[asyncio.Task] = set()

    # === Sessions ===

    def register_session(self, session: "BotMessageSession") -> None:
        key = (session.chat_id, session.first_message_id)
        previous = self._sessions.get(key)
        if previous is not None and previous is not session:
            logger.warning(f"Turn {key} already had an active session, replacing it")
            previous.stop()
        self._sessions[key] = session

    def get_session(self, chat_id: int, first_message_id: int) -> Optional["BotMessageSession"]:
        return self._sessions.get((chat_id, first_message_id))

    def release_session(self, session: "BotMessageSession") -> None:
        key = (session.chat_id, session.first_message_id)
        if self._sessions.get(key) is session:
            del self._sessions[key]

    def find_session_by_message(self, chat_id: int, message_id: int) -> Optional["BotMessageSession"]:
        """Active session that rendered the given message (anchor or continuation)"""
        for (session_chat_id, _), session in self._sessions.items():
            if session_chat_id == chat_id and message_id in session.message_ids:
                return session
        return None

    @property
    def active_session_count(self) -> int:
        return len(self._sessions)

    # === Edit monitor ===

    def monitor_edits(self, chat_id: int, user_message_id: int, first_message_id: int) -> None:
        self._edit_monitor[(chat_id, user_message_id)] = first_message_id

    def stop_monitoring(self, chat_id: int, user_message_id: int) -> None:
        self._edit_monitor.pop((chat_id, user_message_id), None)

    def monitored_turn(self, chat_id: int, user_message_id: int) -> Optional[int]:
        return self._edit_monitor.get((chat_id, user_message_id))

    # === Background tasks ===

    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine in the background, keeping a reference until it ends"""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background task {task.get_name()} failed: {error}", exc_info=error)

    async def close(self) -> None:
        """Abort streaming turns and wait for background work to wind down"""
        for session in list(self._sessions.values()):
            session.stop()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self.rate_limiter.clear()
        logger.info("Application state closed")
