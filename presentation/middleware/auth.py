import logging
from aiogram import BaseMiddleware
from aiogram.types import TelegramObject
from typing import Callable, Awaitable, Any, Dict, Iterable

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseMiddleware):
    """Drops updates from bots and from users outside the whitelist"""

    def __init__(self, allowed_user_ids: Iterable[int] = ()):
        super().__init__()
        self.allowed_user_ids = set(allowed_user_ids)

    def is_user_allowed(self, user_id: int) -> bool:
        # An empty whitelist means everyone
        return not self.allowed_user_ids or user_id in self.allowed_user_ids

    async def __call__(
        self,
        handler: Callable[[TelegramObject, Dict[str, Any]], Awaitable[Any]],
        event: TelegramObject,
        data: Dict[str, Any]
    ) -> Any:
        """Check if user is authorized"""
        user = getattr(event, "from_user", None)
        if user is None:
            logger.warning(f"{type(event).__name__} has no from_user")
            return

        if user.is_bot:
            logger.debug(f"Ignoring update from bot: {user.id}")
            return

        if not self.is_user_allowed(user.id):
            logger.warning(f"Unauthorized access attempt from user_id: {user.id} (not in whitelist)")
            return

        return await handler(event, data)
