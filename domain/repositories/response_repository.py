from abc import ABC, abstractmethod
from typing import Optional

from domain.entities.bot_response import BotResponse, LatestTextRecord, ResponseMetadata


class ResponseRepository(ABC):
    """Storage contract for turn version histories"""

    @abstractmethod
    async def create_response(
        self,
        chat_id: int,
        message_id: int,
        user_message_id: int,
        metadata: ResponseMetadata,
    ) -> BotResponse:
        """Create an empty record anchored at message_id"""

    @abstractmethod
    async def get_response(self, chat_id: int, message_id: int) -> Optional[BotResponse]:
        """Get a record by its anchor message id"""

    @abstractmethod
    async def find_by_message_id(self, chat_id: int, message_id: int) -> Optional[BotResponse]:
        """Get the record that any of its version messages belongs to"""

    @abstractmethod
    async def save_response(self, response: BotResponse) -> None:
        pass

    @abstractmethod
    async def save_latest_text(self, record: LatestTextRecord) -> None:
        pass

    @abstractmethod
    async def get_latest_text(self, chat_id: int, message_id: int) -> Optional[LatestTextRecord]:
        pass
