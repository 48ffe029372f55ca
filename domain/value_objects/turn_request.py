"""What a chunk source is asked to answer"""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Callable, Optional, Tuple

from domain.value_objects.stream_chunk import StreamChunk


class CommandType(str, Enum):
    CHAT = "chat"
    IMAGE = "image"


@dataclass(frozen=True)
class TurnRequest:
    """One user turn handed to a chunk source.

    ``text`` is None on retries; the source rebuilds the prompt from
    its own history using ``user_message_id``.
    """

    chat_id: int
    user_message_id: int
    text: Optional[str] = None
    exclude_message_ids: Tuple[int, ...] = field(default_factory=tuple)
    command_type: CommandType = CommandType.CHAT
    model: str = "unknown"
    is_retry: bool = False


# Async generator function producing the answer for a turn; it should
# stop early once the abort event is set.
ChunkSource = Callable[[TurnRequest, asyncio.Event], AsyncIterator[StreamChunk]]
