"""Final renders of answers and stored versions"""

import re
from typing import List, Optional, Sequence

from domain.entities.bot_response import ResponseVersion
from domain.services.smart_splitter import split_all
from domain.value_objects.grounding import GroundingData
from presentation.handlers.streaming.formatting import (
    balance_html,
    escape_html,
    format_response,
    format_response_safe,
)
from presentation.handlers.streaming.grounding import append_grounding
from shared.constants import EMPTY_RESPONSE_MARKER, SAFE_MESSAGE_LIMIT, STOPPED_MARKER


def _with_stopped_marker(content: str) -> str:
    return f"{content}\n\n{STOPPED_MARKER}" if content else STOPPED_MARKER


class ResponseRenderer:
    """Turns answer parts into Telegram HTML"""

    def final(
        self,
        text: str,
        thinking: Optional[str] = None,
        grounding: Sequence[GroundingData] = (),
        stopped: bool = False,
    ) -> str:
        content = format_response(text, thinking)
        if stopped:
            content = _with_stopped_marker(content)
        return append_grounding(content, grounding)

    def safe(
        self,
        text: str,
        thinking: Optional[str] = None,
        grounding: Sequence[GroundingData] = (),
        stopped: bool = False,
    ) -> str:
        content = format_response_safe(text, thinking)
        if stopped:
            content = _with_stopped_marker(content)
        return append_grounding(content, grounding, safe=True)

    def error(self, text: str, thinking: Optional[str], error_message: str) -> str:
        """Partial answer plus an error suffix, always fitting one message"""
        suffix = f"<b>Error:</b> {escape_html(error_message)}"
        content = format_response_safe(text, thinking)
        if not content:
            return suffix
        limit = SAFE_MESSAGE_LIMIT - len(suffix) - 2
        if len(content) > limit:
            # Cut entities like "&amp;" must not survive the truncation
            content = balance_html(re.sub(r"&\w*$", "", content[:limit - 3]) + "...")
        return f"{content}\n\n{suffix}"

    def version(self, version: ResponseVersion) -> str:
        content = self.final(
            version.text, version.thinking_text, version.grounding_data, version.was_stopped_by_user
        )
        return content or EMPTY_RESPONSE_MARKER

    def version_safe(self, version: ResponseVersion) -> str:
        content = self.safe(
            version.text, version.thinking_text, version.grounding_data, version.was_stopped_by_user
        )
        return content or EMPTY_RESPONSE_MARKER

    def split(self, content: str, max_length: int = SAFE_MESSAGE_LIMIT) -> List[str]:
        """Split a render into message-sized parts, each valid HTML on its own"""
        parts = split_all(content, max_length)
        if len(parts) <= 1:
            return parts or [content]
        return [balance_html(part) for part in parts]
