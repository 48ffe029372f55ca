"""Persisted answer history of one turn"""

import base64
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.value_objects.button_state import ButtonState
from domain.value_objects.grounding import GroundingData
from domain.value_objects.turn_request import CommandType
from shared.constants import EMPTY_RESPONSE_MARKER, STOPPED_MARKER


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResponseVersion(BaseModel):
    """One complete attempt at answering a turn (immutable)"""

    model_config = ConfigDict(frozen=True)

    version_id: int
    created_at: datetime = Field(default_factory=_utcnow)
    message_ids: List[int] = Field(default_factory=list)
    current_message_id: int
    text: str = ""
    thinking_text: Optional[str] = None
    grounding_data: List[GroundingData] = Field(default_factory=list)
    error_message: Optional[str] = None
    model_parts: Optional[Any] = None
    was_stopped_by_user: bool = False
    image_base64: Optional[str] = None

    @property
    def display_text(self) -> str:
        """Text as it is shown in history: with the stopped marker"""
        if not self.was_stopped_by_user:
            return self.text
        if not self.text:
            return STOPPED_MARKER
        return f"{self.text}\n\n{STOPPED_MARKER}"

    @property
    def history_text(self) -> str:
        if self.was_stopped_by_user:
            return self.display_text
        return self.text or EMPTY_RESPONSE_MARKER

    @property
    def image_bytes(self) -> Optional[bytes]:
        if not self.image_base64:
            return None
        return base64.b64decode(self.image_base64)


class ResponseMetadata(BaseModel):
    model: str = "unknown"
    has_image: bool = False
    command_type: CommandType = CommandType.CHAT
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None


@dataclass
class BotResponse:
    """
    Version history of a turn, keyed by the first bot message (the anchor).

    Versions are append-only; ``current_version_index`` always points at
    an existing version once the first one is added.
    """

    chat_id: int
    message_id: int
    user_message_id: int
    versions: List[ResponseVersion] = field(default_factory=list)
    current_version_index: int = 0
    button_state: ButtonState = ButtonState.PROCESSING
    metadata: ResponseMetadata = field(default_factory=ResponseMetadata)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def version_count(self) -> int:
        return len(self.versions)

    def current_version(self) -> Optional[ResponseVersion]:
        if not self.versions:
            return None
        return self.versions[self.current_version_index]

    def add_version(self, version: ResponseVersion) -> None:
        self.versions.append(version)
        self.current_version_index = len(self.versions) - 1
        self.updated_at = _utcnow()

    def select_version(self, index: int) -> ResponseVersion:
        if not 0 <= index < len(self.versions):
            raise IndexError(f"Version index {index} out of range (0..{len(self.versions) - 1})")
        self.current_version_index = index
        self.updated_at = _utcnow()
        return self.versions[index]

    def replace_version(self, index: int, version: ResponseVersion) -> None:
        """Swap in an updated copy of an existing version (e.g. new message ids)"""
        if not 0 <= index < len(self.versions):
            raise IndexError(f"Version index {index} out of range")
        self.versions[index] = version
        self.updated_at = _utcnow()

    def has_multiple_versions(self) -> bool:
        return len(self.versions) > 1

    def can_switch_prev(self) -> bool:
        return self.current_version_index > 0

    def can_switch_next(self) -> bool:
        return self.current_version_index < len(self.versions) - 1

    def owns_message(self, message_id: int) -> bool:
        if message_id == self.message_id:
            return True
        return any(message_id in version.message_ids for version in self.versions)

    def to_record(self) -> Dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "message_id": self.message_id,
            "user_message_id": self.user_message_id,
            "versions": [version.model_dump(mode="json") for version in self.versions],
            "current_version_index": self.current_version_index,
            "button_state": self.button_state.value,
            "metadata": self.metadata.model_dump(mode="json"),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "BotResponse":
        versions = [ResponseVersion.model_validate(v) for v in record.get("versions") or []]
        index = record.get("current_version_index", 0)
        if versions and not 0 <= index < len(versions):
            index = len(versions) - 1
        return cls(
            chat_id=record["chat_id"],
            message_id=record["message_id"],
            user_message_id=record["user_message_id"],
            versions=versions,
            current_version_index=index,
            button_state=ButtonState(record.get("button_state", ButtonState.NONE.value)),
            metadata=ResponseMetadata.model_validate(record.get("metadata") or {}),
            created_at=datetime.fromisoformat(record["created_at"]) if record.get("created_at") else _utcnow(),
            updated_at=datetime.fromisoformat(record["updated_at"]) if record.get("updated_at") else _utcnow(),
        )


@dataclass
class LatestTextRecord:
    """Denormalized bot message for history readers"""

    chat_id: int
    message_id: int
    reply_to_message_id: Optional[int]
    text: str
    image: Optional[bytes] = None
    model_parts: Optional[Any] = None
    date: datetime = field(default_factory=_utcnow)
