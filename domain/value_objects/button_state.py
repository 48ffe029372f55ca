"""Button state of a finished or streaming turn"""

from enum import Enum


class ButtonState(str, Enum):
    """Which actions the turn's keyboard offers"""

    NONE = "none"
    PROCESSING = "processing"
    RETRY_ONLY = "retry_only"
    HAS_VERSIONS = "has_versions"
    EDIT_DETECTED = "edit_detected"


def resolve_button_state(version_count: int, stopped: bool = False, errored: bool = False) -> ButtonState:
    """State a turn lands in right after a version is finalized"""
    if version_count > 1:
        return ButtonState.HAS_VERSIONS
    if stopped or errored:
        return ButtonState.RETRY_ONLY
    return ButtonState.NONE
