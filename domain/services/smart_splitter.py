"""Boundary-preserving text splitter"""

from dataclasses import dataclass

from shared.constants import SAFE_MESSAGE_LIMIT


@dataclass(frozen=True)
class SplitResult:
    """Head that fits in one message plus everything after it.

    ``current_part + remaining`` is always the original text.
    """

    current_part: str
    remaining: str

    @property
    def has_remaining(self) -> bool:
        return bool(self.remaining)


def needs_split(text: str, max_length: int = SAFE_MESSAGE_LIMIT) -> bool:
    return len(text) > max_length


def smart_split(text: str, max_length: int = SAFE_MESSAGE_LIMIT) -> SplitResult:
    """
    Split text at the last newline (or space) that fits in max_length.

    The separator stays with the head. Without any separator in range the
    text is hard-cut at max_length, so the head is never empty.

    Raises:
        ValueError: if max_length is smaller than 1
    """
    if max_length < 1:
        raise ValueError(f"max_length must be >= 1, got {max_length}")

    if len(text) <= max_length:
        return SplitResult(current_part=text, remaining="")

    window = text[:max_length]

    split_at = window.rfind("\n")
    if split_at == -1:
        split_at = window.rfind(" ")

    if split_at == -1:
        cut = max_length
    else:
        cut = split_at + 1

    return SplitResult(current_part=text[:cut], remaining=text[cut:])


def split_all(text: str, max_length: int = SAFE_MESSAGE_LIMIT) -> list[str]:
    """Split text into as many parts as needed, each at most max_length long"""
    parts = []
    remaining = text
    while remaining:
        result = smart_split(remaining, max_length)
        parts.append(result.current_part)
        remaining = result.remaining
    return parts
