"""Small string helpers shared by handlers"""

from shared.constants import TEXT_TRUNCATE_LIMIT


def truncate_for_telegram(text: str, limit: int = TEXT_TRUNCATE_LIMIT) -> str:
    """Cut text to at most ``limit`` characters, marking the cut with "..." """
    if len(text) > limit:
        return text[:max(limit - 3, 0)] + "..."
    return text


def safe_split_callback_data(data: str, expected_parts: int = 2) -> list[str]:
    """
    Split "prefix:action" callback data.

    Always returns ``expected_parts`` items (missing ones are empty strings),
    so callers can unpack without length checks.
    """
    parts = (data or "").split(":", expected_parts - 1)
    return parts + [""] * (expected_parts - len(parts))
