"""Rotating "working" indicator shown under a live message"""

from typing import Tuple

STATUS_ENTRIES: Tuple[Tuple[str, str], ...] = (
    ("✽", "Thinking..."),
    ("◐", "Processing..."),
    ("◑", "Analyzing..."),
    ("◒", "Computing..."),
    ("◓", "Synthesizing..."),
    ("●", "Reasoning..."),
    ("◯", "Generating..."),
    ("◈", "Composing..."),
    ("◇", "Reflecting..."),
    ("◆", "Iterating..."),
    ("▲", "Optimizing..."),
    ("▼", "Finalizing..."),
)


def status_line(index: int) -> str:
    symbol, message = STATUS_ENTRIES[index % len(STATUS_ENTRIES)]
    return f"{symbol} {message}"
