"""
Adaptive edit-rate limiter.

Telegram throttles message edits per chat. Below the soft cap edits are
spaced by a fixed minimum interval; once the soft cap is reached the
remaining quota is spread evenly over what is left of the window.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional

from shared.constants import (
    EDIT_HARD_CAP,
    EDIT_MIN_INTERVAL_SECONDS,
    EDIT_SOFT_CAP,
    EDIT_WINDOW_SECONDS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EditRateLimitConfig:
    window: float = EDIT_WINDOW_SECONDS
    soft_cap: int = EDIT_SOFT_CAP
    hard_cap: int = EDIT_HARD_CAP
    min_interval: float = EDIT_MIN_INTERVAL_SECONDS


@dataclass
class RateLimiterEntry:
    """Edit bookkeeping for one chat"""

    window_start: float
    last_edit: float
    count: int = 0
    # Timestamps of the most recent edits, at most hard_cap of them
    recent: Deque[float] = field(default_factory=deque)


class EditRateLimiter:
    """
    Per-chat edit delay calculator.

    Usage:
        delay = limiter.delay_before_next_edit(chat_id)
        await asyncio.sleep(delay)
        if await do_edit():
            limiter.record_edit(chat_id)
    """

    def __init__(
        self,
        config: Optional[EditRateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or EditRateLimitConfig()
        self._clock = clock
        self._entries: Dict[int, RateLimiterEntry] = {}

    def delay_before_next_edit(self, chat_id: int) -> float:
        """Seconds to wait before the next edit in this chat. Does not mutate state."""
        entry = self._entries.get(chat_id)
        if entry is None:
            return 0.0

        now = self._clock()
        config = self.config

        count = entry.count
        window_start = entry.window_start
        if now - window_start >= config.window:
            count = 0
            window_start = now

        if count < config.soft_cap:
            next_allowed = entry.last_edit + config.min_interval
        else:
            remaining_window = max(0.0, window_start + config.window - now)
            remaining_quota = max(1, config.hard_cap - count)
            next_allowed = entry.last_edit + remaining_window / remaining_quota

        # Never more than hard_cap edits inside any rolling window
        if len(entry.recent) >= config.hard_cap:
            next_allowed = max(next_allowed, entry.recent[0] + config.window)

        return max(0.0, next_allowed - now)

    def record_edit(self, chat_id: int) -> None:
        """Register an edit that reached Telegram"""
        now = self._clock()
        entry = self._entries.get(chat_id)
        if entry is None:
            entry = RateLimiterEntry(window_start=now, last_edit=now)
            self._entries[chat_id] = entry
        elif now - entry.window_start >= self.config.window:
            entry.window_start = now
            entry.count = 0

        entry.count += 1
        entry.last_edit = now
        entry.recent.append(now)
        while len(entry.recent) > self.config.hard_cap:
            entry.recent.popleft()

        if entry.count == self.config.soft_cap:
            logger.debug(f"[{chat_id}] Edit soft cap reached, spreading remaining quota")

    def get_entry(self, chat_id: int) -> Optional[RateLimiterEntry]:
        return self._entries.get(chat_id)

    def clear(self, chat_id: Optional[int] = None) -> None:
        if chat_id is None:
            self._entries.clear()
        else:
            self._entries.pop(chat_id, None)

    def get_stats(self, chat_id: int) -> dict:
        entry = self._entries.get(chat_id)
        if entry is None:
            return {"chat_id": chat_id, "edits_in_window": 0}
        return {
            "chat_id": chat_id,
            "edits_in_window": entry.count,
            "window_start": entry.window_start,
            "last_edit": entry.last_edit,
        }
