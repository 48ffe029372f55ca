"""
Tests for the adaptive edit-rate limiter.
"""

import pytest

from infrastructure.telegram.edit_rate_limiter import EditRateLimitConfig, EditRateLimiter
from tests.fakes import FakeClock

CHAT = 1


@pytest.fixture
def clock():
    return FakeClock(now=0.0)


@pytest.fixture
def limiter(clock):
    return EditRateLimiter(EditRateLimitConfig(), clock=clock)


class TestEditRateLimiter:
    """EditRateLimiter tests"""

    def test_first_edit_is_free(self, limiter):
        """Unknown chats wait nothing"""
        assert limiter.delay_before_next_edit(CHAT) == 0.0

    def test_min_interval_below_soft_cap(self, limiter, clock):
        """Edits are spaced by the minimum interval"""
        limiter.record_edit(CHAT)
        assert limiter.delay_before_next_edit(CHAT) == pytest.approx(0.5)

        clock.advance(0.2)
        assert limiter.delay_before_next_edit(CHAT) == pytest.approx(0.3)

        clock.advance(0.3)
        assert limiter.delay_before_next_edit(CHAT) == 0.0

    def test_quota_spread_after_soft_cap(self, limiter, clock):
        """After the soft cap the remaining quota is spread over the window"""
        for _ in range(10):
            limiter.record_edit(CHAT)
            clock.advance(0.5)
        clock.advance(-0.5)

        # 55.5s left in the window, 10 edits left
        assert limiter.delay_before_next_edit(CHAT) == pytest.approx(5.55)

    def test_delay_does_not_mutate(self, limiter, clock):
        """Asking for the delay is side-effect free"""
        limiter.record_edit(CHAT)
        before = limiter.get_stats(CHAT)
        limiter.delay_before_next_edit(CHAT)
        limiter.delay_before_next_edit(CHAT)
        assert limiter.get_stats(CHAT) == before

    def test_window_expiry_resets_count(self, limiter, clock):
        """A new window starts counting from zero"""
        for _ in range(12):
            limiter.record_edit(CHAT)
        clock.advance(61)
        limiter.record_edit(CHAT)
        assert limiter.get_stats(CHAT)["edits_in_window"] == 1

    def test_never_exceeds_hard_cap_in_rolling_window(self, limiter, clock):
        """A caller that always waits the suggested delay stays within the cap"""
        timestamps = []
        for _ in range(120):
            clock.advance(limiter.delay_before_next_edit(CHAT))
            limiter.record_edit(CHAT)
            timestamps.append(clock.now)

        for first, twenty_first in zip(timestamps, timestamps[20:]):
            assert twenty_first - first >= 60 - 1e-6

    def test_chats_are_independent(self, limiter):
        """Quota is tracked per chat"""
        limiter.record_edit(CHAT)
        assert limiter.delay_before_next_edit(CHAT + 1) == 0.0

    def test_clear(self, limiter):
        """Clearing forgets the chat"""
        limiter.record_edit(CHAT)
        limiter.clear(CHAT)
        assert limiter.get_entry(CHAT) is None
        assert limiter.delay_before_next_edit(CHAT) == 0.0
