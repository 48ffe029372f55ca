from infrastructure.telegram.edit_rate_limiter import EditRateLimitConfig, EditRateLimiter, RateLimiterEntry
from infrastructure.telegram.message_editor import EditOutcome, EditResult, MessageEditor

__all__ = [
    "EditRateLimitConfig",
    "EditRateLimiter",
    "RateLimiterEntry",
    "EditOutcome",
    "EditResult",
    "MessageEditor",
]
