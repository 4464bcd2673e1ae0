"""Rate limiting and subscription quota accounting."""

from .ledger import TIER_DEFAULTS, QuotaLedger, TierDefaults, has_active_subscription
from .rate_limiter import RateLimiter

__all__ = [
    "QuotaLedger",
    "RateLimiter",
    "TIER_DEFAULTS",
    "TierDefaults",
    "has_active_subscription",
]
