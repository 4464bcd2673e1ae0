"""Billing-cycle usage ledger with tiered quotas and a premium sub-allowance.

Every counter change is a single conditional UPDATE at the storage layer,
so two sessions consuming quota for the same user can never both pass the
check on a stale read.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from ..errors import QuotaExceeded
from ..logging_config import get_logger
from ..models.quota import QUOTA_COLUMNS, QuotaKind, QuotaRecord, SubscriptionTier

if TYPE_CHECKING:
    from ..storage.database import PromptDatabase

logger = get_logger(__name__)


@dataclass(frozen=True)
class TierDefaults:
    generations: int
    edits: int
    clarifying: int
    premium_finals: int = 0


TIER_DEFAULTS: dict[SubscriptionTier, TierDefaults] = {
    SubscriptionTier.TRIAL: TierDefaults(generations=50, edits=15, clarifying=50, premium_finals=0),
    SubscriptionTier.BASIC: TierDefaults(generations=800, edits=200, clarifying=800, premium_finals=0),
    # Up to 200 of the advanced tier's finals may use the premium model.
    SubscriptionTier.ADVANCED: TierDefaults(generations=1800, edits=400, clarifying=1800, premium_finals=200),
    SubscriptionTier.EXPIRED: TierDefaults(generations=0, edits=0, clarifying=0, premium_finals=0),
}


def calendar_days_between(later: datetime, earlier: datetime) -> int:
    return (later.date() - earlier.date()).days


def has_active_subscription(record: QuotaRecord | None, now: datetime | None = None) -> bool:
    """Whether ``record`` currently grants access to paid features."""
    if record is None or record.tier == SubscriptionTier.EXPIRED:
        return False
    if record.tier == SubscriptionTier.TRIAL:
        now = now or datetime.now()
        return record.trial_expires_at is not None and record.trial_expires_at >= now
    return True


class QuotaLedger:
    """Loads, refreshes and consumes per-user subscription quotas."""

    def __init__(
        self,
        db: "PromptDatabase",
        billing_cycle_days: int = 30,
        trial_days: int = 3,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.billing_cycle_days = billing_cycle_days
        self.trial_days = trial_days
        self._clock = clock

    def _tier_fields(self, tier: SubscriptionTier) -> dict:
        defaults = TIER_DEFAULTS.get(tier, TIER_DEFAULTS[SubscriptionTier.TRIAL])
        return {
            "quota_generations": defaults.generations,
            "quota_edits": defaults.edits,
            "quota_clarifying": defaults.clarifying,
            "premium_finals_remaining": defaults.premium_finals,
        }

    async def _ensure_record(self, user_id: str) -> QuotaRecord:
        record = await self.db.get_subscription(user_id)
        if record is not None:
            return record
        now = self._clock()
        fresh = QuotaRecord(
            user_id=user_id,
            tier=SubscriptionTier.TRIAL,
            period_start=now,
            trial_expires_at=now + timedelta(days=self.trial_days),
            **self._tier_fields(SubscriptionTier.TRIAL),
        )
        # Another session may have created it first; either way re-read.
        await self.db.insert_subscription_if_missing(fresh)
        logger.info("Created trial subscription for %s", user_id)
        return await self.db.get_subscription(user_id) or fresh

    async def _expire_trial_if_needed(self, record: QuotaRecord) -> QuotaRecord:
        now = self._clock()
        if not (
            record.tier == SubscriptionTier.TRIAL
            and record.trial_expires_at is not None
            and record.trial_expires_at < now
        ):
            return record
        updated = await self.db.update_subscription(
            record.user_id,
            {
                "tier": SubscriptionTier.EXPIRED.value,
                **self._tier_fields(SubscriptionTier.EXPIRED),
                "usage_generations": 0,
                "usage_edits": 0,
                "usage_clarifying": 0,
            },
            expected_tier=SubscriptionTier.TRIAL.value,
        )
        logger.info("Trial expired for %s", record.user_id)
        return updated or await self.db.get_subscription(record.user_id) or record

    async def _reset_cycle_if_needed(self, record: QuotaRecord) -> QuotaRecord:
        now = self._clock()
        if calendar_days_between(now, record.period_start) < self.billing_cycle_days:
            return record
        defaults = TIER_DEFAULTS.get(record.tier, TIER_DEFAULTS[SubscriptionTier.TRIAL])
        updated = await self.db.update_subscription(
            record.user_id,
            {
                "usage_generations": 0,
                "usage_edits": 0,
                "usage_clarifying": 0,
                "period_start": now.isoformat(),
                "premium_finals_remaining": defaults.premium_finals,
            },
            expected_period_start=record.period_start.isoformat(),
        )
        logger.info("Billing cycle reset for %s", record.user_id)
        return updated or await self.db.get_subscription(record.user_id) or record

    async def load(self, user_id: str) -> QuotaRecord:
        """Load (or lazily create) a record and apply expiry and cycle resets."""
        record = await self._ensure_record(user_id)
        record = await self._expire_trial_if_needed(record)
        record = await self._reset_cycle_if_needed(record)
        return record

    async def consume_quota(self, user_id: str, kind: QuotaKind) -> QuotaRecord:
        """Consume one unit of ``kind``.

        Raises:
            QuotaExceeded: when usage would go past the quota.
        """
        record = await self.load(user_id)
        if record.remaining(kind) <= 0:
            raise QuotaExceeded(kind.value)
        usage_column, quota_column = QUOTA_COLUMNS[kind]
        updated = await self.db.increment_usage(user_id, usage_column, quota_column)
        if updated is None:
            logger.info("Quota exhausted for %s (%s)", user_id, kind.value)
            raise QuotaExceeded(kind.value)
        return updated

    async def consume_premium_slot(self, user_id: str) -> QuotaRecord:
        """Take one premium-final slot, independent of the generation counter."""
        await self.load(user_id)
        updated = await self.db.decrement_premium(user_id)
        if updated is None:
            raise QuotaExceeded(QuotaKind.GENERATION.value)
        return updated

    async def set_tier(self, user_id: str, tier: SubscriptionTier) -> QuotaRecord:
        """Move a user to ``tier`` and start a fresh cycle with its quotas."""
        await self._ensure_record(user_id)
        now = self._clock()
        fields = {
            "tier": tier.value,
            **self._tier_fields(tier),
            "usage_generations": 0,
            "usage_edits": 0,
            "usage_clarifying": 0,
            "period_start": now.isoformat(),
        }
        if tier != SubscriptionTier.TRIAL:
            fields["trial_expires_at"] = None
        updated = await self.db.update_subscription(user_id, fields)
        logger.info("Subscription for %s set to %s", user_id, tier.value)
        return updated or await self.load(user_id)
