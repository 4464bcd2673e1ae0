"""Subscription, quota and history records."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class QuotaKind(str, Enum):
    CLARIFYING = "clarifying"
    GENERATION = "generation"
    EDIT = "edit"


class SubscriptionTier(str, Enum):
    TRIAL = "free_trial"
    BASIC = "basic"
    ADVANCED = "advanced"
    EXPIRED = "expired"


class QuotaRecord(BaseModel):
    """One user's subscription row for the current billing cycle."""

    user_id: str
    tier: SubscriptionTier = SubscriptionTier.TRIAL
    period_start: datetime = Field(default_factory=datetime.now)
    trial_expires_at: datetime | None = None

    quota_generations: int = 0
    quota_edits: int = 0
    quota_clarifying: int = 0

    usage_generations: int = 0
    usage_edits: int = 0
    usage_clarifying: int = 0

    premium_finals_remaining: int = 0

    def quota_for(self, kind: QuotaKind) -> int:
        return getattr(self, QUOTA_COLUMNS[kind][1])

    def usage_for(self, kind: QuotaKind) -> int:
        return getattr(self, QUOTA_COLUMNS[kind][0])

    def remaining(self, kind: QuotaKind) -> int:
        return max(0, self.quota_for(kind) - self.usage_for(kind))


# kind -> (usage column, quota column)
QUOTA_COLUMNS: dict[QuotaKind, tuple[str, str]] = {
    QuotaKind.CLARIFYING: ("usage_clarifying", "quota_clarifying"),
    QuotaKind.GENERATION: ("usage_generations", "quota_generations"),
    QuotaKind.EDIT: ("usage_edits", "quota_edits"),
}


@dataclass
class RateBucket:
    """Fixed-window request counter for one ``user:scope`` or ``ip:scope`` key."""
    key: str
    count: int = 0
    reset_at: float = 0.0


class GeneratedPrompt(BaseModel):
    id: str
    label: str
    body: str


class HistoryItem(BaseModel):
    """A saved generation, newest first when listed."""
    id: str
    task: str
    label: str
    body: str
    created_at: datetime
