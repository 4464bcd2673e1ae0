"""Data models for conversations, preferences and quotas."""

from .conversation import (
    BACK_SLOT,
    OWN_ANSWER_SLOT,
    ActivityStatus,
    ClarifyingAnswer,
    ClarifyingOption,
    ClarifyingPhase,
    ClarifyingQuestion,
    ConversationState,
    PromptEditDiff,
    Snapshot,
    Stage,
    TaskActivity,
    TranscriptLine,
    UnclearDecision,
)
from .preferences import (
    DEFAULT_TEMPERATURE,
    PreferenceKey,
    Preferences,
    clamp_temperature,
    merge_preferences,
    parse_temperature,
    resolve_temperature,
)
from .quota import (
    GeneratedPrompt,
    HistoryItem,
    QuotaKind,
    QuotaRecord,
    RateBucket,
    SubscriptionTier,
)

__all__ = [
    # Conversation
    "BACK_SLOT",
    "OWN_ANSWER_SLOT",
    "ActivityStatus",
    "ClarifyingAnswer",
    "ClarifyingOption",
    "ClarifyingPhase",
    "ClarifyingQuestion",
    "ConversationState",
    "PromptEditDiff",
    "Snapshot",
    "Stage",
    "TaskActivity",
    "TranscriptLine",
    "UnclearDecision",
    # Preferences
    "DEFAULT_TEMPERATURE",
    "PreferenceKey",
    "Preferences",
    "clamp_temperature",
    "merge_preferences",
    "parse_temperature",
    "resolve_temperature",
    # Quota
    "GeneratedPrompt",
    "HistoryItem",
    "QuotaKind",
    "QuotaRecord",
    "RateBucket",
    "SubscriptionTier",
]
