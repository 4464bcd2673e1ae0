"""Question-and-answer engines driven by the flow controller."""

from .base import FlowHost, set_activity
from .clarifying import ClarifyingEngine, match_option
from .preferences import (
    PREFERENCE_OPTIONS,
    PREFERENCE_QUESTIONS,
    SKIP_ALL_SLOT,
    PreferenceEngine,
    get_preferences_to_ask,
    preference_options,
    preference_question,
)
from .wizard import PreferencesWizard, format_preferences_summary

__all__ = [
    # Contract
    "FlowHost",
    "set_activity",
    # Clarifying questions
    "ClarifyingEngine",
    "match_option",
    # Preference questions
    "PREFERENCE_OPTIONS",
    "PREFERENCE_QUESTIONS",
    "SKIP_ALL_SLOT",
    "PreferenceEngine",
    "get_preferences_to_ask",
    "preference_options",
    "preference_question",
    # Wizard
    "PreferencesWizard",
    "format_preferences_summary",
]
