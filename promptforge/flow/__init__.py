"""Conversation flow: the controller and its command router."""

from .commands import HELP_LINES, CommandRouter
from .controller import (
    CONSENT_NO,
    CONSENT_OPTIONS,
    CONSENT_YES,
    QUESTION_CONSENT,
    ConversationController,
)
from .session import ForgeSession

__all__ = [
    "ConversationController",
    "ForgeSession",
    "CommandRouter",
    "HELP_LINES",
    "CONSENT_NO",
    "CONSENT_OPTIONS",
    "CONSENT_YES",
    "QUESTION_CONSENT",
]
