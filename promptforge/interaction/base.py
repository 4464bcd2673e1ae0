"""Shared contract between the Q&A engines and the flow controller."""

from typing import Any, Protocol

from ..models.conversation import (
    ActivityStatus,
    ClarifyingAnswer,
    ConversationState,
    TaskActivity,
)
from ..models.preferences import PreferenceKey, Preferences


class FlowHost(Protocol):
    """What an engine needs from the controller that owns the state.

    Engines read ``host.state`` on every call; the controller may swap the
    whole state object on restore or clear.
    """

    state: ConversationState
    preferences: Preferences

    def preferences_to_ask(self) -> list[PreferenceKey]: ...

    async def start_preferences(self) -> None: ...

    async def generate_final(
        self,
        answers: list[ClarifyingAnswer],
        preferences_override: Preferences | None = None,
    ) -> None: ...

    async def persist_preferences(self, preferences: Preferences) -> None: ...

    def record_event(self, event_type: Any, payload: dict) -> None: ...


def set_activity(
    state: ConversationState,
    stage: str,
    message: str,
    detail: str = "",
    status: ActivityStatus = ActivityStatus.RUNNING,
) -> None:
    state.activity = TaskActivity(
        task=state.pending_task or "",
        stage=stage,
        status=status,
        message=message,
        detail=detail,
    )
