"""The /preferences wizard: three steps (tone, audience, domain) that save defaults."""

from ..logging_config import get_logger
from ..models.preferences import PreferenceKey, Preferences, merge_preferences
from .base import FlowHost

logger = get_logger(__name__)

WIZARD_STEPS = ("tone", "audience", "domain")

WIZARD_PROMPTS = {
    "tone": "What tone do you usually want? (for example: casual, neutral, formal?)",
    "audience": "Got it. Who are you usually writing for? (for example: founders, devs, general audience?)",
    "domain": "What domains do you mostly work in? (for example: product, marketing, engineering?)",
}

NO_PREFERENCES = "no preferences set yet"


def format_preferences_summary(preferences: Preferences) -> str:
    parts = []
    if preferences.tone:
        parts.append(f"tone={preferences.tone}")
    if preferences.audience:
        parts.append(f"audience={preferences.audience}")
    if preferences.domain:
        parts.append(f"domain={preferences.domain}")
    if preferences.default_model:
        parts.append(f"model={preferences.default_model}")
    if preferences.output_format:
        parts.append(f"format={preferences.output_format}")
    if preferences.language:
        parts.append(f"lang={preferences.language}")
    if preferences.depth:
        parts.append(f"depth={preferences.depth}")
    if preferences.temperature is not None:
        parts.append(f"temp={preferences.temperature}")
    return ", ".join(parts) if parts else NO_PREFERENCES


class PreferencesWizard:
    def __init__(self, host: FlowHost):
        self.host = host

    @property
    def is_active(self) -> bool:
        return self.host.state.preferences_step is not None

    def start(self) -> None:
        state = self.host.state
        state.preferences_step = WIZARD_STEPS[0]
        state.wizard_updates = Preferences()
        state.add_line("assistant", f"Current preferences: {format_preferences_summary(self.host.preferences)}")
        state.add_line("assistant", WIZARD_PROMPTS[WIZARD_STEPS[0]])

    def cancel(self) -> None:
        state = self.host.state
        state.preferences_step = None
        state.wizard_updates = Preferences()

    async def advance(self, answer: str) -> Preferences | None:
        """Record one step. Returns the saved preferences after the last step."""
        state = self.host.state
        step = state.preferences_step
        if step is None:
            return None
        value = answer.strip()
        # Empty or "skip" keeps the current value
        if value and value.lower() != "skip":
            state.wizard_updates = state.wizard_updates.with_value(PreferenceKey(step), value)

        position = WIZARD_STEPS.index(step)
        if position + 1 < len(WIZARD_STEPS):
            next_step = WIZARD_STEPS[position + 1]
            state.preferences_step = next_step
            state.add_line("assistant", WIZARD_PROMPTS[next_step])
            return None

        merged = merge_preferences(self.host.preferences, state.wizard_updates)
        self.cancel()
        await self.host.persist_preferences(merged)
        state.add_line("assistant", f"Updated preferences: {format_preferences_summary(merged)}")
        state.add_line("assistant", "These will be used to steer how prompts are shaped for you.")
        logger.info("Preferences wizard saved")
        return merged
