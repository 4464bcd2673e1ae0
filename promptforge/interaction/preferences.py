"""Preference question engine.

Asks the preference keys that have no saved value, one at a time. Answers
are collected into a patch and merged over the saved preferences only for
the prompt being generated; saving them is a separate explicit action.
"""

from ..logging_config import get_logger
from ..models.conversation import ActivityStatus, ClarifyingOption, Stage
from ..models.preferences import (
    ASKABLE_PREFERENCE_KEYS,
    PreferenceKey,
    Preferences,
    merge_preferences,
    parse_temperature,
)
from .base import FlowHost, set_activity

logger = get_logger(__name__)

# Selecting this slot skips the remaining preference questions.
SKIP_ALL_SLOT = -1


def _options(*labels: str) -> list[ClarifyingOption]:
    return [ClarifyingOption(id=chr(ord("a") + i), label=label) for i, label in enumerate(labels)]


PREFERENCE_OPTIONS: dict[PreferenceKey, list[ClarifyingOption]] = {
    PreferenceKey.TONE: _options("casual", "neutral", "formal"),
    PreferenceKey.AUDIENCE: _options("general", "technical", "executive"),
    PreferenceKey.DOMAIN: _options("product", "marketing", "engineering"),
    PreferenceKey.DEPTH: _options("Brief summary", "Standard depth", "Deep dive"),
    PreferenceKey.OUTPUT_FORMAT: _options(
        "Plain text", "Bulleted list", "Step-by-step", "Table", "Outline"
    ),
    PreferenceKey.CITATION_PREFERENCE: _options(
        "No citations", "Light references", "Strict citations"
    ),
    PreferenceKey.LANGUAGE: _options("English", "Spanish", "French", "German"),
    PreferenceKey.DEFAULT_MODEL: _options(
        "gpt-4o",
        "gpt-4.1",
        "o3",
        "o4-mini",
        "claude-3.5-sonnet",
        "claude-3-opus",
        "claude-3-haiku",
        "gemini-2.5-pro",
        "gemini-2.5-flash",
    ),
    PreferenceKey.TEMPERATURE: _options("0.3 (focused)", "0.7 (balanced)", "0.9 (creative)"),
}

PREFERENCE_QUESTIONS: dict[PreferenceKey, str] = {
    PreferenceKey.TONE: "What tone would you like for this prompt? (e.g., professional, casual, technical)",
    PreferenceKey.AUDIENCE: "Who is the target audience? (e.g., developers, managers, general audience)",
    PreferenceKey.DOMAIN: "What domain is this for? (e.g., marketing, engineering, product)",
    PreferenceKey.DEFAULT_MODEL: "Which AI model are you targeting? (e.g., gpt-4, claude, gemini)",
    PreferenceKey.TEMPERATURE: (
        "What temperature/creativity level? (0.0-1.0, e.g., 0.7 for balanced, 0.9 for creative)"
    ),
    PreferenceKey.OUTPUT_FORMAT: "What output format do you prefer? (e.g., markdown, plain text, code)",
    PreferenceKey.LANGUAGE: "What language should the output be in? (e.g., English, Spanish, French)",
    PreferenceKey.DEPTH: "How detailed should the output be? (e.g., concise, detailed, comprehensive)",
    PreferenceKey.CITATION_PREFERENCE: (
        "How should citations be handled? (e.g., include sources, no citations, inline references)"
    ),
    PreferenceKey.STYLE_GUIDELINES: (
        "Any specific style guidelines? (e.g., use bullet points, keep paragraphs short, active voice)"
    ),
    PreferenceKey.PERSONA_HINTS: (
        "Any persona or voice hints? (e.g., write as a senior engineer, be helpful but concise)"
    ),
}


def preference_options(key: PreferenceKey) -> list[ClarifyingOption]:
    return PREFERENCE_OPTIONS.get(key, [])


def preference_question(key: PreferenceKey) -> str:
    return PREFERENCE_QUESTIONS.get(key, "Please provide your preference:")


def get_preferences_to_ask(preferences: Preferences, enabled: bool = True) -> list[PreferenceKey]:
    """Askable keys, in order, that have no value and are not flagged do-not-ask."""
    if not enabled:
        return []
    return [
        key
        for key in ASKABLE_PREFERENCE_KEYS
        if key not in preferences.do_not_ask_again and not preferences.has_value(key)
    ]


def _match_label(key: PreferenceKey, value) -> int:
    if value is None:
        return -1
    wanted = str(value).strip().lower()
    for index, option in enumerate(preference_options(key)):
        label = option.label.strip().lower()
        if label == wanted:
            return index
        if key == PreferenceKey.TEMPERATURE and parse_temperature(option.label) == value:
            return index
    return -1


class PreferenceEngine:
    def __init__(self, host: FlowHost, enabled: bool = True, clarifying=None):
        self.host = host
        self.enabled = enabled
        # ClarifyingEngine, used when going back past the first key
        self.clarifying = clarifying

    @property
    def state(self):
        return self.host.state

    @property
    def is_active(self) -> bool:
        state = self.state
        return state.asking_preferences and state.current_preference_key is not None

    def keys_to_ask(self) -> list[PreferenceKey]:
        return get_preferences_to_ask(self.host.preferences, self.enabled)

    def _position(self) -> int:
        state = self.state
        try:
            return state.preference_keys.index(state.current_preference_key)
        except ValueError:
            return -1

    def _show(self, index: int) -> None:
        state = self.state
        keys = state.preference_keys
        key = keys[index]
        set_activity(
            state,
            "preferences",
            f"Preferences {index + 1}/{len(keys)}",
            preference_question(key),
        )

    def _reset(self) -> None:
        state = self.state
        state.asking_preferences = False
        state.preference_keys = []
        state.current_preference_key = None
        state.preference_selected_option_index = None
        state.pending_preference_updates = Preferences()

    async def _generate(self, message: str, detail: str, override: Preferences | None = None) -> None:
        state = self.state
        set_activity(state, "preferences", message, detail, status=ActivityStatus.SUCCESS)
        await self.host.generate_final(list(state.clarifying_answers), override)

    async def start(self) -> None:
        state = self.state
        if not self.enabled:
            await self._generate("Preferences skipped", "Generating your prompt without preference questions.")
            return
        keys = self.keys_to_ask()
        if not keys:
            await self._generate(
                "Preferences up to date", "Using your saved preferences. Generating your prompt now."
            )
            return

        state.stage = Stage.PREFERENCES
        state.asking_preferences = True
        state.preference_keys = keys
        state.current_preference_key = keys[0]
        state.pending_preference_updates = Preferences()
        state.preference_selected_option_index = 0 if preference_options(keys[0]) else None
        state.input_value = ""
        self._show(0)
        logger.info("Asking %d preference questions", len(keys))

    async def answer(self, text: str) -> None:
        if not self.is_active:
            return
        state = self.state
        key = state.current_preference_key
        trimmed = text.strip()
        if key == PreferenceKey.TEMPERATURE:
            value = parse_temperature(trimmed)
        else:
            value = trimmed or None
        state.pending_preference_updates = state.pending_preference_updates.with_value(key, value)
        state.input_value = ""

        position = self._position()
        next_index = position + 1
        if 0 < next_index < len(state.preference_keys):
            next_key = state.preference_keys[next_index]
            state.current_preference_key = next_key
            saved = state.pending_preference_updates.get(next_key)
            self._restore_selection(next_key, saved)
            self._show(next_index)
            return

        updates = state.pending_preference_updates
        merged = merge_preferences(self.host.preferences, updates)
        self._reset()
        logger.info("Preference questions complete")
        await self._generate(
            "Preferences captured for this prompt", "Using these answers only for this prompt.", merged
        )

    async def skip(self) -> None:
        await self.answer("")

    async def skip_all(self) -> None:
        """Drop the collected answers and generate with the saved preferences."""
        if not self.is_active:
            return
        self._reset()
        await self._generate(
            "Preferences skipped", "Generating your prompt without additional preferences."
        )

    async def select_option(self, index: int) -> None:
        if index == SKIP_ALL_SLOT:
            await self.skip_all()
            return
        if not self.is_active:
            return
        options = preference_options(self.state.current_preference_key)
        if index < 0 or index >= len(options):
            return
        self.state.preference_selected_option_index = index
        await self.answer(options[index].label)

    def _restore_selection(self, key: PreferenceKey, saved) -> None:
        state = self.state
        options = preference_options(key)
        match = _match_label(key, saved)
        if match >= 0:
            state.preference_selected_option_index = match
            state.input_value = ""
        elif saved is not None and str(saved).strip():
            state.preference_selected_option_index = None
            state.input_value = str(saved)
        else:
            state.preference_selected_option_index = 0 if options else None
            state.input_value = ""

    def back(self) -> bool:
        """Go to the previous key; from the first key, undo the last clarifying answer."""
        if not self.is_active:
            return False
        state = self.state
        position = self._position()
        if position <= 0:
            if self.clarifying is None or not state.clarifying_answers:
                return False
            self._reset()
            return self.clarifying.undo()

        previous = state.preference_keys[position - 1]
        state.current_preference_key = previous
        self._restore_selection(previous, state.pending_preference_updates.get(previous))
        self._show(position - 1)
        return True

    async def submit(self, line: str) -> None:
        if not self.is_active:
            return
        state = self.state
        options = preference_options(state.current_preference_key)
        text = line.strip()
        if not text:
            selected = state.preference_selected_option_index
            if selected is not None and 0 <= selected < len(options):
                await self.select_option(selected)
            elif state.input_value.strip():
                await self.answer(state.input_value)
            else:
                await self.skip()
            return
        if options and text.isdigit() and 1 <= int(text) <= len(options):
            await self.select_option(int(text) - 1)
            return
        await self.answer(text)
