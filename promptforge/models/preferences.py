"""Preference settings that shape the generated prompt."""

from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_TEMPERATURE = 0.4


class PreferenceKey(str, Enum):
    """Reusable generation settings, in the order they are asked."""

    TONE = "tone"
    AUDIENCE = "audience"
    DOMAIN = "domain"
    DEFAULT_MODEL = "defaultModel"
    TEMPERATURE = "temperature"
    OUTPUT_FORMAT = "outputFormat"
    LANGUAGE = "language"
    DEPTH = "depth"
    CITATION_PREFERENCE = "citationPreference"
    STYLE_GUIDELINES = "styleGuidelines"
    PERSONA_HINTS = "personaHints"

    @property
    def field(self) -> str:
        """Attribute name on :class:`Preferences`."""
        return _FIELD_NAMES[self]


_FIELD_NAMES = {
    PreferenceKey.TONE: "tone",
    PreferenceKey.AUDIENCE: "audience",
    PreferenceKey.DOMAIN: "domain",
    PreferenceKey.DEFAULT_MODEL: "default_model",
    PreferenceKey.TEMPERATURE: "temperature",
    PreferenceKey.OUTPUT_FORMAT: "output_format",
    PreferenceKey.LANGUAGE: "language",
    PreferenceKey.DEPTH: "depth",
    PreferenceKey.CITATION_PREFERENCE: "citation_preference",
    PreferenceKey.STYLE_GUIDELINES: "style_guidelines",
    PreferenceKey.PERSONA_HINTS: "persona_hints",
}

ASKABLE_PREFERENCE_KEYS: tuple[PreferenceKey, ...] = tuple(PreferenceKey)


class Preferences(BaseModel):
    """A full preference set, or a patch of one.

    Unset fields are ``None``; a patch only overrides the fields it sets.
    """

    tone: str | None = None
    audience: str | None = None
    domain: str | None = None
    default_model: str | None = None
    temperature: float | None = None
    output_format: str | None = None
    language: str | None = None
    depth: str | None = None
    citation_preference: str | None = None
    style_guidelines: str | None = None
    persona_hints: str | None = None
    do_not_ask_again: set[PreferenceKey] = Field(default_factory=set)

    def get(self, key: PreferenceKey):
        return getattr(self, key.field)

    def has_value(self, key: PreferenceKey) -> bool:
        value = self.get(key)
        return value is not None and value != ""

    def with_value(self, key: PreferenceKey, value) -> "Preferences":
        return self.model_copy(update={key.field: value})

    def is_empty(self) -> bool:
        return not any(self.has_value(key) for key in PreferenceKey)


def merge_preferences(base: Preferences, patch: Preferences) -> Preferences:
    """Overlay every field set in ``patch`` onto ``base``.

    Neither argument is modified. ``do_not_ask_again`` flags are unioned.
    """
    updates = {
        key.field: patch.get(key)
        for key in PreferenceKey
        if patch.has_value(key)
    }
    merged = base.model_copy(update=updates, deep=True)
    merged.do_not_ask_again = set(base.do_not_ask_again) | set(patch.do_not_ask_again)
    return merged


def clamp_temperature(value) -> float | None:
    """Clamp a temperature to [0, 1]; non-numeric input gives None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return max(0.0, min(1.0, number))


def parse_temperature(text: str) -> float | None:
    """Parse a typed temperature answer such as ``"0.7 (balanced)"``."""
    token = text.strip().split(" ", 1)[0] if text.strip() else ""
    return clamp_temperature(token) if token else None


def resolve_temperature(preferences: Preferences | None) -> float:
    if preferences is None:
        return DEFAULT_TEMPERATURE
    clamped = clamp_temperature(preferences.temperature)
    return DEFAULT_TEMPERATURE if clamped is None else clamped
