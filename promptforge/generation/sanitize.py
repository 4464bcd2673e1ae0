"""Cleaning and capping of user text and untrusted model output."""

import re

from ..errors import InvalidInput
from ..models.conversation import ClarifyingAnswer, ClarifyingOption, ClarifyingQuestion
from ..models.preferences import PreferenceKey, Preferences, clamp_temperature

TASK_MIN_CHARS = 4
TASK_MAX_CHARS = 4000
PREFERENCE_MAX_CHARS = 300
ANSWER_MAX_CHARS = 800
QUESTION_MAX_CHARS = 400
OPTION_MAX_CHARS = 200
OUTPUT_MAX_CHARS = 12000
MAX_OPTIONS = 5

# Keep tab, newline and carriage return.
CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def clean_text(value, max_chars: int) -> str:
    if value is None:
        return ""
    text = CONTROL_CHARS.sub("", str(value)).strip()
    return text[:max_chars]


def sanitize_task(task: str) -> str:
    """Clean a task and enforce its length bounds.

    Raises:
        InvalidInput: reason ``too_short`` or ``too_long``.
    """
    text = CONTROL_CHARS.sub("", task or "").strip()
    if len(text) < TASK_MIN_CHARS:
        raise InvalidInput("too_short", f"task length {len(text)}")
    if len(text) > TASK_MAX_CHARS:
        raise InvalidInput("too_long", f"task length {len(text)}")
    return text


def sanitize_preferences(preferences: Preferences | None) -> Preferences:
    if preferences is None:
        return Preferences()
    updates = {}
    for key in PreferenceKey:
        value = preferences.get(key)
        if key == PreferenceKey.TEMPERATURE:
            updates[key.field] = clamp_temperature(value)
        elif value is not None:
            updates[key.field] = clean_text(value, PREFERENCE_MAX_CHARS) or None
    return preferences.model_copy(update=updates)


def sanitize_answers(answers: list[ClarifyingAnswer] | None) -> list[ClarifyingAnswer]:
    return [
        ClarifyingAnswer(
            question_id=clean_text(answer.question_id, 64),
            question=clean_text(answer.question, QUESTION_MAX_CHARS),
            answer=clean_text(answer.answer, ANSWER_MAX_CHARS),
        )
        for answer in answers or []
    ]


def sanitize_output(text) -> str:
    return clean_text(text, OUTPUT_MAX_CHARS)


def parse_questions(payload, limit: int = 3) -> list[ClarifyingQuestion]:
    """Validate a ``{"questions": [...]}`` envelope from the model.

    Non-dict entries and questions without text are dropped. Missing ids
    default to ``q1``, ``q2`` ... and option ids to ``a``, ``b`` ...
    """
    if not isinstance(payload, dict):
        return []
    raw_questions = payload.get("questions")
    if not isinstance(raw_questions, list):
        return []

    questions = []
    for index, raw in enumerate(raw_questions[:limit]):
        if not isinstance(raw, dict):
            continue
        raw_id = raw.get("id")
        question_id = clean_text(raw_id, 64) if isinstance(raw_id, str) else ""
        text = clean_text(raw.get("question"), QUESTION_MAX_CHARS) if isinstance(raw.get("question"), str) else ""
        if not text:
            continue

        raw_options = raw.get("options") if isinstance(raw.get("options"), list) else []
        options = []
        for opt_index, raw_option in enumerate(raw_options[:MAX_OPTIONS]):
            if isinstance(raw_option, dict):
                raw_option_id = raw_option.get("id")
                label = raw_option.get("label")
            else:
                raw_option_id, label = None, raw_option
            label = clean_text(label, OPTION_MAX_CHARS)
            if not label:
                continue
            option_id = clean_text(raw_option_id, 32) if isinstance(raw_option_id, str) else ""
            options.append(ClarifyingOption(id=option_id or chr(ord("a") + opt_index), label=label))

        questions.append(
            ClarifyingQuestion(id=question_id or f"q{index + 1}", question=text, options=options)
        )
    return questions


def parse_prompt(payload) -> str:
    """Pull the ``prompt`` string out of a ``{"prompt": "..."}`` envelope."""
    if not isinstance(payload, dict):
        return ""
    prompt = payload.get("prompt")
    return sanitize_output(prompt) if isinstance(prompt, str) else ""
