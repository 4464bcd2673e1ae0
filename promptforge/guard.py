"""Heuristic check that rejects empty or garbled task text.

Runs before any provider call. ``classify`` returns a readable reason for
rejection, or ``None`` when the task looks like real words.
"""

import re

SHORT_ALLOWLIST = frozenset({"api", "sql", "css", "ui", "ux"})
MIN_TASK_CHARS = 4
REPEAT_RUN = re.compile(r"(.)\1{5,}", re.DOTALL)
VOWELS = re.compile(r"[aeiouy]", re.IGNORECASE)
WHITESPACE = re.compile(r"\s")


def classify(text: str) -> str | None:
    """Return why ``text`` is not a usable task, or None if it is."""
    normalized = (text or "").strip()
    if not normalized:
        return "Task is empty. Please describe what you want to accomplish."

    if len(normalized) < MIN_TASK_CHARS and normalized.lower() not in SHORT_ALLOWLIST:
        return "Task is very short. Please describe what you want to accomplish in more detail."

    letters = "".join(ch for ch in normalized if ch.isalpha())
    digits = "".join(ch for ch in normalized if ch.isnumeric())
    non_space = WHITESPACE.sub("", normalized)
    symbols = "".join(ch for ch in non_space if not (ch.isalpha() or ch.isnumeric()))

    if not letters and not digits and symbols:
        return "Task contains only symbols or emojis. Please describe what you want to accomplish in words."
    if not letters and digits and not symbols:
        return "Task contains only numbers. Please describe what you want to accomplish in words."
    if not letters:
        return "Task has no readable words. Please describe what you want to accomplish."

    has_spaces = WHITESPACE.search(normalized) is not None
    vowel_count = len(VOWELS.findall(letters))
    digit_ratio = len(digits) / max(len(non_space), 1)

    if not has_spaces and len(letters) >= 10 and vowel_count == 0:
        return "This looks like random characters. Please describe the goal in plain language."

    if not has_spaces and len(non_space) >= 10 and digit_ratio > 0.4:
        return (
            "Task mixes letters and digits without clear context. "
            "Please describe the goal in plain language."
        )

    if REPEAT_RUN.search(normalized):
        return "Task contains long character repeats. Please describe the goal more clearly."

    return None


def is_unclear(text: str) -> bool:
    return classify(text) is not None
