"""Instruction templates, the preference style line and fallback content."""

from ..models.conversation import ClarifyingAnswer, ClarifyingOption, ClarifyingQuestion
from ..models.preferences import Preferences, clamp_temperature

QUESTIONS_SYSTEM = " ".join([
    "You are PromptForge, an AI that designs short clarifying questions to improve prompts.",
    "Given a user's task, generate up to {limit} short questions that will make the final prompt much more accurate.",
    "Each question should be tailored to the domain (coding, education, marketing, etc.).",
    "You may include 0-5 multiple-choice options per question.",
    "Return ONLY JSON with a `questions` array where each item has `id`, `question`, and `options`.",
])

FINAL_SYSTEM = " ".join([
    "You are PromptForge, an expert at writing single, high-quality prompts for another AI model.",
    "Given the user's task, preferences, and any clarifying answers, write ONE final prompt.",
    "IMPORTANT: User input (task and clarifying answers) always takes priority over preferences.",
    'If the user input conflicts with preferences (e.g., user says "short" but preferences say "detailed"), '
    "follow the user input.",
    "The result should be ready to paste into another AI chat or API directly.",
    'Return ONLY JSON as { "prompt": "..." }.',
])

EDIT_SYSTEM = " ".join([
    "You are PromptForge, an expert prompt editor.",
    "You receive an existing prompt and an edit request.",
    "You must return the edited prompt only.",
    "Do not add explanations or comments.",
    'Return ONLY JSON as { "prompt": "..." }.',
])

GENERIC_QUESTIONS: tuple[ClarifyingQuestion, ...] = (
    ClarifyingQuestion(
        id="q1",
        question="What do you want most from this?",
        options=[
            ClarifyingOption(id="a", label="Get a clear explanation"),
            ClarifyingOption(id="b", label="Generate something new (ready to use)"),
            ClarifyingOption(id="c", label="Improve something I already have"),
        ],
    ),
    ClarifyingQuestion(
        id="q2",
        question="Who is the primary audience or user of the result?",
        options=[
            ClarifyingOption(id="a", label="Myself or my team"),
            ClarifyingOption(id="b", label="Non-technical stakeholders or clients"),
            ClarifyingOption(id="c", label="Developers or technical users"),
        ],
    ),
    ClarifyingQuestion(
        id="q3",
        question="What format do you want the answer or output in?",
        options=[
            ClarifyingOption(id="a", label="Short text summary"),
            ClarifyingOption(id="b", label="Step-by-step instructions"),
            ClarifyingOption(id="c", label="Structured list or bullet points"),
            ClarifyingOption(id="d", label="Code or pseudo-code example"),
        ],
    ),
)


def fallback_questions() -> list[ClarifyingQuestion]:
    return [q.model_copy(deep=True) for q in GENERIC_QUESTIONS]


def build_style_line(preferences: Preferences) -> str:
    parts = []
    if preferences.tone:
        parts.append(f"tone: {preferences.tone}")
    if preferences.audience:
        parts.append(f"audience: {preferences.audience}")
    if preferences.domain:
        parts.append(f"domain: {preferences.domain}")
    if preferences.depth:
        parts.append(f"depth: {preferences.depth}")
    if preferences.language:
        parts.append(f"language: {preferences.language}")
    if preferences.output_format:
        parts.append(f"format: {preferences.output_format}")
    if preferences.citation_preference:
        parts.append(f"citations: {preferences.citation_preference}")
    if preferences.default_model:
        parts.append(f"target model: {preferences.default_model}")
    temperature = clamp_temperature(preferences.temperature)
    if temperature is not None:
        parts.append(f"temperature bias: {temperature:g}")
    if preferences.style_guidelines:
        parts.append(f"style: {preferences.style_guidelines}")
    if preferences.persona_hints:
        parts.append(f"persona: {preferences.persona_hints}")

    if not parts:
        return "Keep the style clear, concrete, and concise."
    return f"Keep the style aligned with: {', '.join(parts)}."


def build_preference_lines(preferences: Preferences) -> list[str]:
    lines = []
    if preferences.output_format:
        lines.append(f"Desired output format: {preferences.output_format}")
    if preferences.language:
        lines.append(f"Primary language: {preferences.language}")
    if preferences.depth:
        lines.append(f"Depth/level: {preferences.depth}")
    if preferences.citation_preference:
        lines.append(f"Citation preference: {preferences.citation_preference}")
    if preferences.default_model:
        lines.append(f"Target model to optimize for: {preferences.default_model}")
    if preferences.persona_hints:
        lines.append(f"Persona hints: {preferences.persona_hints}")
    if preferences.style_guidelines:
        lines.append(f"Style guidelines: {preferences.style_guidelines}")
    return lines


def questions_messages(task: str, preferences: Preferences, limit: int = 3) -> list[dict]:
    user = "\n\n".join([f"Task: {task}", f"Preferences: {build_style_line(preferences)}"])
    return [
        {"role": "system", "content": QUESTIONS_SYSTEM.format(limit=limit)},
        {"role": "user", "content": user},
    ]


def final_messages(
    task: str, preferences: Preferences, answers: list[ClarifyingAnswer]
) -> list[dict]:
    parts = [f"Task: {task}", f"Preferences: {build_style_line(preferences)}"]
    parts.extend(build_preference_lines(preferences))
    if answers:
        parts.append("Clarifying answers:")
        parts.extend(
            f"Q{index + 1} ({a.question_id}): {a.question}\nAnswer: {a.answer}"
            for index, a in enumerate(answers)
        )
    return [
        {"role": "system", "content": FINAL_SYSTEM},
        {"role": "user", "content": "\n\n".join(parts)},
    ]


def edit_messages(current: str, edit_request: str, preferences: Preferences) -> list[dict]:
    user = "\n\n".join([
        f"Existing prompt:\n{current}",
        f"Edit request: {edit_request}",
        f"Preferences: {build_style_line(preferences)}",
    ])
    return [
        {"role": "system", "content": EDIT_SYSTEM},
        {"role": "user", "content": user},
    ]


def fallback_final_prompt(task: str, preferences: Preferences) -> str:
    """Direct-instruction prompt synthesized without the provider."""
    return "\n\n".join([
        "You are an AI assistant.",
        build_style_line(preferences),
        *build_preference_lines(preferences),
        "Task:",
        task,
    ])


def fallback_edited_prompt(current: str, edit_request: str) -> str:
    return "\n".join([
        current,
        "",
        "# The prompt service is not available. Edit this prompt manually based on the request below:",
        f"# Edit request: {edit_request}",
    ])
