"""Clarifying question engine.

Walks the generated questions one at a time. Answers are stored per
question index (replace or append, never reordered); an empty answer means
the question was skipped. ``undo()`` rewinds exactly one question.
"""

from ..events import EventType
from ..logging_config import get_logger
from ..models.conversation import (
    BACK_SLOT,
    OWN_ANSWER_SLOT,
    ClarifyingAnswer,
    ClarifyingPhase,
    ClarifyingQuestion,
    Stage,
)
from .base import FlowHost, set_activity

logger = get_logger(__name__)

QUESTION_DETAIL = "Answering these questions improves the quality of your prompt."


def match_option(question: ClarifyingQuestion, answer: str) -> int:
    """Index of the option whose label equals ``answer`` (case-insensitive), or -1.

    This is a best-effort match: a typed answer that happens to equal a
    label is treated as if that option had been picked.
    """
    wanted = answer.strip().lower()
    if not wanted:
        return -1
    for index, option in enumerate(question.options):
        if option.label.strip().lower() == wanted:
            return index
    return -1


def progress_message(index: int, total: int) -> str:
    remaining = max(0, total - (index + 1))
    suffix = f" · {remaining} left" if remaining else ""
    return f"Clarifying {index + 1}/{total}{suffix}"


class ClarifyingEngine:
    def __init__(self, host: FlowHost):
        self.host = host

    @property
    def state(self):
        return self.host.state

    @property
    def questions(self) -> list[ClarifyingQuestion]:
        return self.state.clarifying_questions or []

    @property
    def is_active(self) -> bool:
        state = self.state
        return (
            state.clarifying_phase == ClarifyingPhase.ANSWERING_QUESTIONS
            and state.pending_task is not None
            and 0 <= state.current_question_index < len(self.questions)
        )

    # Selection
    def select_for_question(self, question: ClarifyingQuestion | None, has_back: bool) -> None:
        """Default focus: first option, else the back slot when going back is possible."""
        if question is None:
            self.state.clarifying_selected_option_index = None
        elif question.options:
            self.state.clarifying_selected_option_index = 0
        elif has_back:
            self.state.clarifying_selected_option_index = BACK_SLOT
        else:
            self.state.clarifying_selected_option_index = None

    def reconcile_selection(
        self,
        question: ClarifyingQuestion,
        saved_answer: str | None,
        has_back: bool,
        focus_input: bool = True,
    ) -> None:
        """Restore the selection that matches a previously saved answer."""
        state = self.state
        text = (saved_answer or "").strip()
        if not text:
            state.input_value = ""
            state.input_focused = False
            self.select_for_question(question, has_back)
            return
        option_index = match_option(question, text)
        if option_index >= 0:
            state.input_value = ""
            state.input_focused = False
            state.clarifying_selected_option_index = option_index
        else:
            state.input_value = text
            state.input_focused = focus_input
            state.clarifying_selected_option_index = OWN_ANSWER_SLOT

    def _announce(self, index: int) -> None:
        question = self.questions[index]
        total = len(self.questions)
        set_activity(self.state, "clarifying", progress_message(index, total), QUESTION_DETAIL)
        self.state.add_line("assistant", f"Q{index + 1}/{total}: {question.question}")

    # Transitions
    def begin_flow(self, questions: list[ClarifyingQuestion]) -> None:
        if not questions:
            return
        state = self.state
        state.clarifying_questions = [q.model_copy(deep=True) for q in questions]
        state.clarifying_answers = []
        state.current_question_index = 0
        state.input_value = ""
        state.awaiting_consent = False
        state.consent_selected_index = None
        state.clarifying_phase = ClarifyingPhase.ANSWERING_QUESTIONS
        state.stage = Stage.CLARIFYING
        self.select_for_question(questions[0], has_back=False)
        self._announce(0)
        logger.info("Clarifying flow started with %d questions", len(questions))

    def resume_at(self, index: int) -> None:
        """Re-enter answering at ``index`` (used by consent and the revise path)."""
        state = self.state
        questions = self.questions
        if not questions:
            return
        index = min(max(index, 0), len(questions) - 1)
        state.current_question_index = index
        state.awaiting_consent = False
        state.clarifying_phase = ClarifyingPhase.ANSWERING_QUESTIONS
        state.stage = Stage.CLARIFYING
        saved = state.clarifying_answers[index].answer if index < len(state.clarifying_answers) else None
        self.reconcile_selection(questions[index], saved, has_back=index > 0)
        self._announce(index)

    def _store_answer(self, text: str) -> list[ClarifyingAnswer]:
        state = self.state
        index = state.current_question_index
        question = self.questions[index]
        entry = ClarifyingAnswer(question_id=question.id, question=question.question, answer=text)
        answers = list(state.clarifying_answers)
        if index < len(answers):
            answers[index] = entry
        else:
            answers.append(entry)
        state.clarifying_answers = answers
        return answers

    async def _advance(self, answers: list[ClarifyingAnswer], focus_input: bool) -> None:
        state = self.state
        next_index = state.current_question_index + 1
        if next_index < len(self.questions):
            state.current_question_index = next_index
            saved = answers[next_index].answer if next_index < len(answers) else None
            self.reconcile_selection(
                self.questions[next_index], saved, has_back=True, focus_input=focus_input
            )
            self._announce(next_index)
            return
        await self._complete(answers)

    async def _complete(self, answers: list[ClarifyingAnswer]) -> None:
        state = self.state
        state.clarifying_selected_option_index = None
        state.clarifying_phase = ClarifyingPhase.COMPLETE
        state.current_question_index = len(answers)
        state.input_value = ""
        state.input_focused = False
        logger.info("Clarifying flow complete (%d answers)", len(answers))
        if self.host.preferences_to_ask():
            await self.host.start_preferences()
            return
        await self.host.generate_final(answers)

    async def answer(self, text: str) -> None:
        if not self.is_active:
            return
        trimmed = text.strip()
        question = self.questions[self.state.current_question_index]
        answers = self._store_answer(trimmed)
        self.host.record_event(
            EventType.CLARIFYING_ANSWER,
            {
                "task": self.state.pending_task,
                "question_id": question.id,
                "question": question.question,
                "answer": trimmed,
            },
        )
        await self._advance(answers, focus_input=True)

    async def skip(self) -> None:
        """Record an empty answer and move on without focusing the input."""
        if not self.is_active:
            return
        answers = self._store_answer("")
        await self._advance(answers, focus_input=False)

    async def select_option(self, index: int) -> None:
        if not self.is_active:
            return
        question = self.questions[self.state.current_question_index]
        if index < 0 or index >= len(question.options):
            return
        self.state.clarifying_selected_option_index = index
        await self.answer(question.options[index].label)

    def undo(self) -> bool:
        """Step back one question. Returns False when there is nothing to undo."""
        state = self.state
        questions = self.questions
        if not questions or state.pending_task is None:
            return False
        answers = state.clarifying_answers
        if state.current_question_index == 0 or not answers:
            return False

        target = state.current_question_index - 1
        question = questions[target]
        saved = answers[target].answer if target < len(answers) else ""

        state.current_question_index = target
        state.clarifying_phase = ClarifyingPhase.ANSWERING_QUESTIONS
        state.stage = Stage.CLARIFYING
        state.awaiting_consent = False
        state.asking_preferences = False
        state.current_preference_key = None
        state.preference_selected_option_index = None
        state.editable_prompt = None
        state.prompt_edit_diff = None

        text = (saved or "").strip()
        option_index = match_option(question, text)
        if text and option_index < 0:
            state.input_value = text
            state.input_focused = True
            state.clarifying_selected_option_index = OWN_ANSWER_SLOT
        else:
            state.input_value = ""
            state.input_focused = False
            state.clarifying_selected_option_index = option_index if option_index >= 0 else None

        set_activity(state, "clarifying", progress_message(target, len(questions)), QUESTION_DETAIL)
        logger.info("Undo to clarifying question %d", target + 1)
        return True

    async def submit(self, line: str) -> None:
        """Route a typed line while a question is showing.

        An empty line acts on the highlighted slot. A bare number picks the
        matching option (1-based) when the question has options.
        """
        if not self.is_active:
            return
        state = self.state
        question = self.questions[state.current_question_index]
        text = line.strip()
        if not text:
            selected = state.clarifying_selected_option_index
            if selected is not None and selected >= 0:
                await self.select_option(selected)
            elif selected == BACK_SLOT:
                self.undo()
            elif selected == OWN_ANSWER_SLOT and state.input_value.strip():
                await self.answer(state.input_value)
            else:
                await self.skip()
            return
        if question.options and text.isdigit() and 1 <= int(text) <= len(question.options):
            await self.select_option(int(text) - 1)
            return
        await self.answer(text)
