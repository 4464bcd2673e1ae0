"""Conversation state for one PromptForge session."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .preferences import PreferenceKey, Preferences

# Option selection slots used alongside real option indices.
BACK_SLOT = -1
OWN_ANSWER_SLOT = -2


class Stage(str, Enum):
    """Top-level conversation stage. Exactly one is active at a time."""

    COLLECTING = "collecting"
    CONSENT = "consent"
    CLARIFYING = "clarifying"
    PREFERENCES = "preferences"
    GENERATING = "generating"
    READY = "ready"
    ERROR = "error"
    STOPPED = "stopped"


class ClarifyingPhase(str, Enum):
    IDLE = "idle"
    AWAITING_CONSENT = "awaiting_consent"
    GENERATING_QUESTIONS = "generating_questions"
    ANSWERING_QUESTIONS = "answering_questions"
    COMPLETE = "complete"


class ClarifyingOption(BaseModel):
    id: str
    label: str


class ClarifyingQuestion(BaseModel):
    """A generated question; its order is fixed once generated for a task."""
    id: str
    question: str
    options: list[ClarifyingOption] = Field(default_factory=list)


class ClarifyingAnswer(BaseModel):
    """Answer to one question. An empty ``answer`` means skipped."""
    question_id: str
    question: str
    answer: str = ""


class ActivityStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    STOPPED = "stopped"


class TaskActivity(BaseModel):
    """Status line shown while the pipeline works."""
    task: str
    stage: str
    status: ActivityStatus = ActivityStatus.RUNNING
    message: str = ""
    detail: str = ""
    updated_at: datetime = Field(default_factory=datetime.now)


class PromptEditDiff(BaseModel):
    previous: str
    current: str


class UnclearDecision(BaseModel):
    """A rejected task waiting for the user to choose edit or continue."""
    task: str
    reason: str
    stage: Stage


class TranscriptLine(BaseModel):
    role: str  # user | system | assistant
    text: str


class ConversationState(BaseModel):
    """The full session, persisted by the draft store."""

    stage: Stage = Stage.COLLECTING
    generation_mode: str = "guided"
    input_value: str = ""
    input_focused: bool = False

    pending_task: str | None = None
    has_run_initial_task: bool = False
    is_revising: bool = False
    allow_unclear_task: str | None = None
    unclear: UnclearDecision | None = None

    # Consent gate
    awaiting_consent: bool = False
    consent_selected_index: int | None = None

    # Clarifying questions
    clarifying_phase: ClarifyingPhase = ClarifyingPhase.IDLE
    clarifying_questions: list[ClarifyingQuestion] | None = None
    clarifying_answers: list[ClarifyingAnswer] = Field(default_factory=list)
    current_question_index: int = 0
    clarifying_selected_option_index: int | None = None

    # Preference questions
    asking_preferences: bool = False
    preference_keys: list[PreferenceKey] = Field(default_factory=list)
    current_preference_key: PreferenceKey | None = None
    preference_selected_option_index: int | None = None
    pending_preference_updates: Preferences = Field(default_factory=Preferences)

    # Legacy tone/audience/domain wizard
    preferences_step: str | None = None
    wizard_updates: Preferences = Field(default_factory=Preferences)

    # Result
    editable_prompt: str | None = None
    prompt_edit_diff: PromptEditDiff | None = None
    is_generating: bool = False
    login_required: bool = False
    login_resume_stage: Stage | None = None

    activity: TaskActivity | None = None
    transcript: list[TranscriptLine] = Field(default_factory=list)

    def is_empty(self) -> bool:
        """True when there is nothing worth saving or clearing."""
        return (
            not self.transcript
            and self.pending_task is None
            and self.editable_prompt is None
            and not self.clarifying_answers
            and not self.input_value
        )

    def current_question(self) -> ClarifyingQuestion | None:
        questions = self.clarifying_questions or []
        if 0 <= self.current_question_index < len(questions):
            return questions[self.current_question_index]
        return None

    def add_line(self, role: str, text: str) -> None:
        self.transcript.append(TranscriptLine(role=role, text=text))


class Snapshot(BaseModel):
    """Frozen copy of a state taken before a destructive action."""

    model_config = {"frozen": True}

    state: ConversationState
    taken_at: datetime = Field(default_factory=datetime.now)

    @classmethod
    def of(cls, state: ConversationState) -> "Snapshot":
        return cls(state=state.model_copy(deep=True))

    def restore(self) -> ConversationState:
        return self.state.model_copy(deep=True)
