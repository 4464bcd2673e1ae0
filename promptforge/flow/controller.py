"""Conversation flow controller.

One ``submit()`` entry point routes every typed line to whatever is
active: a command, a pending unclear-task decision, the preferences
wizard, the consent gate, the clarifying engine or the preference engine.
Anything else starts a new task (or edits the ready prompt).

The controller owns the single ``ConversationState``; the engines mutate
it through ``self.state`` and hand control back here when they finish.
"""

from .. import guard
from ..config import ForgeConfig
from ..errors import (
    InvalidInput,
    PromptForgeError,
    QuotaExceeded,
    RateLimited,
    ServiceUnavailable,
    Unauthenticated,
    UnclearTask,
)
from ..events import EventRecorder, EventType
from ..generation import GenerationPipeline
from ..generation.sanitize import sanitize_task
from ..interaction import ClarifyingEngine, PreferenceEngine, PreferencesWizard, set_activity
from ..logging_config import get_logger
from ..models.conversation import (
    ActivityStatus,
    ClarifyingAnswer,
    ClarifyingPhase,
    ConversationState,
    PromptEditDiff,
    Stage,
    UnclearDecision,
)
from ..models.preferences import PreferenceKey, Preferences, merge_preferences
from ..models.quota import HistoryItem
from ..storage import DraftPersister, PromptDatabase, SnapshotSlot
from .commands import CommandRouter

logger = get_logger(__name__)

CONSENT_YES = {"yes", "y", "sharpen"}
CONSENT_NO = {"no", "n", "generate", "gen", "now"}
# Index 0 is "Generate now", index 1 is "Sharpen first"
CONSENT_OPTIONS = ("Generate now", "Sharpen first")

DESTRUCTIVE_COMMANDS = {"/clear", "/discard"}
# Commands still accepted while a request is in flight
RUNNING_COMMANDS = {"/stop", "/help", "/clear", "/discard"}

QUESTION_CONSENT = (
    "Before I craft your prompt, would you like to answer 3 quick questions "
    "to improve the context? (yes/no)"
)
PROMPT_READY = "Here is a prompt you can use or edit:"
GENERATING_WAIT = "Please wait for the AI to finish before submitting."
AI_STOPPED = "Stopped AI generation for the current task."
EMPTY_SUBMIT_WARNING = "Nothing to submit. Type a command or describe a task."
HISTORY_CLEARED = "History cleared. Use /restore to bring it back."
UNCLEAR_HINT = 'Type "edit" to change the task or "continue" to use it anyway.'

_ERROR_TITLES = {
    RateLimited: "Too many requests",
    QuotaExceeded: "Plan limit reached",
    InvalidInput: "Check your task",
    ServiceUnavailable: "Service unavailable",
}


def settle_interrupted_run(state: ConversationState) -> None:
    """Bring back a state whose request is no longer running, as ``stop`` would leave it."""
    if not state.is_generating:
        return
    state.is_generating = False
    state.stage = Stage.READY if state.editable_prompt is not None else Stage.STOPPED
    if state.clarifying_phase == ClarifyingPhase.GENERATING_QUESTIONS:
        state.clarifying_phase = ClarifyingPhase.IDLE


class ConversationController:
    """Top-level state machine for one session."""

    def __init__(
        self,
        pipeline: GenerationPipeline,
        config: ForgeConfig | None = None,
        db: PromptDatabase | None = None,
        drafts: DraftPersister | None = None,
        events: EventRecorder | None = None,
        session_id: str = "local",
        preferences: Preferences | None = None,
    ):
        self.pipeline = pipeline
        self.config = config or ForgeConfig()
        self.db = db
        self.drafts = drafts
        self.events = events
        self.session_id = session_id
        self.preferences = preferences or Preferences()

        self.state = ConversationState(generation_mode=self.config.generation_mode)
        self.snapshots = SnapshotSlot()
        self.notices: list[str] = []
        self.last_history: list[HistoryItem] = []

        self.clarifying = ClarifyingEngine(self)
        self.preference_engine = PreferenceEngine(
            self,
            enabled=self.config.preference_questions_enabled,
            clarifying=self.clarifying,
        )
        self.wizard = PreferencesWizard(self)
        self.commands = CommandRouter(self)

    # Collaborators
    @property
    def auth(self):
        return self.pipeline.auth

    @property
    def user_id(self) -> str | None:
        user = self.auth.get_current_user()
        return user.id if user else None

    @property
    def preference_scope(self) -> str:
        user_id = self.user_id
        return f"user:{user_id}" if user_id else f"session:{self.session_id}"

    def notify(self, text: str) -> None:
        self.notices.append(text)

    def drain_notices(self) -> list[str]:
        notices, self.notices = self.notices, []
        return notices

    def record_event(self, event_type: EventType, payload: dict) -> None:
        if self.events is not None:
            self.events.record(self.session_id, event_type, payload)

    def persist_draft(self) -> None:
        if self.drafts is not None:
            self.drafts.schedule(self.state, session_id=self.session_id, user_id=self.user_id)

    def restore_draft(self) -> bool:
        """Rehydrate from the stored draft once at startup."""
        if self.drafts is None:
            return False
        state = self.drafts.store.load(session_id=self.session_id, user_id=self.user_id)
        if state is None:
            return False
        # The run that was in flight did not survive the restart
        settle_interrupted_run(state)
        self.state = state
        logger.info("Restored draft (stage=%s)", state.stage.value)
        return True

    # Preferences
    async def load_preferences(self) -> Preferences:
        if self.db is not None:
            stored = await self.db.load_preferences(self.preference_scope)
            if stored is not None:
                self.preferences = stored
        return self.preferences

    async def persist_preferences(self, preferences: Preferences) -> None:
        self.preferences = preferences
        if self.db is not None:
            await self.db.save_preferences(self.preference_scope, preferences)

    async def set_do_not_ask(self, key: PreferenceKey) -> None:
        patch = Preferences(do_not_ask_again={key})
        await self.persist_preferences(merge_preferences(self.preferences, patch))

    def preferences_to_ask(self) -> list[PreferenceKey]:
        return self.preference_engine.keys_to_ask()

    async def start_preferences(self) -> None:
        await self.preference_engine.start()

    # Entry point
    async def submit(self, raw_line: str) -> None:
        try:
            await self._route(raw_line)
        finally:
            self.persist_draft()

    async def _route(self, raw_line: str) -> None:
        state = self.state
        line = raw_line.strip()

        command = line.split()[0].lower() if line.startswith("/") else None
        if state.is_generating and command not in RUNNING_COMMANDS:
            self.notify(GENERATING_WAIT)
            return

        if command is not None:
            if command in DESTRUCTIVE_COMMANDS and state.is_empty():
                return
            state.input_value = ""
            await self.commands.dispatch(line)
            return

        if line:
            state.input_focused = False

        if state.unclear is not None:
            await self._resolve_unclear(line)
            return

        if self.wizard.is_active:
            await self.wizard.advance(line)
            return

        if state.awaiting_consent and state.pending_task:
            await self._submit_consent(line)
            return

        if self.clarifying.is_active:
            if line:
                state.add_line("user", line)
            await self.clarifying.submit(line)
            return

        if self.preference_engine.is_active:
            if line:
                state.add_line("user", line)
            await self.preference_engine.submit(line)
            return

        if not line:
            self.notify(EMPTY_SUBMIT_WARNING)
            return

        state.add_line("user", line)
        await self.handle_task(line)

    # Tasks
    async def handle_task(self, line: str) -> None:
        state = self.state
        task = line.strip()
        if not task:
            return
        state.input_value = ""

        questions = state.clarifying_questions or []
        if state.is_revising and state.pending_task and task == state.pending_task and questions:
            state.is_revising = False
            state.has_run_initial_task = True
            state.awaiting_consent = False
            answered = len(state.clarifying_answers)
            if answered < len(questions):
                self.clarifying.resume_at(answered)
            else:
                await self.generate_final(list(state.clarifying_answers))
            return
        state.is_revising = False

        if state.has_run_initial_task and state.editable_prompt:
            await self.run_edit(task)
            return

        try:
            sanitize_task(task)
        except InvalidInput as e:
            set_activity(state, "collecting", "Check your task", e.user_message, status=ActivityStatus.ERROR)
            self.notify(e.user_message)
            return

        if state.allow_unclear_task != task:
            reason = guard.classify(task)
            if reason:
                self._open_unclear(task, reason, Stage.COLLECTING)
                return

        self.record_event(EventType.TASK_SUBMITTED, {"task": task})
        self._reset_for_task(task)
        set_activity(
            state, "collecting", "Received your task", "Preparing the best path to generate your prompt."
        )

        if state.generation_mode == "quick":
            await self.generate_final([])
            return
        self._ask_consent()

    def _reset_for_task(self, task: str) -> None:
        state = self.state
        state.has_run_initial_task = True
        state.pending_task = task
        state.unclear = None
        state.clarifying_phase = ClarifyingPhase.IDLE
        state.clarifying_questions = None
        state.clarifying_answers = []
        state.current_question_index = 0
        state.clarifying_selected_option_index = None
        state.asking_preferences = False
        state.preference_keys = []
        state.current_preference_key = None
        state.preference_selected_option_index = None
        state.pending_preference_updates = Preferences()
        state.editable_prompt = None
        state.prompt_edit_diff = None
        state.awaiting_consent = False
        state.consent_selected_index = None
        state.login_required = False
        state.login_resume_stage = None

    # Consent
    def _ask_consent(self) -> None:
        state = self.state
        state.stage = Stage.CONSENT
        state.clarifying_phase = ClarifyingPhase.AWAITING_CONSENT
        state.awaiting_consent = True
        state.consent_selected_index = 0
        set_activity(
            state,
            "clarifying",
            "Guided Build is on",
            "Answering these questions improves the quality of your prompt.",
        )
        state.add_line("assistant", QUESTION_CONSENT)

    async def _submit_consent(self, line: str) -> None:
        text = line.strip().lower()
        if not text:
            mapped = {0: False, 1: True}.get(self.state.consent_selected_index)
        elif text in CONSENT_YES:
            mapped = True
        elif text in CONSENT_NO:
            mapped = False
        elif text.isdigit() and 1 <= int(text) <= len(CONSENT_OPTIONS):
            mapped = int(text) == 2
        else:
            mapped = None
        if mapped is None:
            return
        self.state.add_line("user", line.strip() or CONSENT_OPTIONS[int(mapped)])
        await self.handle_consent(mapped)

    async def handle_consent(self, wants_questions: bool) -> None:
        state = self.state
        task = state.pending_task
        if not task:
            state.awaiting_consent = False
            return
        self.record_event(EventType.QUESTION_CONSENT, {"task": task, "answer": "yes" if wants_questions else "no"})
        state.awaiting_consent = False
        state.consent_selected_index = None

        if wants_questions:
            if state.clarifying_questions:
                self.clarifying.resume_at(len(state.clarifying_answers))
                return
            await self.start_clarifying(task)
            return

        state.clarifying_phase = ClarifyingPhase.IDLE
        set_activity(
            state, "generating", "Generating without questions", "Skipping clarifying; creating your prompt now."
        )
        await self.generate_final([])

    async def start_clarifying(self, task: str) -> None:
        state = self.state
        state.stage = Stage.CLARIFYING
        state.clarifying_phase = ClarifyingPhase.GENERATING_QUESTIONS
        state.is_generating = True
        set_activity(state, "clarifying", "Thinking about the best questions to ask...")
        self.persist_draft()
        try:
            result = await self.pipeline.generate_clarifying_questions(
                task, self.preferences, allow_unclear=state.allow_unclear_task == task
            )
        except Exception as e:
            self._handle_error(e, task, Stage.CLARIFYING)
            return
        if result is None:
            logger.debug("Discarding superseded clarifying questions")
            return

        state = self.state
        state.is_generating = False
        if not result.questions:
            await self.generate_final([])
            return
        if result.source == "fallback":
            self.notify("Using a generic set of questions.")
        self.clarifying.begin_flow(result.questions)

    # Generation
    async def generate_final(
        self,
        answers: list[ClarifyingAnswer],
        preferences_override: Preferences | None = None,
    ) -> None:
        state = self.state
        task = state.pending_task
        if not task:
            return
        if self.auth.get_current_user() is None:
            self._open_login_gate(answers, Stage.GENERATING, preferences_override)
            return

        state.stage = Stage.GENERATING
        state.is_generating = True
        state.login_required = False
        state.editable_prompt = None
        state.prompt_edit_diff = None
        set_activity(state, "generating", "Creating your prompt...")
        self.persist_draft()

        try:
            prompt = await self.pipeline.generate_final_prompt(
                task,
                preferences_override or self.preferences,
                answers,
                allow_unclear=state.allow_unclear_task == task,
            )
        except Exception as e:
            self._handle_error(e, task, Stage.GENERATING, answers, preferences_override)
            return
        if prompt is None:
            logger.debug("Discarding superseded final prompt")
            return

        state = self.state
        state.is_generating = False
        state.editable_prompt = prompt
        state.prompt_edit_diff = None
        state.has_run_initial_task = True
        state.stage = Stage.READY
        set_activity(state, "ready", "Prompt ready", "Edit it by typing a change request.", status=ActivityStatus.SUCCESS)
        state.add_line("assistant", PROMPT_READY)
        state.add_line("assistant", prompt)

    async def run_edit(self, request: str) -> None:
        state = self.state
        current = state.editable_prompt
        if not current:
            self.notify("There is no prompt to edit yet.")
            return
        if self.auth.get_current_user() is None:
            state.login_required = True
            self.notify(Unauthenticated.user_message)
            return

        state.is_generating = True
        set_activity(state, "editing", "Editing your prompt...")
        try:
            updated = await self.pipeline.edit_prompt(
                current, request, self.preferences, task=state.pending_task
            )
        except Exception as e:
            state.is_generating = False
            self._report_error(e, state.pending_task or "", "editing")
            if isinstance(e, Unauthenticated):
                state.login_required = True
            return
        if updated is None:
            logger.debug("Discarding superseded edit")
            return

        state = self.state
        state.is_generating = False
        if updated != current:
            state.prompt_edit_diff = PromptEditDiff(previous=current, current=updated)
            state.editable_prompt = updated
            state.add_line("assistant", updated)
            set_activity(state, "ready", "Prompt updated", status=ActivityStatus.SUCCESS)
        else:
            set_activity(state, "ready", "Prompt unchanged", "Try describing the change differently.",
                         status=ActivityStatus.SUCCESS)

    # Errors and gates
    def _report_error(self, error: Exception, task: str, stage: str) -> None:
        if isinstance(error, PromptForgeError):
            title = next(
                (text for cls, text in _ERROR_TITLES.items() if isinstance(error, cls)),
                "Something went wrong",
            )
            logger.error(
                "Flow error (task=%r, stage=%s, code=%s): %s", task[:80], stage, error.code, error.detail
            )
            message = error.user_message
        else:
            title = "Something went wrong"
            logger.error("Unexpected flow error (task=%r, stage=%s): %s", task[:80], stage, error, exc_info=True)
            message = PromptForgeError.user_message
        set_activity(self.state, stage, title, message, status=ActivityStatus.ERROR)
        self.notify(message)

    def _handle_error(
        self,
        error: Exception,
        task: str,
        stage: Stage,
        answers: list[ClarifyingAnswer] | None = None,
        preferences_override: Preferences | None = None,
    ) -> None:
        state = self.state
        state.is_generating = False
        if stage == Stage.CLARIFYING:
            state.clarifying_phase = ClarifyingPhase.IDLE
        if isinstance(error, Unauthenticated):
            self._open_login_gate(answers, stage, preferences_override)
            return
        if isinstance(error, UnclearTask):
            self._open_unclear(task, error.reason, stage)
            return
        self._report_error(error, task, stage.value)
        state.stage = Stage.ERROR

    def _open_login_gate(
        self,
        answers: list[ClarifyingAnswer] | None,
        resume_stage: Stage,
        preferences_override: Preferences | None = None,
    ) -> None:
        state = self.state
        state.is_generating = False
        state.login_required = True
        state.login_resume_stage = resume_stage
        state.stage = Stage.ERROR
        if answers is not None:
            state.clarifying_answers = list(answers)
        if preferences_override is not None:
            state.pending_preference_updates = preferences_override
        set_activity(state, "auth", "Sign in required", Unauthenticated.user_message, status=ActivityStatus.ERROR)
        self.notify(Unauthenticated.user_message)
        logger.info("Login gate opened (resume at %s)", resume_stage.value)

    async def resume_after_sign_in(self) -> None:
        state = self.state
        if not state.login_required or not state.pending_task:
            return
        resume_stage = state.login_resume_stage
        state.login_required = False
        state.login_resume_stage = None
        if resume_stage == Stage.CLARIFYING:
            await self.start_clarifying(state.pending_task)
            return
        override = None
        if not state.pending_preference_updates.is_empty():
            override = merge_preferences(self.preferences, state.pending_preference_updates)
            state.pending_preference_updates = Preferences()
        await self.generate_final(list(state.clarifying_answers), override)

    def _open_unclear(self, task: str, reason: str, stage: Stage) -> None:
        state = self.state
        state.is_generating = False
        state.unclear = UnclearDecision(task=task, reason=reason, stage=stage)
        if stage == Stage.GENERATING:
            state.stage = Stage.ERROR
        set_activity(state, stage.value, "Task needs more detail", reason, status=ActivityStatus.ERROR)
        self.notify(f"{reason} {UNCLEAR_HINT}")

    async def _resolve_unclear(self, line: str) -> None:
        state = self.state
        decision = state.unclear
        choice = line.strip().lower()
        if choice in ("edit", "e", "1"):
            state.unclear = None
            state.stage = Stage.COLLECTING
            state.pending_task = None
            state.awaiting_consent = False
            state.input_value = decision.task
            state.input_focused = True
            self.notify("Edit your task and submit it again.")
            return
        if choice in ("continue", "c", "continue anyway", "2"):
            state.unclear = None
            state.allow_unclear_task = decision.task
            if decision.stage == Stage.GENERATING:
                await self.generate_final(list(state.clarifying_answers))
            elif decision.stage == Stage.CLARIFYING:
                await self.start_clarifying(decision.task)
            else:
                await self.handle_task(decision.task)
            return
        self.notify(UNCLEAR_HINT)

    # Session actions (reached through commands)
    def stop(self) -> bool:
        state = self.state
        if not state.is_generating:
            self.notify("Nothing is running.")
            return False
        self.pipeline.cancel()
        settle_interrupted_run(state)
        set_activity(state, state.stage.value, AI_STOPPED, status=ActivityStatus.STOPPED)
        self.notify(AI_STOPPED)
        logger.info("Generation stopped by user")
        return True

    def _fresh_state(self) -> ConversationState:
        return ConversationState(generation_mode=self.state.generation_mode)

    def clear(self) -> bool:
        """Snapshot the conversation, then start over."""
        if self.state.is_empty():
            return False
        if self.state.is_generating:
            self.pipeline.cancel()
        self.snapshots.take(self.state)
        self.state = self._fresh_state()
        self.notify(HISTORY_CLEARED)
        return True

    def restore(self) -> bool:
        state = self.snapshots.restore()
        if state is None:
            self.notify("Nothing to restore.")
            return False
        # The run was cancelled when the snapshot was taken
        settle_interrupted_run(state)
        self.state = state
        self.notify("Restored the last cleared conversation.")
        return True

    def discard(self) -> None:
        """New conversation: no snapshot, and the stored draft is dropped."""
        if self.state.is_generating:
            self.pipeline.cancel()
        self.snapshots.discard()
        self.state = self._fresh_state()
        if self.drafts is not None:
            self.drafts.clear()
        self.notify("Starting fresh. Describe your task and what kind of AI answer you expect.")

    def revise(self) -> bool:
        state = self.state
        if not state.pending_task:
            self.notify("There is no task to revise yet.")
            return False
        if state.is_generating:
            self.pipeline.cancel()
            state.is_generating = False
        state.is_revising = True
        state.stage = Stage.COLLECTING
        state.editable_prompt = None
        state.prompt_edit_diff = None
        state.awaiting_consent = False
        state.consent_selected_index = None
        state.asking_preferences = False
        state.current_preference_key = None
        state.preference_selected_option_index = None
        state.clarifying_phase = ClarifyingPhase.IDLE
        state.clarifying_selected_option_index = None
        state.current_question_index = len(state.clarifying_answers)
        state.input_value = state.pending_task
        state.input_focused = True
        self.notify("Edit your task and press Enter. Submitting the same text continues where you left off.")
        return True

    def back(self) -> bool:
        if self.preference_engine.is_active:
            moved = self.preference_engine.back()
        elif self.clarifying.is_active:
            moved = self.clarifying.undo()
        else:
            moved = False
        if not moved:
            self.notify("Nothing to go back to. Use /discard to start a new task.")
        return moved

    def set_mode(self, mode: str) -> bool:
        if mode not in ("quick", "guided"):
            self.notify("Mode must be quick or guided.")
            return False
        self.state.generation_mode = mode
        self.notify(f"Generation mode set to {mode}.")
        return True

    async def history(self, limit: int = 10) -> list[HistoryItem]:
        if self.db is None:
            self.last_history = []
        else:
            self.last_history = await self.db.list_history(self.session_id, limit=limit)
        return self.last_history

    def use_history(self, number: int) -> bool:
        """Load task #number from the last /history listing into the input."""
        if not 1 <= number <= len(self.last_history):
            self.notify("No such history entry. Run /history first.")
            return False
        self.state.input_value = self.last_history[number - 1].task
        self.state.input_focused = True
        return True

    async def shutdown(self) -> None:
        if self.drafts is not None:
            self.drafts.flush()
