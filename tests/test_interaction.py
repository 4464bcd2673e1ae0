import pytest

from promptforge.interaction import ClarifyingEngine, PreferenceEngine, PreferencesWizard
from promptforge.interaction.clarifying import match_option, progress_message
from promptforge.interaction.preferences import SKIP_ALL_SLOT, get_preferences_to_ask
from promptforge.models.conversation import (
    BACK_SLOT,
    OWN_ANSWER_SLOT,
    ClarifyingOption,
    ClarifyingPhase,
    ClarifyingQuestion,
    ConversationState,
    Stage,
)
from promptforge.models.preferences import ASKABLE_PREFERENCE_KEYS, PreferenceKey, Preferences


class FakeHost:
    def __init__(self, preferences=None, ask=None):
        self.state = ConversationState(pending_task="Write a landing page headline")
        self.preferences = preferences or Preferences()
        self.ask = ask or []
        self.finals = []
        self.preference_starts = 0
        self.saved = []
        self.events = []

    def preferences_to_ask(self):
        return list(self.ask)

    async def start_preferences(self):
        self.preference_starts += 1

    async def generate_final(self, answers, preferences_override=None):
        self.finals.append((list(answers), preferences_override))

    async def persist_preferences(self, preferences):
        self.preferences = preferences
        self.saved.append(preferences)

    def record_event(self, event_type, payload):
        self.events.append((event_type, payload))


def make_questions():
    return [
        ClarifyingQuestion(
            id="q1",
            question="Who is the audience?",
            options=[ClarifyingOption(id="a", label="Founders"), ClarifyingOption(id="b", label="Engineers")],
        ),
        ClarifyingQuestion(id="q2", question="Any constraints?"),
        ClarifyingQuestion(
            id="q3",
            question="Preferred length?",
            options=[ClarifyingOption(id="a", label="Short"), ClarifyingOption(id="b", label="Long")],
        ),
    ]


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def engine(host):
    clarifying = ClarifyingEngine(host)
    clarifying.begin_flow(make_questions())
    return clarifying


class TestHelpers:
    def test_match_option_is_case_insensitive(self):
        question = make_questions()[0]
        assert match_option(question, " engineers ") == 1
        assert match_option(question, "Designers") == -1
        assert match_option(question, "") == -1

    def test_progress_message(self):
        assert progress_message(0, 3) == "Clarifying 1/3 · 2 left"
        assert progress_message(2, 3) == "Clarifying 3/3"


class TestClarifyingEngine:
    def test_begin_flow(self, engine, host):
        state = host.state
        assert engine.is_active
        assert state.stage == Stage.CLARIFYING
        assert state.clarifying_selected_option_index == 0
        assert state.transcript[-1].text == "Q1/3: Who is the audience?"

    @pytest.mark.asyncio
    async def test_full_flow_generates_once(self, engine, host):
        await engine.submit("2")
        await engine.submit("Under ten words")
        await engine.select_option(0)

        assert host.state.clarifying_phase == ClarifyingPhase.COMPLETE
        assert host.state.current_question_index == 3
        assert len(host.finals) == 1
        answers, override = host.finals[0]
        assert [a.answer for a in answers] == ["Engineers", "Under ten words", "Short"]
        assert override is None
        assert len(host.events) == 3

    @pytest.mark.asyncio
    async def test_completion_starts_preferences_when_keys_remain(self, host):
        host.ask = [PreferenceKey.TONE]
        engine = ClarifyingEngine(host)
        engine.begin_flow(make_questions()[:1])
        await engine.answer("Founders")
        assert host.preference_starts == 1
        assert host.finals == []

    @pytest.mark.asyncio
    async def test_question_without_options_defaults_to_back_slot(self, engine, host):
        await engine.answer("Founders")
        assert host.state.clarifying_selected_option_index == BACK_SLOT

    @pytest.mark.asyncio
    async def test_undo_restores_typed_answer(self, engine, host):
        await engine.answer("Founders")
        await engine.answer("  No jargon, max 8 words  ")

        assert engine.undo()
        state = host.state
        assert state.current_question_index == 1
        assert state.input_value == "No jargon, max 8 words"
        assert state.input_focused
        assert state.clarifying_selected_option_index == OWN_ANSWER_SLOT

    @pytest.mark.asyncio
    async def test_undo_restores_option_answer(self, engine, host):
        await engine.answer("engineers")
        assert engine.undo()
        assert host.state.clarifying_selected_option_index == 1
        assert host.state.input_value == ""

    @pytest.mark.asyncio
    async def test_undo_after_skip_has_no_prefill(self, engine, host):
        await engine.answer("Founders")
        await engine.submit("")  # back slot highlighted on q2 -> undo
        assert host.state.current_question_index == 0

        await engine.answer("Founders")
        await engine.skip()
        assert host.state.clarifying_answers[1].answer == ""
        assert engine.undo()
        assert host.state.input_value == ""
        assert host.state.clarifying_selected_option_index is None

    def test_undo_at_first_question_is_noop(self, engine, host):
        before = host.state.model_copy(deep=True)
        assert not engine.undo()
        assert host.state == before

    @pytest.mark.asyncio
    async def test_reanswer_replaces_in_place(self, engine, host):
        await engine.answer("Founders")
        await engine.answer("Keep it short")
        engine.undo()
        await engine.answer("No constraints")
        answers = host.state.clarifying_answers
        assert [a.question_id for a in answers] == ["q1", "q2"]
        assert answers[1].answer == "No constraints"

    @pytest.mark.asyncio
    async def test_undo_after_completion_clears_prompt(self, engine, host):
        for line in ("1", "none", "1"):
            await engine.submit(line)
        host.state.editable_prompt = "generated"
        assert engine.undo()
        assert host.state.editable_prompt is None
        assert host.state.current_question_index == 2
        assert host.state.clarifying_phase == ClarifyingPhase.ANSWERING_QUESTIONS

    @pytest.mark.asyncio
    async def test_empty_submit_with_own_answer_slot(self, engine, host):
        await engine.answer("Founders")
        host.state.clarifying_selected_option_index = OWN_ANSWER_SLOT
        host.state.input_value = "typed earlier"
        await engine.submit("")
        assert host.state.clarifying_answers[1].answer == "typed earlier"

    def test_resume_at_reconciles_saved_answer(self, host):
        engine = ClarifyingEngine(host)
        engine.begin_flow(make_questions())
        host.state.clarifying_answers = []
        engine.resume_at(5)
        assert host.state.current_question_index == 2
        assert host.state.clarifying_selected_option_index == 0


class TestPreferenceEngine:
    @pytest.fixture
    def pref_host(self):
        host = FakeHost(preferences=Preferences(tone="formal"))
        host.ask = get_preferences_to_ask(host.preferences)
        return host

    def test_keys_to_ask_skip_set_and_flagged(self):
        prefs = Preferences(tone="formal", do_not_ask_again={PreferenceKey.LANGUAGE})
        keys = get_preferences_to_ask(prefs)
        assert PreferenceKey.TONE not in keys
        assert PreferenceKey.LANGUAGE not in keys
        assert keys[0] == PreferenceKey.AUDIENCE
        assert get_preferences_to_ask(prefs, enabled=False) == []

    @pytest.mark.asyncio
    async def test_disabled_generates_immediately(self, pref_host):
        engine = PreferenceEngine(pref_host, enabled=False)
        await engine.start()
        assert len(pref_host.finals) == 1
        assert pref_host.state.activity.message == "Preferences skipped"

    @pytest.mark.asyncio
    async def test_nothing_to_ask_generates(self):
        full = Preferences(**{key.field: "x" for key in ASKABLE_PREFERENCE_KEYS if key != PreferenceKey.TEMPERATURE})
        host = FakeHost(preferences=full.model_copy(update={"temperature": 0.5}))
        engine = PreferenceEngine(host)
        await engine.start()
        assert host.state.activity.message == "Preferences up to date"
        assert len(host.finals) == 1

    @pytest.mark.asyncio
    async def test_answers_merge_into_override_only(self, pref_host):
        engine = PreferenceEngine(pref_host)
        await engine.start()
        state = pref_host.state
        assert state.stage == Stage.PREFERENCES
        assert state.current_preference_key == PreferenceKey.AUDIENCE

        keys = list(state.preference_keys)
        for key in keys:
            if key == PreferenceKey.AUDIENCE:
                await engine.submit("technical")
            elif key == PreferenceKey.TEMPERATURE:
                await engine.submit("1.7")
            else:
                await engine.skip()

        _, override = pref_host.finals[0]
        assert override.audience == "technical"
        assert override.temperature == 1.0
        assert override.tone == "formal"
        assert override.domain is None
        assert pref_host.preferences.audience is None
        assert pref_host.saved == []
        assert not engine.is_active

    @pytest.mark.asyncio
    async def test_unparseable_temperature_is_discarded(self, pref_host):
        pref_host.preferences = Preferences(
            **{key.field: "x" for key in ASKABLE_PREFERENCE_KEYS if key != PreferenceKey.TEMPERATURE}
        )
        engine = PreferenceEngine(pref_host)
        await engine.start()
        assert pref_host.state.current_preference_key == PreferenceKey.TEMPERATURE
        await engine.answer("warm-ish")
        _, override = pref_host.finals[0]
        assert override.temperature is None

    @pytest.mark.asyncio
    async def test_skip_all_slot(self, pref_host):
        engine = PreferenceEngine(pref_host)
        await engine.start()
        await engine.submit("casual")
        await engine.select_option(SKIP_ALL_SLOT)
        _, override = pref_host.finals[0]
        assert override is None
        assert pref_host.state.activity.message == "Preferences skipped"

    @pytest.mark.asyncio
    async def test_back_restores_previous_answer(self, pref_host):
        engine = PreferenceEngine(pref_host)
        await engine.start()
        await engine.select_option(1)  # audience: technical
        assert engine.back()
        assert pref_host.state.current_preference_key == PreferenceKey.AUDIENCE
        assert pref_host.state.preference_selected_option_index == 1

    @pytest.mark.asyncio
    async def test_back_from_first_key_undoes_last_answer(self, pref_host):
        clarifying = ClarifyingEngine(pref_host)
        clarifying.begin_flow(make_questions()[:2])
        engine = PreferenceEngine(pref_host, clarifying=clarifying)
        await clarifying.answer("Founders")
        await clarifying.answer("Short headline only")
        assert pref_host.preference_starts == 1

        await engine.start()
        assert engine.back()
        state = pref_host.state
        assert not state.asking_preferences
        assert state.current_question_index == 1
        assert state.input_value == "Short headline only"

    @pytest.mark.asyncio
    async def test_back_from_first_key_without_answers(self, pref_host):
        engine = PreferenceEngine(pref_host, clarifying=ClarifyingEngine(pref_host))
        await engine.start()
        assert not engine.back()
        assert engine.is_active


class TestPreferencesWizard:
    @pytest.mark.asyncio
    async def test_three_steps_save(self):
        host = FakeHost(preferences=Preferences(domain="product"))
        wizard = PreferencesWizard(host)
        wizard.start()
        assert host.state.transcript[0].text == "Current preferences: domain=product"

        assert await wizard.advance("casual") is None
        assert await wizard.advance("skip") is None
        saved = await wizard.advance("")

        assert saved.tone == "casual"
        assert saved.audience is None
        assert saved.domain == "product"
        assert host.saved == [saved]
        assert not wizard.is_active
        assert host.state.transcript[-2].text == "Updated preferences: tone=casual, domain=product"
