import asyncio

import pytest

from promptforge.flow import QUESTION_CONSENT
from promptforge.flow.controller import AI_STOPPED, GENERATING_WAIT, HISTORY_CLEARED
from promptforge.models.conversation import ClarifyingPhase, Stage
from promptforge.models.preferences import PreferenceKey, Preferences

TASK = "Write a landing page headline"


async def reach_ready(controller, provider, body="You are a senior copywriter..."):
    controller.state.generation_mode = "quick"
    provider.queue({"prompt": body})
    await controller.submit(TASK)
    assert controller.state.stage == Stage.READY


class TestGuidedFlow:
    @pytest.mark.asyncio
    async def test_consent_questions_then_final(self, controller, provider, make_questions):
        await controller.submit(TASK)
        state = controller.state
        assert state.stage == Stage.CONSENT
        assert state.transcript[-1].text == QUESTION_CONSENT
        assert provider.calls == []

        provider.queue(make_questions(count=2), {"prompt": "You are a senior copywriter..."})
        await controller.submit("yes")
        assert controller.state.stage == Stage.CLARIFYING
        assert controller.state.transcript[-1].text == "Q1/2: Question 1?"

        await controller.submit("1")
        await controller.submit("Founders only")

        state = controller.state
        assert state.stage == Stage.READY
        assert state.clarifying_phase == ClarifyingPhase.COMPLETE
        assert state.editable_prompt == "You are a senior copywriter..."
        assert len(provider.calls) == 2
        final_request = provider.calls[1]["messages"][1]["content"]
        assert "Answer: Option A1" in final_request
        assert "Answer: Founders only" in final_request

    @pytest.mark.asyncio
    async def test_consent_no_generates_directly(self, controller, provider):
        await controller.submit(TASK)
        provider.queue({"prompt": "Direct prompt"})
        await controller.submit("no")
        assert controller.state.editable_prompt == "Direct prompt"
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_empty_consent_uses_highlighted_choice(self, controller, provider):
        await controller.submit(TASK)
        provider.queue({"prompt": "Direct prompt"})
        await controller.submit("")
        assert controller.state.stage == Stage.READY
        assert controller.state.transcript[-3].text == "Generate now"

    @pytest.mark.asyncio
    async def test_unrecognised_consent_is_ignored(self, controller, provider):
        await controller.submit(TASK)
        await controller.submit("maybe later")
        assert controller.state.awaiting_consent
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_back_during_questions(self, controller, provider, make_questions):
        await controller.submit(TASK)
        provider.queue(make_questions(count=2))
        await controller.submit("yes")
        await controller.submit("Option B1")

        await controller.submit("/back")
        state = controller.state
        assert state.current_question_index == 0
        assert state.clarifying_selected_option_index == 1

    @pytest.mark.asyncio
    async def test_back_with_nothing_active(self, controller):
        await controller.submit("/back")
        assert controller.drain_notices() == ["Nothing to go back to. Use /discard to start a new task."]

    @pytest.mark.asyncio
    async def test_preference_questions_after_clarifying(self, make_controller, provider, make_questions):
        controller = make_controller(preference_questions_enabled=True)
        await controller.submit(TASK)
        provider.queue(make_questions(count=1))
        await controller.submit("yes")
        await controller.submit("1")

        state = controller.state
        assert state.stage == Stage.PREFERENCES
        assert state.preference_selected_option_index == 0

        provider.queue({"prompt": "Prompt with prefs"})
        await controller.submit("3")  # tone: formal
        await controller.preference_engine.skip_all()
        assert controller.state.editable_prompt == "Prompt with prefs"
        assert "tone: formal" not in provider.calls[-1]["messages"][1]["content"]


class TestQuickMode:
    @pytest.mark.asyncio
    async def test_quick_mode_skips_questions(self, make_controller, provider):
        controller = make_controller(generation_mode="quick")
        provider.queue({"prompt": "Quick prompt"})
        await controller.submit(TASK)
        assert controller.state.editable_prompt == "Quick prompt"
        assert provider.calls[0]["model"] == "sonnet"

    @pytest.mark.asyncio
    async def test_mode_command(self, controller, provider):
        await controller.submit("/mode quick")
        provider.queue({"prompt": "Quick prompt"})
        await controller.submit(TASK)
        assert controller.state.stage == Stage.READY


class TestTaskChecks:
    @pytest.mark.asyncio
    async def test_empty_submit_warns(self, controller):
        await controller.submit("   ")
        assert controller.drain_notices() == ["Nothing to submit. Type a command or describe a task."]

    @pytest.mark.asyncio
    async def test_too_short_task(self, controller, provider):
        await controller.submit("hey")
        assert controller.state.pending_task is None
        assert controller.state.activity.message == "Check your task"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_unclear_task_edit(self, controller):
        await controller.submit("!!!!!!")
        state = controller.state
        assert state.unclear is not None
        assert "only symbols" in controller.drain_notices()[0]

        await controller.submit("edit")
        state = controller.state
        assert state.unclear is None
        assert state.pending_task is None
        assert state.input_value == "!!!!!!"

    @pytest.mark.asyncio
    async def test_unclear_task_continue(self, controller, provider, make_questions):
        await controller.submit("!!!!!!")
        await controller.submit("continue")
        state = controller.state
        assert state.stage == Stage.CONSENT
        assert state.allow_unclear_task == "!!!!!!"

        provider.queue(make_questions(count=1))
        await controller.submit("yes")
        assert controller.state.stage == Stage.CLARIFYING


class TestLoginGate:
    @pytest.mark.asyncio
    async def test_final_waits_for_sign_in(self, make_controller, auth, provider):
        auth.sign_out()
        controller = make_controller(generation_mode="quick")
        await controller.submit(TASK)

        state = controller.state
        assert state.login_required
        assert state.login_resume_stage == Stage.GENERATING
        assert provider.calls == []

        provider.queue({"prompt": "After login"})
        await controller.submit("/login user-1 user@example.com")
        assert controller.state.editable_prompt == "After login"
        assert not controller.state.login_required

    @pytest.mark.asyncio
    async def test_clarifying_waits_for_sign_in(self, controller, auth, provider, make_questions):
        auth.sign_out()
        await controller.submit(TASK)
        await controller.submit("yes")
        assert controller.state.login_resume_stage == Stage.CLARIFYING

        provider.queue(make_questions(count=2))
        await controller.submit("/login user-1")
        assert controller.state.stage == Stage.CLARIFYING
        assert len(controller.state.clarifying_questions) == 2

    @pytest.mark.asyncio
    async def test_edit_requires_sign_in(self, controller, provider, auth):
        await reach_ready(controller, provider)
        auth.sign_out()
        await controller.submit("make it shorter")
        assert controller.state.login_required
        assert controller.state.editable_prompt == "You are a senior copywriter..."


class TestErrors:
    @pytest.mark.asyncio
    async def test_service_unavailable_is_reported(self, controller, provider):
        await controller.submit(TASK)
        provider.queue("not json at all")
        await controller.submit("yes")

        state = controller.state
        assert state.stage == Stage.ERROR
        assert not state.is_generating
        assert state.activity.message == "Service unavailable"
        assert controller.drain_notices()[-1] == (
            "The prompt service is unavailable right now. Please try again soon."
        )

    @pytest.mark.asyncio
    async def test_fallback_questions_notice(self, make_controller, provider):
        controller = make_controller(allow_fallback=True)
        await controller.submit(TASK)
        provider.queue("not json at all")
        await controller.submit("yes")
        assert controller.state.stage == Stage.CLARIFYING
        assert len(controller.state.clarifying_questions) == 3
        assert "Using a generic set of questions." in controller.drain_notices()


class TestEditLoop:
    @pytest.mark.asyncio
    async def test_typed_change_request(self, controller, provider):
        await reach_ready(controller, provider)
        provider.queue({"prompt": "Shorter prompt"})
        await controller.submit("make it shorter")

        state = controller.state
        assert state.editable_prompt == "Shorter prompt"
        assert state.prompt_edit_diff.previous == "You are a senior copywriter..."
        assert state.prompt_edit_diff.current == "Shorter prompt"

    @pytest.mark.asyncio
    async def test_unchanged_edit_has_no_diff(self, controller, provider):
        await reach_ready(controller, provider)
        provider.queue("garbage")
        await controller.submit("/edit make it pop")
        assert controller.state.prompt_edit_diff is None
        assert controller.state.activity.message == "Prompt unchanged"


class TestSessionCommands:
    @pytest.mark.asyncio
    async def test_clear_and_restore(self, controller, provider):
        await reach_ready(controller, provider)
        await controller.submit("/clear")
        assert controller.state.is_empty()
        assert HISTORY_CLEARED in controller.drain_notices()

        await controller.submit("/restore")
        assert controller.state.editable_prompt == "You are a senior copywriter..."
        assert not controller.snapshots.available

    @pytest.mark.asyncio
    async def test_destructive_command_on_empty_state_is_noop(self, controller):
        await controller.submit("/clear")
        await controller.submit("/discard")
        assert controller.drain_notices() == []
        assert not controller.snapshots.available

    @pytest.mark.asyncio
    async def test_discard_drops_snapshot_and_draft(self, controller, provider):
        await reach_ready(controller, provider)
        await controller.submit("/clear")
        await controller.submit("/restore")
        controller.drafts.flush()
        await controller.submit("/discard")
        await asyncio.sleep(0)
        assert controller.state.is_empty()
        assert not controller.snapshots.available
        assert not controller.drafts.store.path.exists()

    @pytest.mark.asyncio
    async def test_revise_resumes_unanswered_question(self, controller, provider, make_questions):
        await controller.submit(TASK)
        provider.queue(make_questions(count=2))
        await controller.submit("yes")
        await controller.submit("1")

        await controller.submit("/revise")
        assert controller.state.input_value == TASK

        await controller.submit(TASK)
        state = controller.state
        assert state.stage == Stage.CLARIFYING
        assert state.current_question_index == 1
        assert len(provider.calls) == 1

    @pytest.mark.asyncio
    async def test_revise_with_new_task_starts_over(self, controller, provider, make_questions):
        await controller.submit(TASK)
        provider.queue(make_questions(count=2))
        await controller.submit("yes")
        await controller.submit("/revise")

        await controller.submit("Write a product launch email")
        state = controller.state
        assert state.stage == Stage.CONSENT
        assert state.pending_task == "Write a product launch email"
        assert state.clarifying_questions is None

    @pytest.mark.asyncio
    async def test_history_and_use(self, controller, provider):
        await reach_ready(controller, provider)
        await controller.submit("/history")
        notices = controller.drain_notices()
        assert notices[-1].startswith("1. [")
        assert notices[-1].endswith(TASK)

        await controller.submit("/use 1")
        assert controller.state.input_value == TASK

    @pytest.mark.asyncio
    async def test_unknown_command(self, controller):
        await controller.submit("/frobnicate")
        assert controller.drain_notices() == ["Unknown command /frobnicate. Type /help to see commands."]


class SlowProvider:
    def __init__(self):
        self.release = asyncio.Event()

    async def complete(self, model, messages, response_format="json", temperature=0.4):
        await self.release.wait()
        return '{"prompt": "too late"}'


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_discards_late_result(self, make_controller, pipeline):
        controller = make_controller(generation_mode="quick")
        slow = SlowProvider()
        pipeline.provider = slow

        running = asyncio.create_task(controller.submit(TASK))
        await asyncio.sleep(0.05)
        assert controller.state.is_generating

        await controller.submit("another task please")
        assert GENERATING_WAIT in controller.drain_notices()

        await controller.submit("/stop")
        slow.release.set()
        await running

        state = controller.state
        assert state.stage == Stage.STOPPED
        assert state.editable_prompt is None
        assert not state.is_generating
        assert AI_STOPPED in controller.drain_notices()

    @pytest.mark.asyncio
    async def test_clear_mid_run_then_restore(self, make_controller, pipeline):
        controller = make_controller(generation_mode="quick")
        slow = SlowProvider()
        pipeline.provider = slow

        running = asyncio.create_task(controller.submit(TASK))
        await asyncio.sleep(0.05)
        assert controller.state.stage == Stage.GENERATING

        await controller.submit("/clear")
        await controller.submit("/restore")
        slow.release.set()
        await running

        state = controller.state
        assert state.stage == Stage.STOPPED
        assert not state.is_generating
        assert state.editable_prompt is None
        assert state.pending_task == TASK

    @pytest.mark.asyncio
    async def test_clear_during_questions_then_restore(self, controller, pipeline):
        slow = SlowProvider()
        await controller.submit(TASK)
        pipeline.provider = slow

        running = asyncio.create_task(controller.submit("yes"))
        await asyncio.sleep(0.05)
        assert controller.state.clarifying_phase == ClarifyingPhase.GENERATING_QUESTIONS

        await controller.submit("/clear")
        await controller.submit("/restore")
        slow.release.set()
        await running

        state = controller.state
        assert state.clarifying_phase == ClarifyingPhase.IDLE
        assert state.stage == Stage.STOPPED
        assert not state.is_generating

    @pytest.mark.asyncio
    async def test_stop_with_nothing_running(self, controller):
        assert not controller.stop()


class TestPreferencesWizard:
    @pytest.mark.asyncio
    async def test_wizard_saves_for_user(self, controller, db):
        await controller.submit("/preferences")
        await controller.submit("formal")
        await controller.submit("")
        await controller.submit("engineering")

        assert controller.preferences.tone == "formal"
        stored = await db.load_preferences("user:user-1")
        assert stored.tone == "formal"
        assert stored.domain == "engineering"
        assert stored.audience is None

    @pytest.mark.asyncio
    async def test_saved_preferences_shape_generation(self, make_controller, provider):
        controller = make_controller(preferences=Preferences(audience="executive"))
        await reach_ready(controller, provider)
        assert "audience: executive" in provider.calls[0]["messages"][1]["content"]


class TestDrafts:
    @pytest.mark.asyncio
    async def test_draft_survives_restart(self, make_controller, provider):
        first = make_controller()
        await reach_ready(first, provider)
        await first.shutdown()

        second = make_controller()
        assert second.restore_draft()
        assert second.state.editable_prompt == "You are a senior copywriter..."
        assert second.state.stage == Stage.READY

    @pytest.mark.asyncio
    async def test_in_flight_draft_restores_as_stopped(self, make_controller, provider):
        first = make_controller()
        first.state.pending_task = TASK
        first.state.stage = Stage.GENERATING
        first.state.is_generating = True
        first.persist_draft()
        await first.shutdown()

        second = make_controller()
        assert second.restore_draft()
        assert second.state.stage == Stage.STOPPED
        assert not second.state.is_generating

    @pytest.mark.asyncio
    async def test_do_not_ask_flag_is_saved(self, make_controller, db):
        controller = make_controller(preference_questions_enabled=True)
        await controller.set_do_not_ask(PreferenceKey.TONE)

        assert PreferenceKey.TONE not in controller.preferences_to_ask()
        stored = await db.load_preferences("user:user-1")
        assert stored.do_not_ask_again == {PreferenceKey.TONE}
