import asyncio
from unittest.mock import patch

import pytest

from promptforge.flow.commands import HELP_LINES
from promptforge.main import _repl
from promptforge.models.conversation import Stage

TASK = "Write a landing page headline"


class GatedProvider:
    def __init__(self):
        self.release = asyncio.Event()
        self.calls = 0

    async def complete(self, model, messages, response_format="json", temperature=0.4):
        self.calls += 1
        await self.release.wait()
        return '{"prompt": "gated result"}'


class ScriptedInput:
    """Feeds lines to the terminal loop; waits for a run before typing ``/stop``."""

    def __init__(self, controller, lines):
        self.controller = controller
        self.lines = list(lines)

    async def __call__(self, view):
        if not self.lines:
            raise EOFError
        line = self.lines.pop(0)
        if line == "/stop":
            while not self.controller.state.is_generating:
                await asyncio.sleep(0.01)
        return line


class TestTerminalLoop:
    @pytest.mark.asyncio
    async def test_stop_can_be_typed_during_a_run(self, make_controller, pipeline):
        controller = make_controller(generation_mode="quick")
        gated = GatedProvider()
        pipeline.provider = gated

        scripted = ScriptedInput(controller, [TASK, "/stop", "/quit"])
        with patch("promptforge.main._read_line", scripted):
            await _repl(controller)

        state = controller.state
        assert state.stage == Stage.STOPPED
        assert not state.is_generating
        assert state.editable_prompt is None
        assert gated.calls == 1

    @pytest.mark.asyncio
    async def test_line_typed_during_a_run_is_held_back(self, make_controller, pipeline):
        controller = make_controller(generation_mode="quick")
        gated = GatedProvider()
        pipeline.provider = gated

        scripted = ScriptedInput(controller, [TASK, "Write a product tagline", "/stop"])
        with patch("promptforge.main._read_line", scripted):
            await _repl(controller)

        assert gated.calls == 1
        assert controller.state.pending_task == TASK
        assert controller.state.stage == Stage.STOPPED

    @pytest.mark.asyncio
    async def test_quick_submit_finishes_before_next_line(self, make_controller, provider):
        controller = make_controller(generation_mode="quick")
        provider.queue({"prompt": "Finished prompt"})

        scripted = ScriptedInput(controller, [TASK])
        with patch("promptforge.main._read_line", scripted):
            await _repl(controller)

        assert controller.state.stage == Stage.READY
        assert controller.state.editable_prompt == "Finished prompt"

    def test_help_mentions_ctrl_c(self):
        assert any("/stop" in line and "Ctrl+C" in line for line in HELP_LINES)
