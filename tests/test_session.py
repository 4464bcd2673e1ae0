from unittest.mock import AsyncMock, patch

import pytest

from promptforge.auth import StaticAuthProvider, User
from promptforge.config import ForgeConfig
from promptforge.flow import ForgeSession
from promptforge.generation import ClaudeAgentProvider, ProviderError
from promptforge.models.conversation import Stage
from promptforge.storage import PromptDatabase


class TestForgeSession:
    @pytest.mark.asyncio
    async def test_quick_session_records_history_and_events(self, tmp_path, provider):
        config = ForgeConfig(
            db_path=str(tmp_path / "forge.db"),
            draft_path=str(tmp_path / "draft.json"),
            generation_mode="quick",
        )
        auth = StaticAuthProvider(User(id="user-1"))
        provider.queue({"prompt": "You are a release-notes writer..."})

        async with ForgeSession(config, auth=auth, provider=provider, session_id="s-42") as session:
            await session.controller.submit("Write release notes for version 2.1")
            assert session.controller.state.stage == Stage.READY

        db = PromptDatabase(config.db_path)
        await db.connect()
        try:
            history = await db.list_history("s-42")
            assert history[0].body == "You are a release-notes writer..."
            event_types = [e["event_type"] for e in await db.get_events("s-42")]
            assert "task_submitted" in event_types
            assert "prompt_generated" in event_types
        finally:
            await db.close()
        assert (tmp_path / "draft.json").exists()

    @pytest.mark.asyncio
    async def test_saved_preferences_load_on_enter(self, tmp_path, provider):
        config = ForgeConfig(db_path=str(tmp_path / "forge.db"), draft_path=str(tmp_path / "draft.json"))
        auth = StaticAuthProvider(User(id="user-1"))

        async with ForgeSession(config, auth=auth, provider=provider) as session:
            await session.controller.submit("/preferences")
            for answer in ("formal", "executive", "finance"):
                await session.controller.submit(answer)

        async with ForgeSession(config, auth=auth, provider=provider) as session:
            prefs = session.controller.preferences
            assert (prefs.tone, prefs.audience, prefs.domain) == ("formal", "executive", "finance")


class FakeAssistantMessage:
    def __init__(self, content):
        self.content = content


class FakeTextBlock:
    def __init__(self, text):
        self.text = text


def fake_query(*messages):
    async def _query(prompt, options):
        for message in messages:
            yield message

    return _query


class TestClaudeAgentProvider:
    @pytest.fixture(autouse=True)
    def sdk_types(self):
        with patch("promptforge.generation.provider.AssistantMessage", FakeAssistantMessage), patch(
            "promptforge.generation.provider.TextBlock", FakeTextBlock
        ):
            yield

    @pytest.mark.asyncio
    async def test_collects_text_blocks(self):
        reply = FakeAssistantMessage([FakeTextBlock('{"prompt": '), FakeTextBlock('"done"}')])
        with patch("promptforge.generation.provider.query", fake_query(reply)):
            text = await ClaudeAgentProvider().complete(
                "sonnet",
                [{"role": "system", "content": "Be brief."}, {"role": "user", "content": "Task: x"}],
            )
        assert text == '{"prompt": "done"}'

    @pytest.mark.asyncio
    async def test_empty_reply_raises(self):
        with patch("promptforge.generation.provider.query", fake_query()):
            with pytest.raises(ProviderError):
                await ClaudeAgentProvider().complete("sonnet", [{"role": "user", "content": "x"}])

    @pytest.mark.asyncio
    async def test_sdk_failure_is_wrapped(self):
        failing = AsyncMock(side_effect=RuntimeError("cli missing"))

        async def _query(prompt, options):
            await failing()
            yield  # pragma: no cover

        with patch("promptforge.generation.provider.query", _query):
            with pytest.raises(ProviderError, match="RuntimeError: cli missing"):
                await ClaudeAgentProvider().complete("sonnet", [{"role": "user", "content": "x"}])
