import asyncio

import pytest

from promptforge.events import EventRecorder, EventType
from promptforge.models.preferences import PreferenceKey, Preferences
from promptforge.models.quota import GeneratedPrompt
from promptforge.storage import redact_for_storage


class TestRedaction:
    def test_redacts_keys_emails_and_urls(self):
        text = "Use sk-abcdefghijklmnopqrstuv and mail ops@example.com via https://example.com/x"
        redacted = redact_for_storage(text)
        assert "sk-abc" not in redacted
        assert "[redacted-key]" in redacted
        assert "[email]" in redacted
        assert "[url]" in redacted

    def test_caps_length(self):
        assert len(redact_for_storage("x" * 5000)) == 4000


class TestHistory:
    @pytest.mark.asyncio
    async def test_record_and_list(self, db):
        await db.record_generation(
            "s1", "Write a headline", GeneratedPrompt(id="p1", label="Final prompt", body="Body one")
        )
        await db.record_generation(
            "s1", "Write a tagline", GeneratedPrompt(id="p2", label="Final prompt", body="Body two")
        )
        await db.record_generation(
            "other", "Not mine", GeneratedPrompt(id="p3", label="Final prompt", body="Body three")
        )

        items = await db.list_history("s1")
        assert [item.task for item in items] == ["Write a tagline", "Write a headline"]

        page = await db.list_history("s1", limit=1, offset=1)
        assert [item.task for item in page] == ["Write a headline"]

    @pytest.mark.asyncio
    async def test_history_is_redacted(self, db):
        await db.record_generation(
            "s1",
            "Email jane@corp.io",
            GeneratedPrompt(id="p1", label="Final prompt", body="See http://corp.io"),
        )
        item = (await db.list_history("s1"))[0]
        assert "jane@corp.io" not in item.task
        assert item.body == "See [url]"


class TestPreferences:
    @pytest.mark.asyncio
    async def test_round_trip_and_upsert(self, db):
        prefs = Preferences(tone="formal", temperature=0.7, do_not_ask_again={PreferenceKey.DEPTH})
        await db.save_preferences("user:u1", prefs)
        loaded = await db.load_preferences("user:u1")
        assert loaded == prefs

        await db.save_preferences("user:u1", Preferences(tone="casual"))
        assert (await db.load_preferences("user:u1")).tone == "casual"

    @pytest.mark.asyncio
    async def test_missing_scope(self, db):
        assert await db.load_preferences("session:nope") is None


class TestEventRecorder:
    @pytest.mark.asyncio
    async def test_flush_writes_events(self, db):
        recorder = EventRecorder(db, batch_size=50, flush_interval_seconds=60)
        recorder.record("s1", EventType.TASK_SUBMITTED, {"task": "Write a headline"})
        recorder.record("s1", EventType.QUESTION_CONSENT, {"answer": "yes"})
        await recorder.stop()

        events = await db.get_events("s1")
        assert [e["event_type"] for e in events] == ["task_submitted", "question_consent"]
        assert events[0]["payload"] == {"task": "Write a headline"}

    @pytest.mark.asyncio
    async def test_failed_flush_requeues(self, db):
        recorder = EventRecorder(db, batch_size=50, flush_interval_seconds=60)
        recorder.record("s1", EventType.PROMPT_EDITED, {})
        await asyncio.sleep(0)
        await db.close()
        await recorder.flush()
        assert recorder.get_queue_size() == 1
