import json

import pytest
import pytest_asyncio

from promptforge.auth import StaticAuthProvider, User
from promptforge.config import ForgeConfig
from promptforge.flow import ConversationController
from promptforge.generation import GenerationPipeline, ProviderError
from promptforge.models.preferences import Preferences
from promptforge.quota import QuotaLedger, RateLimiter
from promptforge.storage import DraftPersister, DraftStore, PromptDatabase


class FakeProvider:
    """Scripted chat provider. Dicts are returned as JSON, exceptions are raised."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, *responses):
        self.responses.extend(responses)

    async def complete(self, model, messages, response_format="json", temperature=0.4):
        self.calls.append(
            {
                "model": model,
                "messages": messages,
                "response_format": response_format,
                "temperature": temperature,
            }
        )
        if not self.responses:
            raise ProviderError("no scripted response")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, dict):
            return json.dumps(response)
        return response

    def calls_for(self, model):
        return [call for call in self.calls if call["model"] == model]


def questions_payload(count=2, with_options=True):
    questions = []
    for index in range(count):
        options = (
            [{"id": "a", "label": f"Option A{index + 1}"}, {"id": "b", "label": f"Option B{index + 1}"}]
            if with_options
            else []
        )
        questions.append({"id": f"q{index + 1}", "question": f"Question {index + 1}?", "options": options})
    return {"questions": questions}


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def config(tmp_path):
    return ForgeConfig(
        db_path=str(tmp_path / "forge.db"),
        draft_path=str(tmp_path / "draft.json"),
        allow_fallback=False,
        preference_questions_enabled=False,
        draft_debounce_seconds=0.01,
    )


@pytest.fixture
def auth():
    return StaticAuthProvider(User(id="user-1", email="user@example.com"))


@pytest_asyncio.fixture
async def db(tmp_path):
    database = PromptDatabase(str(tmp_path / "forge.db"))
    await database.connect()
    yield database
    await database.close()


@pytest.fixture
def ledger(db):
    return QuotaLedger(db)


@pytest.fixture
def rate_limiter():
    return RateLimiter()


@pytest.fixture
def pipeline(provider, ledger, rate_limiter, auth, config, db):
    return GenerationPipeline(
        provider=provider,
        ledger=ledger,
        rate_limiter=rate_limiter,
        auth=auth,
        config=config,
        db=db,
        session_id="session-1",
    )


@pytest.fixture
def make_controller(pipeline, config, db, tmp_path):
    def _make(preferences=None, drafts=True, **overrides):
        for name, value in overrides.items():
            setattr(config, name, value)
        persister = None
        if drafts:
            persister = DraftPersister(DraftStore(tmp_path / "draft.json"), debounce_seconds=0.01)
        return ConversationController(
            pipeline,
            config=config,
            db=db,
            drafts=persister,
            session_id="session-1",
            preferences=preferences or Preferences(),
        )

    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def make_questions():
    return questions_payload
