"""Generation pipeline: clarifying questions, final prompts and edits.

Each operation takes a new run id when it starts. ``cancel()`` (and any
later operation) moves the counter on, and an operation whose run id is no
longer current returns ``None`` instead of its result or error.
"""

import uuid
from dataclasses import dataclass

from .. import guard
from ..auth import AuthProvider, User
from ..config import ForgeConfig
from ..errors import QuotaExceeded, ServiceUnavailable, Unauthenticated, UnclearTask
from ..events import EventRecorder, EventType
from ..logging_config import get_logger
from ..models.conversation import ClarifyingAnswer, ClarifyingQuestion
from ..models.preferences import Preferences, resolve_temperature
from ..models.quota import GeneratedPrompt, QuotaKind, SubscriptionTier
from ..quota import QuotaLedger, RateLimiter
from ..storage.database import PromptDatabase
from . import prompts
from .provider import ChatProvider, ProviderError, extract_json
from .sanitize import (
    parse_prompt,
    parse_questions,
    sanitize_answers,
    sanitize_output,
    sanitize_preferences,
    sanitize_task,
)

logger = get_logger(__name__)

QUESTION_TEMPERATURE_CAP = 0.8


@dataclass
class QuestionsResult:
    questions: list[ClarifyingQuestion]
    source: str  # model | fallback


class ModelRouter:
    """Maps pipeline operations to configured model names."""

    def __init__(self, config: ForgeConfig):
        self.task_models = {
            "clarifying": config.question_model,
            "final": config.standard_model,
            "final_premium": config.premium_model,
            "edit": config.standard_model,
        }

    def get_model_for_task(self, task: str) -> str:
        return self.task_models.get(task, self.task_models["final"])


class GenerationPipeline:
    """Runs the three provider-backed operations for one session."""

    def __init__(
        self,
        provider: ChatProvider,
        ledger: QuotaLedger,
        rate_limiter: RateLimiter,
        auth: AuthProvider,
        config: ForgeConfig | None = None,
        db: PromptDatabase | None = None,
        events: EventRecorder | None = None,
        session_id: str = "local",
        client_ip: str | None = None,
    ):
        self.provider = provider
        self.ledger = ledger
        self.rate_limiter = rate_limiter
        self.auth = auth
        self.config = config or ForgeConfig()
        self.db = db
        self.events = events
        self.session_id = session_id
        self.client_ip = client_ip
        self.router = ModelRouter(self.config)
        self._run_id = 0

    # Run ids
    def _begin_run(self) -> int:
        self._run_id += 1
        return self._run_id

    def is_current(self, run_id: int) -> bool:
        return run_id == self._run_id

    def cancel(self) -> bool:
        """Invalidate whatever is in flight. Returns False if nothing ever ran."""
        if self._run_id == 0:
            return False
        self._run_id += 1
        logger.info("Run cancelled (now %d)", self._run_id)
        return True

    # Helpers
    def _rate_keys(self, user: User | None) -> list[str]:
        keys = []
        if user is not None:
            keys.append(f"user:{user.id}")
        if self.client_ip:
            keys.append(f"ip:{self.client_ip}")
        return keys

    def _record(self, run_id: int, event_type: EventType, payload: dict) -> None:
        # Stopped or superseded runs leave no trace
        if self.events is not None and self.is_current(run_id):
            self.events.record(self.session_id, event_type, payload)

    async def _save_history(self, run_id: int, task: str, body: str, user: User) -> None:
        if self.db is None or not self.is_current(run_id):
            return
        try:
            await self.db.record_generation(
                self.session_id,
                task,
                GeneratedPrompt(id=uuid.uuid4().hex, label="Final prompt", body=body),
                user_id=user.id,
            )
        except Exception:
            logger.warning("Failed to record generation history", exc_info=True)

    async def _call_json(self, model: str, messages: list[dict], temperature: float):
        raw = await self.provider.complete(
            model=model,
            messages=messages,
            response_format="json",
            temperature=temperature,
        )
        return extract_json(raw)

    async def _choose_final_model(self, user: User) -> str:
        """Premium model for advanced users with slots left, else standard."""
        standard = self.router.get_model_for_task("final")
        try:
            record = await self.ledger.load(user.id)
        except Exception:
            logger.warning("Could not load subscription for model routing", exc_info=True)
            return standard
        if record.tier != SubscriptionTier.ADVANCED or record.premium_finals_remaining <= 0:
            return standard
        try:
            await self.ledger.consume_premium_slot(user.id)
        except QuotaExceeded:
            return standard
        except Exception:
            logger.warning("Premium slot consumption failed", exc_info=True)
            return standard
        return self.router.get_model_for_task("final_premium")

    # Operations
    async def generate_clarifying_questions(
        self,
        task: str,
        preferences: Preferences | None = None,
        allow_unclear: bool = False,
    ) -> QuestionsResult | None:
        run_id = self._begin_run()
        try:
            result = await self._generate_questions(run_id, task, preferences, allow_unclear)
        except Exception:
            if not self.is_current(run_id):
                return None
            raise
        return result if self.is_current(run_id) else None

    async def _generate_questions(
        self, run_id: int, task: str, preferences: Preferences | None, allow_unclear: bool
    ) -> QuestionsResult:
        clean_task = sanitize_task(task)
        if not allow_unclear and (reason := guard.classify(clean_task)):
            raise UnclearTask(reason)
        prefs = sanitize_preferences(preferences)

        user = self.auth.get_current_user()
        if user is None:
            if self.config.allow_fallback:
                return self._fallback_questions(run_id, clean_task, prefs, "unauthenticated")
            raise Unauthenticated("clarifying questions require sign-in")

        self.rate_limiter.check_rate(self._rate_keys(user), "clarifying")
        await self.ledger.consume_quota(user.id, QuotaKind.CLARIFYING)

        limit = self.config.max_clarifying_questions
        temperature = min(QUESTION_TEMPERATURE_CAP, resolve_temperature(prefs))
        model = self.router.get_model_for_task("clarifying")
        try:
            payload = await self._call_json(
                model, prompts.questions_messages(clean_task, prefs, limit), temperature
            )
        except (ProviderError, ValueError) as e:
            logger.error("Clarifying question generation failed for task %r: %s", clean_task[:80], e)
            return self._degrade_questions(run_id, clean_task, prefs, "provider_error")

        questions = parse_questions(payload, limit=limit)
        if not questions:
            logger.warning("No usable clarifying questions for task %r", clean_task[:80])
            return self._degrade_questions(run_id, clean_task, prefs, "no_questions_after_parse")

        self._record(
            run_id,
            EventType.CLARIFYING_QUESTIONS_GENERATED,
            {"task": clean_task, "count": len(questions), "source": "model"},
        )
        return QuestionsResult(questions=questions, source="model")

    def _degrade_questions(
        self, run_id: int, task: str, prefs: Preferences, reason: str
    ) -> QuestionsResult:
        if not self.config.allow_fallback:
            raise ServiceUnavailable(reason)
        return self._fallback_questions(run_id, task, prefs, reason)

    def _fallback_questions(
        self, run_id: int, task: str, prefs: Preferences, reason: str
    ) -> QuestionsResult:
        questions = prompts.fallback_questions()
        self._record(
            run_id,
            EventType.CLARIFYING_QUESTIONS_GENERATED,
            {"task": task, "count": len(questions), "source": "fallback", "reason": reason},
        )
        return QuestionsResult(questions=questions, source="fallback")

    async def generate_final_prompt(
        self,
        task: str,
        preferences: Preferences | None = None,
        answers: list[ClarifyingAnswer] | None = None,
        allow_unclear: bool = False,
    ) -> str | None:
        run_id = self._begin_run()
        try:
            result = await self._generate_final(run_id, task, preferences, answers, allow_unclear)
        except Exception:
            if not self.is_current(run_id):
                return None
            raise
        return result if self.is_current(run_id) else None

    async def _generate_final(
        self,
        run_id: int,
        task: str,
        preferences: Preferences | None,
        answers: list[ClarifyingAnswer] | None,
        allow_unclear: bool,
    ) -> str:
        clean_task = sanitize_task(task)
        if not allow_unclear and (reason := guard.classify(clean_task)):
            raise UnclearTask(reason)
        user = self.auth.require_authenticated_user()
        prefs = sanitize_preferences(preferences)
        clean_answers = sanitize_answers(answers)

        self.rate_limiter.check_rate(self._rate_keys(user), "generate")
        await self.ledger.consume_quota(user.id, QuotaKind.GENERATION)
        model = await self._choose_final_model(user)

        source = "model"
        try:
            payload = await self._call_json(
                model,
                prompts.final_messages(clean_task, prefs, clean_answers),
                resolve_temperature(prefs),
            )
            prompt = parse_prompt(payload)
        except (ProviderError, ValueError) as e:
            logger.error("Final prompt generation failed for task %r: %s", clean_task[:80], e)
            prompt = ""

        if not prompt:
            if self.config.allow_fallback:
                prompt, source = sanitize_output(prompts.fallback_final_prompt(clean_task, prefs)), "fallback"
            else:
                prompt, source = clean_task, "degraded"

        self._record(
            run_id,
            EventType.PROMPT_GENERATED,
            {
                "task": clean_task,
                "answers": [a.model_dump() for a in clean_answers],
                "model": model,
                "source": source,
            },
        )
        await self._save_history(run_id, clean_task, prompt, user)
        logger.info("Final prompt ready (model=%s, source=%s)", model, source)
        return prompt

    async def edit_prompt(
        self,
        current_prompt: str,
        edit_request: str,
        preferences: Preferences | None = None,
        task: str | None = None,
    ) -> str | None:
        run_id = self._begin_run()
        try:
            result = await self._edit(run_id, current_prompt, edit_request, preferences, task)
        except Exception:
            if not self.is_current(run_id):
                return None
            raise
        return result if self.is_current(run_id) else None

    async def _edit(
        self,
        run_id: int,
        current_prompt: str,
        edit_request: str,
        preferences: Preferences | None,
        task: str | None,
    ) -> str:
        current = sanitize_output(current_prompt)
        request = sanitize_output(edit_request)
        if not current or not request:
            return current

        user = self.auth.require_authenticated_user()
        prefs = sanitize_preferences(preferences)
        self.rate_limiter.check_rate(self._rate_keys(user), "edit")
        await self.ledger.consume_quota(user.id, QuotaKind.EDIT)

        model = self.router.get_model_for_task("edit")
        source = "model"
        try:
            payload = await self._call_json(
                model, prompts.edit_messages(current, request, prefs), resolve_temperature(prefs)
            )
            updated = parse_prompt(payload)
        except (ProviderError, ValueError) as e:
            logger.error("Prompt edit failed: %s", e)
            updated = ""

        if not updated:
            if self.config.allow_fallback:
                updated, source = sanitize_output(prompts.fallback_edited_prompt(current, request)), "fallback"
            else:
                updated, source = current, "degraded"

        self._record(
            run_id,
            EventType.PROMPT_EDITED,
            {"edit_request": request, "model": model, "source": source},
        )
        await self._save_history(run_id, task or "Edited prompt", updated, user)
        return updated
