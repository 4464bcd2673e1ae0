"""Runtime configuration for PromptForge."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass
class ForgeConfig:
    """Configuration for a PromptForge process."""

    # Storage
    db_path: str = "promptforge.db"
    draft_path: str = str(Path.home() / ".promptforge" / "draft.json")

    # Locally synthesized questions/prompts when the provider fails.
    # Off by default so deployed instances surface SERVICE_UNAVAILABLE instead.
    allow_fallback: bool = False

    # Conversation behaviour
    generation_mode: str = "guided"  # guided | quick
    preference_questions_enabled: bool = True
    max_clarifying_questions: int = 3

    # Rate limiting (fixed 60s windows)
    rate_window_seconds: int = 60
    user_rate_limit: int = 30
    ip_rate_limit: int = 60

    # Billing cycle
    billing_cycle_days: int = 30
    trial_days: int = 3

    # Model routing
    question_model: str = "haiku"
    standard_model: str = "sonnet"
    premium_model: str = "opus"

    # Draft persistence
    draft_debounce_seconds: float = 1.0
    draft_expiry_hours: int = 24

    @classmethod
    def from_env(cls, dotenv_path: str | None = None) -> "ForgeConfig":
        """Build config from PROMPTFORGE_* environment variables.

        A .env file next to the working directory (or at dotenv_path) is
        loaded first; real environment variables win.
        """
        load_dotenv(dotenv_path=dotenv_path)
        defaults = cls()
        return cls(
            db_path=os.environ.get("PROMPTFORGE_DB_PATH", defaults.db_path),
            draft_path=os.environ.get("PROMPTFORGE_DRAFT_PATH", defaults.draft_path),
            allow_fallback=_env_bool("PROMPTFORGE_ALLOW_FALLBACK", defaults.allow_fallback),
            generation_mode=os.environ.get("PROMPTFORGE_MODE", defaults.generation_mode),
            preference_questions_enabled=_env_bool(
                "PROMPTFORGE_PREFERENCE_QUESTIONS", defaults.preference_questions_enabled
            ),
            user_rate_limit=_env_int("PROMPTFORGE_USER_RATE_LIMIT", defaults.user_rate_limit),
            ip_rate_limit=_env_int("PROMPTFORGE_IP_RATE_LIMIT", defaults.ip_rate_limit),
            question_model=os.environ.get("PROMPTFORGE_QUESTION_MODEL", defaults.question_model),
            standard_model=os.environ.get("PROMPTFORGE_STANDARD_MODEL", defaults.standard_model),
            premium_model=os.environ.get("PROMPTFORGE_PREMIUM_MODEL", defaults.premium_model),
        )

    @classmethod
    def from_cli_args(
        cls,
        db_path: str | None = None,
        draft_path: str | None = None,
        quick: bool = False,
        no_preferences: bool = False,
        allow_fallback: bool | None = None,
    ) -> "ForgeConfig":
        """Create config from CLI arguments layered over the environment.

        Args:
            db_path: SQLite database file
            draft_path: Draft file used to resume the conversation
            quick: Skip consent and clarifying questions
            no_preferences: Never ask preference questions
            allow_fallback: Use locally synthesized output on provider failure

        Returns:
            ForgeConfig with appropriate settings
        """
        config = cls.from_env()
        if db_path:
            config.db_path = db_path
        if draft_path:
            config.draft_path = draft_path
        if quick:
            config.generation_mode = "quick"
        if no_preferences:
            config.preference_questions_enabled = False
        if allow_fallback is not None:
            config.allow_fallback = allow_fallback
        return config
