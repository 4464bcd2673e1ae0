"""Typed error codes surfaced by the generation pipeline and the controller.

Codes are transport-neutral. Each error carries a short, generic
``user_message`` that is safe to show; the diagnostic detail goes to the
log only.
"""

from typing import Any


class PromptForgeError(Exception):
    """Base class for every error code the flow knows how to surface."""

    code = "INTERNAL"
    user_message = "Something went wrong. Please try again in a moment."

    def __init__(self, detail: str | None = None):
        self.detail = detail
        super().__init__(detail or self.code)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code}


class Unauthenticated(PromptForgeError):
    code = "UNAUTHENTICATED"
    user_message = "Sign in to generate prompts, then try again."


class InvalidInput(PromptForgeError):
    """Task text failed the length check."""

    code = "INVALID_INPUT"

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason  # too_short | too_long
        super().__init__(detail or reason)

    @property
    def user_message(self) -> str:  # type: ignore[override]
        if self.reason == "too_short":
            return "Describe the task in a bit more detail before generating."
        if self.reason == "too_long":
            return "Task is too long. Please trim it down and try again."
        return "Task input is invalid. Please adjust and try again."

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "reason": self.reason}


class RateLimited(PromptForgeError):
    code = "RATE_LIMITED"
    user_message = "You are sending requests too quickly. Please wait and try again."

    def __init__(self, scope: str, detail: str | None = None):
        self.scope = scope
        super().__init__(detail or f"rate limited: {scope}")

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "scope": self.scope}


class QuotaExceeded(PromptForgeError):
    code = "QUOTA_EXCEEDED"
    user_message = "You have reached your plan quota. Upgrade or wait for the next cycle."

    def __init__(self, kind: str, detail: str | None = None):
        self.kind = kind  # clarifying | generation | edit
        super().__init__(detail or f"quota exceeded: {kind}")

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "kind": self.kind}


class ServiceUnavailable(PromptForgeError):
    code = "SERVICE_UNAVAILABLE"
    user_message = "The prompt service is unavailable right now. Please try again soon."

    def __init__(self, reason: str, detail: str | None = None):
        self.reason = reason
        super().__init__(detail or reason)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "reason": self.reason}


class UnclearTask(PromptForgeError):
    code = "UNCLEAR_TASK"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return self.reason

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "reason": self.reason}
