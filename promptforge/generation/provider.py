"""External language-model provider used by the generation pipeline."""

import json
import os
import subprocess
from pathlib import Path
from typing import Protocol

from claude_agent_sdk import AssistantMessage, ClaudeAgentOptions, TextBlock, query

from ..logging_config import get_logger

logger = get_logger(__name__)


class ProviderError(Exception):
    """The provider call failed or returned nothing usable."""


class ChatProvider(Protocol):
    """Chat-completion contract.

    ``messages`` are ``{"role": ..., "content": ...}`` dicts. When
    ``response_format`` is ``"json"`` the reply is expected to contain a
    single JSON object. Returns the raw reply text.
    """

    async def complete(
        self,
        model: str,
        messages: list[dict],
        response_format: str = "json",
        temperature: float = 0.4,
    ) -> str: ...


def _get_api_key() -> str | None:
    """Get the API key from the environment or Claude's helper script."""
    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        return api_key

    script_path = Path.home() / ".claude" / "get-api-key.sh"
    if script_path.exists():
        try:
            result = subprocess.run(
                ["bash", str(script_path)],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        except (OSError, subprocess.SubprocessError):
            logger.debug("API key helper failed", exc_info=True)

    return None


def extract_json(text: str):
    """Parse the first JSON object embedded in ``text``.

    Replies may wrap the object in prose or code fences.

    Raises:
        ValueError: if no object can be decoded.
    """
    cleaned = (text or "").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError:
        pass
    start = cleaned.find("{")
    end = cleaned.rfind("}") + 1
    if start == -1 or end <= start:
        raise ValueError("no JSON object in response")
    return json.loads(cleaned[start:end])


class ClaudeAgentProvider:
    """Provider backed by the Claude Agent SDK.

    System messages become the SDK system prompt and the remaining messages
    are joined into a single-turn prompt. The SDK exposes no sampling
    control, so ``temperature`` is only logged.
    """

    def __init__(self, max_turns: int = 1):
        self.max_turns = max_turns

    async def complete(
        self,
        model: str,
        messages: list[dict],
        response_format: str = "json",
        temperature: float = 0.4,
    ) -> str:
        system_parts = [m["content"] for m in messages if m.get("role") == "system"]
        prompt = "\n\n".join(m["content"] for m in messages if m.get("role") != "system")
        system_prompt = "\n\n".join(system_parts)
        if response_format == "json":
            system_prompt += "\n\nRespond with a single JSON object and nothing else."

        env = {}
        if api_key := _get_api_key():
            env["ANTHROPIC_API_KEY"] = api_key

        options = ClaudeAgentOptions(
            model=model,
            max_turns=self.max_turns,
            allowed_tools=[],
            system_prompt=system_prompt,
            env=env,
        )

        logger.debug("Provider call model=%s temperature=%.2f", model, temperature)
        response_text = ""
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            response_text += block.text
        except Exception as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e

        if not response_text.strip():
            raise ProviderError("empty response")
        return response_text
