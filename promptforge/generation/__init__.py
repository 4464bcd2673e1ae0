"""Provider-backed prompt generation."""

from .pipeline import GenerationPipeline, ModelRouter, QuestionsResult
from .prompts import GENERIC_QUESTIONS, build_style_line, fallback_questions
from .provider import ChatProvider, ClaudeAgentProvider, ProviderError, extract_json

__all__ = [
    "GenerationPipeline",
    "ModelRouter",
    "QuestionsResult",
    "GENERIC_QUESTIONS",
    "build_style_line",
    "fallback_questions",
    "ChatProvider",
    "ClaudeAgentProvider",
    "ProviderError",
    "extract_json",
]
