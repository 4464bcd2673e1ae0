"""PromptForge: turn a task description into a model-ready prompt."""

__version__ = "0.1.0"
