from __future__ import annotations

from typing import Protocol

SYSTEM_INSTRUCTION = (
    "You are a Python and Machine Learning coding assistant. Only answer questions related to "
    "Python programming, Machine Learning, Data Science, and related technologies."
)

FALLBACK_RESPONSE = "Sorry, I could not generate a response."

RETRYABLE_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


class GenerationError(RuntimeError):
    """The generation service failed or returned an unusable body."""


class TextGenerator(Protocol):
    def generate(self, prompt_text: str, *, request_id: str | None = None) -> str: ...


def build_prompt(message: str) -> str:
    return f"{SYSTEM_INSTRUCTION} User question: {message}"


def backoff_seconds(attempt: int) -> float:
    return min(0.5 * (2 ** (attempt - 1)), 5.0)
