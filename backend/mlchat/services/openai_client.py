from __future__ import annotations

import logging
import random
import time

from openai import OpenAI, OpenAIError

from mlchat.core.config import settings
from mlchat.services.generation import (
    FALLBACK_RESPONSE,
    RETRYABLE_STATUSES,
    SYSTEM_INSTRUCTION,
    GenerationError,
    backoff_seconds,
)

logger = logging.getLogger(__name__)


class OpenAIGenerationClient:
    """
    Thin wrapper around the OpenAI SDK. Point ``OPENAI_BASE_URL`` at any
    OpenAI-compatible endpoint (Gemini exposes one) to reuse this provider.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        base_url: str | None = None,
        client: OpenAI | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL
        self.base_url = base_url or settings.OPENAI_BASE_URL
        self.temperature = settings.GENERATION_TEMPERATURE
        self.max_tokens = settings.GENERATION_MAX_OUTPUT_TOKENS
        self.max_retries = max(1, settings.GENERATION_MAX_RETRIES)
        self._client = client

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise GenerationError("OPENAI_API_KEY is not configured")
            self._client = OpenAI(
                api_key=self.api_key,
                base_url=self.base_url,
                timeout=settings.GENERATION_TIMEOUT_SECONDS,
                max_retries=0,
            )
        return self._client

    def generate(self, prompt_text: str, *, request_id: str | None = None) -> str:
        client = self._get_client()
        messages = [
            {"role": "system", "content": SYSTEM_INSTRUCTION},
            {"role": "user", "content": prompt_text},
        ]

        for attempt in range(1, self.max_retries + 1):
            try:
                response = client.chat.completions.create(
                    model=self.model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    extra_headers={"X-Request-ID": request_id} if request_id else None,
                )
                break
            except OpenAIError as exc:
                logger.error("OpenAI chat failed: %s", exc, extra={"request_id": request_id})
                if attempt == self.max_retries or not self._is_retryable(exc):
                    raise GenerationError("Failed to generate response") from exc
                time.sleep(backoff_seconds(attempt) + random.uniform(0, 0.25))
        else:  # pragma: no cover
            raise GenerationError("Failed to generate response")

        choices = getattr(response, "choices", None) or []
        if not choices:
            return FALLBACK_RESPONSE
        content = getattr(choices[0].message, "content", None)
        return content or FALLBACK_RESPONSE

    def _is_retryable(self, exc: OpenAIError) -> bool:
        status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
        if isinstance(status, int):
            return status in RETRYABLE_STATUSES
        message = str(exc).lower()
        return "timeout" in message or "temporarily unavailable" in message
