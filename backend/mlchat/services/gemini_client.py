from __future__ import annotations

import logging
import random
import time

import httpx
from pydantic import BaseModel, Field, ValidationError

from mlchat.core.config import settings
from mlchat.services.generation import (
    FALLBACK_RESPONSE,
    RETRYABLE_STATUSES,
    GenerationError,
    backoff_seconds,
    build_prompt,
)

logger = logging.getLogger(__name__)


class GeminiPart(BaseModel):
    text: str | None = None


class GeminiContent(BaseModel):
    parts: list[GeminiPart] = Field(default_factory=list)


class GeminiCandidate(BaseModel):
    content: GeminiContent | None = None
    finishReason: str | None = None


class GeminiErrorDetail(BaseModel):
    code: int | None = None
    message: str | None = None
    status: str | None = None


class GenerateContentResponse(BaseModel):
    """Either a list of candidates (success) or an ``error`` object."""

    candidates: list[GeminiCandidate] = Field(default_factory=list)
    error: GeminiErrorDetail | None = None

    def first_text(self) -> str | None:
        if not self.candidates:
            return None
        content = self.candidates[0].content
        if content is None or not content.parts:
            return None
        return content.parts[0].text


class GeminiClient:
    """
    Calls the Gemini ``generateContent`` REST endpoint over httpx.

    The API key is checked at call time so requests refused before generation
    (no credits, out of scope) never depend on generation being configured.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        model: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.GEMINI_API_KEY
        self.model = model or settings.GEMINI_MODEL
        self.api_base = (api_base or settings.GEMINI_API_BASE).rstrip("/")
        self.temperature = settings.GENERATION_TEMPERATURE if temperature is None else temperature
        self.max_output_tokens = max_output_tokens or settings.GENERATION_MAX_OUTPUT_TOKENS
        self.timeout = timeout or settings.GENERATION_TIMEOUT_SECONDS
        self.max_retries = max(1, max_retries or settings.GENERATION_MAX_RETRIES)

    @property
    def endpoint(self) -> str:
        return f"{self.api_base}/models/{self.model}:generateContent"

    def build_payload(self, prompt_text: str) -> dict:
        return {
            "contents": [{"parts": [{"text": build_prompt(prompt_text)}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
            },
        }

    def generate(self, prompt_text: str, *, request_id: str | None = None) -> str:
        if not self.api_key:
            raise GenerationError("Gemini API key not configured")

        response = self._post(self.build_payload(prompt_text), request_id=request_id)

        try:
            body = response.json()
        except ValueError as exc:
            raise GenerationError("Malformed response from generation service") from exc
        if not isinstance(body, dict):
            raise GenerationError("Malformed response from generation service")

        try:
            parsed = GenerateContentResponse.model_validate(body)
        except ValidationError:
            logger.warning("gemini.unexpected_shape", extra={"request_id": request_id})
            return FALLBACK_RESPONSE

        if parsed.error is not None:
            logger.error(
                "Gemini API error: %s",
                parsed.error.message,
                extra={"request_id": request_id, "status": parsed.error.status},
            )
            raise GenerationError("Failed to generate response")

        text = parsed.first_text()
        if not text:
            logger.warning("gemini.empty_candidate", extra={"request_id": request_id})
            return FALLBACK_RESPONSE
        return text

    def _post(self, payload: dict, *, request_id: str | None) -> httpx.Response:
        for attempt in range(1, self.max_retries + 1):
            last_attempt = attempt == self.max_retries
            try:
                response = httpx.post(
                    self.endpoint,
                    params={"key": self.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.timeout,
                )
            except httpx.HTTPError as exc:
                logger.error("Gemini transport error: %s", exc, extra={"request_id": request_id})
                if last_attempt:
                    raise GenerationError("Failed to generate response") from exc
                self._sleep(attempt)
                continue

            if response.status_code < 400:
                return response

            logger.error(
                "Gemini API error: status=%s body=%s",
                response.status_code,
                response.text[:500],
                extra={"request_id": request_id},
            )
            if last_attempt or response.status_code not in RETRYABLE_STATUSES:
                raise GenerationError("Failed to generate response")
            self._sleep(attempt)

        raise GenerationError("Failed to generate response")  # pragma: no cover

    def _sleep(self, attempt: int) -> None:
        time.sleep(backoff_seconds(attempt) + random.uniform(0, 0.25))
