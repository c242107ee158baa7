from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest
from openai import APIStatusError

from mlchat.core import config as app_config
from mlchat.services.generation import FALLBACK_RESPONSE, SYSTEM_INSTRUCTION, GenerationError
from mlchat.services.openai_client import OpenAIGenerationClient


class _FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls: list[dict] = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _FakeOpenAI:
    def __init__(self, outcomes):
        self.completions = _FakeCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _status_error(code: int) -> APIStatusError:
    request = httpx.Request("POST", "https://api.openai.invalid/v1/chat/completions")
    response = httpx.Response(code, request=request)
    return APIStatusError("upstream failed", response=response, body=None)


def test_generate_sends_system_and_user_messages():
    fake = _FakeOpenAI([_completion("A list comprehension builds a list inline.")])
    client = OpenAIGenerationClient(api_key="sk-test", model="gpt-test", client=fake)

    text = client.generate("What is a list comprehension in Python?", request_id="req-1")

    assert text == "A list comprehension builds a list inline."
    call = fake.completions.calls[0]
    assert call["model"] == "gpt-test"
    assert call["messages"][0] == {"role": "system", "content": SYSTEM_INSTRUCTION}
    assert call["messages"][1]["content"] == "What is a list comprehension in Python?"
    assert call["extra_headers"] == {"X-Request-ID": "req-1"}


def test_empty_choice_returns_fallback():
    client = OpenAIGenerationClient(api_key="sk-test", client=_FakeOpenAI([SimpleNamespace(choices=[])]))
    assert client.generate("python?") == FALLBACK_RESPONSE


def test_non_retryable_error_raises_generation_error():
    client = OpenAIGenerationClient(api_key="sk-test", client=_FakeOpenAI([_status_error(400)]))
    with pytest.raises(GenerationError):
        client.generate("python?")


def test_retryable_error_is_retried(monkeypatch):
    app_config.settings.GENERATION_MAX_RETRIES = 2
    monkeypatch.setattr("mlchat.services.openai_client.time.sleep", lambda seconds: None)
    fake = _FakeOpenAI([_status_error(503), _completion("ok")])
    client = OpenAIGenerationClient(api_key="sk-test", client=fake)

    assert client.generate("python?") == "ok"
    assert len(fake.completions.calls) == 2


def test_missing_api_key_raises_at_call_time():
    client = OpenAIGenerationClient(api_key="")
    with pytest.raises(GenerationError):
        client.generate("python?")
