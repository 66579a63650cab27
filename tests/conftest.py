"""Root conftest for the test suite.

Provides a scripted LLM client and resets cached settings and the LLM
singleton around every test so environment changes do not leak.
"""

from typing import Callable, Iterable, Optional, Union

import pytest

from jsongen.config import get_settings
from jsongen.services.llm_base import BaseLLMClient, LLMAPIError, LLMResponse, Message
from jsongen.services.llm_factory import reset_llm

Reply = Union[str, Exception, Callable[[list[Message]], str]]


class FakeLLM(BaseLLMClient):
    """Replays scripted replies in call order.

    Models listed in `fail_models` always raise LLMAPIError. A reply may be a
    string, an exception to raise, or a callable taking the messages.
    """

    def __init__(
        self,
        replies: Optional[Iterable[Reply]] = None,
        fail_models: Iterable[str] = (),
        default_model: str = "model-a",
        default_reply: str = "[]",
    ):
        super().__init__(default_model)
        self.provider = "fake"
        self.replies = list(replies or [])
        self.fail_models = set(fail_models)
        self.default_reply = default_reply
        self.calls: list[dict] = []

    async def generate(
        self,
        *,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        json_mode: bool = True,
    ) -> LLMResponse:
        model = model or self.default_model
        self.calls.append(
            {
                "model": model,
                "messages": messages,
                "max_tokens": max_tokens,
                "temperature": temperature,
                "json_mode": json_mode,
            }
        )
        if model in self.fail_models:
            raise LLMAPIError(
                f"{model} unavailable", provider="fake", model=model, status_code=503
            )
        reply = self.replies.pop(0) if self.replies else self.default_reply
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(messages)
        return LLMResponse(text=reply, model=model, provider="fake")

    @property
    def prompts(self) -> list[str]:
        """User message of every call, in order."""
        return [
            next(m["content"] for m in call["messages"] if m["role"] == "user")
            for call in self.calls
        ]


@pytest.fixture
def make_llm():
    """Factory for scripted LLM clients."""
    return FakeLLM


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch):
    """Fresh settings and LLM client for every test."""
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("WORKER_SECRET", raising=False)
    get_settings.cache_clear()
    reset_llm()
    yield
    get_settings.cache_clear()
    reset_llm()
