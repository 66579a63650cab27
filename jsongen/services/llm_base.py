"""Base LLM client interface and shared types."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, TypedDict

import structlog

logger = structlog.get_logger(__name__)

# Message types
Role = Literal["system", "user", "assistant"]


class Message(TypedDict):
    """Chat message structure."""

    role: Role
    content: str


@dataclass
class LLMResponse:
    """Response from an LLM generation call."""

    text: str
    model: str
    provider: str
    usage: dict | None = None  # {input_tokens, output_tokens}
    latency_ms: float | None = None


# ===========================================
# Errors - Provider-agnostic exception hierarchy
# Providers map their errors to these in their adapters
# ===========================================


class LLMError(Exception):
    """Base error from LLM provider."""

    def __init__(self, message: str, provider: str, model: str | None = None):
        self.provider = provider
        self.model = model
        super().__init__(message)


class LLMTimeoutError(LLMError):
    """Request timed out waiting for LLM response."""

    def __init__(
        self,
        message: str = "LLM request timed out",
        provider: str = "unknown",
        model: str | None = None,
        timeout_seconds: float | None = None,
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(message, provider, model)


class LLMRateLimitError(LLMError):
    """Rate limited (or quota exhausted) by the LLM provider."""

    def __init__(
        self,
        message: str = "Rate limited by LLM provider",
        provider: str = "unknown",
        model: str | None = None,
        retry_after_seconds: int | None = None,
    ):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message, provider, model)


class LLMAPIError(LLMError):
    """General API error from LLM provider (non-rate-limit)."""

    def __init__(
        self,
        message: str = "LLM provider API error",
        provider: str = "unknown",
        model: str | None = None,
        status_code: int | None = None,
    ):
        self.status_code = status_code
        super().__init__(message, provider, model)


class BaseLLMClient(ABC):
    """Abstract base class for LLM clients."""

    def __init__(self, default_model: str):
        """
        Initialize the LLM client.

        Args:
            default_model: Model used when a call does not name one
        """
        self.default_model = default_model
        self.provider: str = "base"  # Override in subclasses

    @abstractmethod
    async def generate(
        self,
        *,
        messages: list[Message],
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        json_mode: bool = True,
    ) -> LLMResponse:
        """
        Generate a response from the LLM.

        Args:
            messages: List of chat messages
            model: Model to use (defaults to default_model)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature
            json_mode: Ask the provider for a JSON response body

        Returns:
            LLMResponse with text, model, provider, usage, latency

        Raises:
            LLMError: On provider API errors
        """
        ...

    async def generate_text(
        self,
        prompt: str,
        system: str | None = None,
        model: str | None = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        json_mode: bool = True,
    ) -> LLMResponse:
        """
        Convenience method: generate from a simple prompt.

        Args:
            prompt: User prompt
            system: Optional system prompt
            model: Model to use
            max_tokens: Maximum tokens
            temperature: Sampling temperature
            json_mode: Ask the provider for a JSON response body

        Returns:
            LLMResponse for the single exchange
        """
        messages: list[Message] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        return await self.generate(
            messages=messages,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            json_mode=json_mode,
        )
