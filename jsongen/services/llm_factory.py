"""LLM provider factory and status management."""

from dataclasses import dataclass

import structlog

from jsongen.config import get_settings
from jsongen.services.llm_base import BaseLLMClient

logger = structlog.get_logger(__name__)


@dataclass
class LLMStatus:
    """LLM configuration status."""

    enabled: bool
    provider: str | None
    primary_model: str
    model_chain: list[str]


# Module-level singletons
_llm_client: BaseLLMClient | None = None
_llm_status: LLMStatus | None = None
_initialized: bool = False


def _initialize() -> None:
    """Initialize the LLM subsystem (idempotent)."""
    global _llm_client, _llm_status, _initialized

    if _initialized:
        return

    settings = get_settings()
    api_key = (settings.gemini_api_key or "").strip() or None

    if api_key:
        from jsongen.services.llm_gemini import GeminiLLMClient

        _llm_client = GeminiLLMClient(
            api_key=api_key,
            default_model=settings.gemini_primary_model,
            timeout=settings.llm_timeout,
        )
        logger.info(
            "llm_initialized",
            provider="gemini",
            model_chain=settings.model_chain,
        )
    else:
        _llm_client = None
        logger.info("llm_disabled", reason="no API key configured")

    _llm_status = LLMStatus(
        enabled=_llm_client is not None,
        provider="gemini" if _llm_client else None,
        primary_model=settings.gemini_primary_model,
        model_chain=settings.model_chain,
    )
    _initialized = True


def get_llm_status() -> LLMStatus:
    """Get LLM configuration status without making a request."""
    _initialize()
    assert _llm_status is not None
    return _llm_status


def get_llm() -> BaseLLMClient | None:
    """
    Get the cached LLM client.

    Returns:
        BaseLLMClient if an API key is configured, None otherwise
    """
    _initialize()
    return _llm_client


def reset_llm() -> None:
    """
    Reset the LLM singleton (for testing).

    This allows re-initialization with different settings.
    """
    global _llm_client, _llm_status, _initialized
    _llm_client = None
    _llm_status = None
    _initialized = False
