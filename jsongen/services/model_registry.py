"""Ordered model fallback list with runtime health tracking.

The registry keeps the configured order (primary first). A model that fails
is deprioritized: healthy models are tried before it, but it stays in the
chain as a last resort. One success marks it healthy again.

Usage:
    registry = ModelRegistry(settings.model_chain)
    outcome = await generate_with_fallback(llm, registry, prompt, system=...)
    outcome.response.text, outcome.model_used
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import structlog

from jsongen.errors import GenerationFailure
from jsongen.routers.metrics import set_model_health
from jsongen.services.llm_base import BaseLLMClient, LLMError, LLMResponse

logger = structlog.get_logger(__name__)


@dataclass
class ModelState:
    """Health of one model in the chain."""

    model: str
    healthy: bool = True
    failures: int = 0
    last_error: Optional[str] = None
    last_failure: Optional[datetime] = None
    last_success: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "model": self.model,
            "healthy": self.healthy,
            "failures": self.failures,
            "last_error": self.last_error,
            "last_failure": self.last_failure.isoformat() if self.last_failure else None,
            "last_success": self.last_success.isoformat() if self.last_success else None,
        }


class ModelRegistry:
    """Inspectable, ordered list of model ids."""

    def __init__(self, models: list[str]):
        if not models:
            raise ValueError("ModelRegistry needs at least one model")
        self._states: dict[str, ModelState] = {}
        for model in models:
            self._states.setdefault(model, ModelState(model=model))

    @property
    def models(self) -> list[str]:
        """Configured order, ignoring health."""
        return list(self._states)

    def ordered(self) -> list[str]:
        """Attempt order: healthy models first, then failed ones."""
        states = list(self._states.values())
        return [s.model for s in states if s.healthy] + [
            s.model for s in states if not s.healthy
        ]

    def mark_failed(self, model: str, error: str) -> None:
        state = self._states.get(model)
        if state is None:
            return
        state.failures += 1
        state.last_error = error
        state.last_failure = datetime.now(timezone.utc)
        if state.healthy:
            logger.warning("model_deprioritized", model=model, error=error)
        state.healthy = False
        set_model_health(model, False)

    def mark_healthy(self, model: str) -> None:
        state = self._states.get(model)
        if state is None:
            return
        if not state.healthy:
            logger.info("model_restored", model=model, previous_failures=state.failures)
        state.healthy = True
        state.failures = 0
        state.last_success = datetime.now(timezone.utc)
        set_model_health(model, True)

    def snapshot(self) -> list[dict]:
        """Current health of every model, in configured order."""
        return [s.to_dict() for s in self._states.values()]


@dataclass
class FallbackOutcome:
    """Result of walking the fallback chain."""

    response: LLMResponse
    model_used: str
    attempted_models: list[str] = field(default_factory=list)


async def generate_with_fallback(
    llm: Optional[BaseLLMClient],
    registry: ModelRegistry,
    prompt: str,
    system: Optional[str] = None,
    max_tokens: int = 4096,
    temperature: float = 0.7,
    json_mode: bool = True,
) -> FallbackOutcome:
    """Try each model in registry order until one answers.

    Raises:
        GenerationFailure: every model failed (or no client is configured).
            The message names each attempted model and the last error.
    """
    if llm is None:
        raise GenerationFailure("LLM is not configured (GEMINI_API_KEY unset)")

    attempted: list[str] = []
    last_error: Optional[Exception] = None

    for model in registry.ordered():
        attempted.append(model)
        logger.debug("model_attempt", model=model, attempt=len(attempted))
        try:
            response = await llm.generate_text(
                prompt,
                system=system,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                json_mode=json_mode,
            )
        except LLMError as e:
            last_error = e
            registry.mark_failed(model, str(e))
            logger.warning("model_failed", model=model, error=str(e))
            continue

        registry.mark_healthy(model)
        return FallbackOutcome(
            response=response, model_used=model, attempted_models=attempted
        )

    raise GenerationFailure(
        f"All models failed. Attempted: {', '.join(attempted)}. Last error: {last_error}",
        attempted_models=attempted,
    )
