"""Generation engine: prompt in, structured JSON dataset out.

Small requests (fewer than CHUNK_THRESHOLD items) are one model call whose
output is parsed, or wrapped as {"raw_output": ...} when it cannot be.

Larger requests are split into chunks of CHUNK_SIZE items, each generated
with a minimal-field prompt and an explicit starting id. A chunk gets one
retry with an even simpler prompt; a chunk that still fails is dropped and
the result reports how many items were actually produced.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import structlog

from jsongen.errors import GenerationFailure
from jsongen.routers.metrics import record_chunk, record_generation
from jsongen.services.generation.counting import array_key, infer_item_count, item_type
from jsongen.services.generation.enhancer import EnhancedPrompt, PromptEnhancer
from jsongen.services.generation.json_repair import (
    JSONRepairError,
    extract_items,
    extract_json,
    parse_or_wrap,
)
from jsongen.services.llm_base import BaseLLMClient
from jsongen.services.model_registry import ModelRegistry, generate_with_fallback

logger = structlog.get_logger(__name__)

CHUNK_SIZE = 5
CHUNK_THRESHOLD = 10

JSON_SYSTEM_PROMPT = """You are a JSON data generator. Output ONLY valid, complete JSON.

RULES:
1. NO markdown, NO ```json, just pure JSON starting with [
2. COMPLETE all structures - never truncate
3. Generate EXACT count requested
4. Keep ALL content SHORT (names, descriptions under 30 chars)
5. Close all brackets properly"""

CONSTRAINTS_TEMPLATE = """{prompt}

CRITICAL:
- Generate EXACTLY {count} items
- ALL text under 25 chars (names, descriptions, etc)
- Output complete valid JSON
- Start with [ or {{"""

CHUNK_TEMPLATE = """Generate {count} {item_type}.
Start ID from {start_id}.
Keep it minimal - essential fields only.
All text under 25 characters.
Output as JSON array: [{{"id": "001", ...}}, ...]"""

RETRY_CHUNK_TEMPLATE = """Generate {count} items as JSON array.
Start ID: {start_id}
Format: [{{"id":"001","name":"Item 1"}},{{"id":"002","name":"Item 2"}}]
Keep names under 20 chars."""


@dataclass
class GenerationResult:
    """Structured output of one generation."""

    data: Any
    model_used: str
    metadata: dict = field(default_factory=dict)

    @property
    def items_generated(self) -> int:
        return self.metadata.get("actual_count", 0)


@dataclass
class _ChunkAttempt:
    items: list
    model_used: Optional[str] = None
    error: Optional[str] = None


class GenerationEngine:
    """Turns prompts into JSON datasets via the model fallback chain."""

    def __init__(
        self,
        llm: Optional[BaseLLMClient],
        registry: ModelRegistry,
        enhancer: Optional[PromptEnhancer] = None,
        chunk_size: int = CHUNK_SIZE,
        chunk_threshold: int = CHUNK_THRESHOLD,
        chunk_delay_s: float = 1.0,
        max_output_tokens: int = 4096,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.llm = llm
        self.registry = registry
        self.enhancer = enhancer or PromptEnhancer.default(llm, registry)
        self.chunk_size = chunk_size
        self.chunk_threshold = chunk_threshold
        self.chunk_delay_s = chunk_delay_s
        self.max_output_tokens = max_output_tokens
        self._sleep = sleep

    async def generate(self, prompt: str, enhance: bool = False) -> GenerationResult:
        """Generate a dataset for `prompt`.

        The item count is inferred from the caller's prompt, before any
        enhancement rewrites it.

        Raises:
            GenerationFailure: the model chain was exhausted, or every chunk
                of a chunked request failed
        """
        enhanced: Optional[EnhancedPrompt] = None
        working_prompt = prompt
        if enhance:
            enhanced = await self.enhancer.enhance(prompt)
            working_prompt = enhanced.enhanced

        count = infer_item_count(prompt)
        mode = "chunked" if count >= self.chunk_threshold else "single"
        logger.info("generation_started", mode=mode, requested_count=count)

        try:
            if mode == "chunked":
                result = await self._generate_chunked(working_prompt, count)
            else:
                result = await self._generate_single(working_prompt, count)
        except GenerationFailure:
            record_generation(mode, "failed")
            raise

        record_generation(mode, "success")
        if enhanced is not None:
            result.metadata["enhancement_method"] = enhanced.method
            result.metadata["prompt_enhanced"] = enhanced.was_enhanced
        return result

    async def _call(self, user_prompt: str, count: int):
        return await generate_with_fallback(
            self.llm,
            self.registry,
            CONSTRAINTS_TEMPLATE.format(prompt=user_prompt, count=count),
            system=JSON_SYSTEM_PROMPT,
            max_tokens=self.max_output_tokens,
        )

    async def _generate_single(self, prompt: str, count: int) -> GenerationResult:
        outcome = await self._call(prompt, count)
        data = parse_or_wrap(outcome.response.text)
        actual = 0 if _is_raw(data) else len(extract_items(data))
        logger.info(
            "generation_complete",
            mode="single",
            model_used=outcome.model_used,
            requested_count=count,
            actual_count=actual,
        )
        return GenerationResult(
            data=data,
            model_used=outcome.model_used,
            metadata={"requested_count": count, "actual_count": actual},
        )

    async def _attempt_chunk(self, chunk_prompt: str, size: int) -> _ChunkAttempt:
        try:
            outcome = await self._call(chunk_prompt, size)
        except GenerationFailure as e:
            return _ChunkAttempt(items=[], error=str(e))
        try:
            items = extract_items(extract_json(outcome.response.text))
        except JSONRepairError as e:
            return _ChunkAttempt(items=[], model_used=outcome.model_used, error=str(e))
        return _ChunkAttempt(items=items, model_used=outcome.model_used)

    async def _generate_chunked(self, prompt: str, count: int) -> GenerationResult:
        total_chunks = math.ceil(count / self.chunk_size)
        noun = item_type(prompt)
        items: list = []
        model_used: Optional[str] = None
        last_error: Optional[str] = None

        for index in range(total_chunks):
            size = min(self.chunk_size, count - index * self.chunk_size)
            start_id = f"{index * self.chunk_size + 1:03d}"
            log = logger.bind(chunk=index + 1, total_chunks=total_chunks, size=size)

            attempt = await self._attempt_chunk(
                CHUNK_TEMPLATE.format(count=size, item_type=noun, start_id=start_id), size
            )
            outcome = "ok"
            if not attempt.items:
                log.warning("chunk_failed", error=attempt.error)
                attempt = await self._attempt_chunk(
                    RETRY_CHUNK_TEMPLATE.format(count=size, start_id=start_id), size
                )
                outcome = "retried" if attempt.items else "dropped"

            record_chunk(outcome)
            if attempt.items:
                # Models sometimes overshoot; a chunk never contributes more than its size
                items.extend(attempt.items[:size])
                model_used = attempt.model_used
                log.info("chunk_complete", outcome=outcome, items=len(attempt.items))
            else:
                last_error = attempt.error or "chunk produced no items"
                log.error("chunk_dropped", error=last_error)

            if index < total_chunks - 1 and self.chunk_delay_s > 0:
                await self._sleep(self.chunk_delay_s)

        if not items:
            raise GenerationFailure(
                f"All {total_chunks} chunks failed. Last error: {last_error}",
                attempted_models=self.registry.models,
            )

        success_rate = len(items) / count
        logger.info(
            "generation_complete",
            mode="chunked",
            model_used=model_used,
            requested_count=count,
            actual_count=len(items),
            success_rate=round(success_rate, 3),
        )
        return GenerationResult(
            data={array_key(prompt): items},
            model_used=model_used or "",
            metadata={
                "requested_count": count,
                "actual_count": len(items),
                "chunks": total_chunks,
                "success_rate": success_rate,
            },
        )


def _is_raw(data: Any) -> bool:
    return isinstance(data, dict) and set(data) == {"raw_output"}
