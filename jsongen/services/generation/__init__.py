"""Prompt-to-JSON generation: counting, enhancement, repair and the engine."""

from jsongen.services.generation.engine import GenerationEngine, GenerationResult
from jsongen.services.generation.enhancer import EnhancedPrompt, PromptEnhancer
from jsongen.services.generation.json_repair import (
    JSONRepairError,
    extract_items,
    extract_json,
    parse_or_wrap,
)

__all__ = [
    "GenerationEngine",
    "GenerationResult",
    "EnhancedPrompt",
    "PromptEnhancer",
    "JSONRepairError",
    "extract_items",
    "extract_json",
    "parse_or_wrap",
]
