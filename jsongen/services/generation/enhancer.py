"""Prompt enhancement as a chain of strategies.

Strategies run in a fixed priority order and the first one to return an
EnhancedPrompt wins:

    PatternStrategy     known domains rewritten to a canonical prompt (no network)
    PassThroughStrategy prompts that are already specific enough stay unchanged
    AIStrategy          one model call; generic hint appended if that fails

Enhancement never fails a request.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Literal, Optional

import structlog

from jsongen.errors import GenerationFailure
from jsongen.services.generation.counting import infer_item_count
from jsongen.services.llm_base import BaseLLMClient
from jsongen.services.model_registry import ModelRegistry, generate_with_fallback

logger = structlog.get_logger(__name__)

EnhancementMethod = Literal["pattern", "none", "ai", "fallback"]

FALLBACK_HINT = (
    ". Return a JSON array with 5-10 items. "
    "Include relevant fields with appropriate data types."
)

AI_ENHANCE_TEMPLATE = """You are a prompt enhancement AI. Convert vague user requests into clear, structured JSON generation prompts.

User's request: "{prompt}"

Create a clear prompt that:
1. Specifies it should return a JSON array
2. Limits to 5-10 items if it's a list
3. Defines exact field names with data types
4. Adds relevant fields the user might want
5. Specifies realistic data requirements

Return ONLY the enhanced prompt text, no explanations.

Example:
Input: "make some data"
Output: "Generate a JSON array of 5 generic items. Each item should have: id (number), name (string), description (string), value (number), and category (string)."

Now enhance: "{prompt}\""""

_DIGIT = re.compile(r"\d")


@dataclass(frozen=True)
class EnhancedPrompt:
    original: str
    enhanced: str
    was_enhanced: bool
    method: EnhancementMethod


@dataclass(frozen=True)
class DomainPattern:
    """A known request domain and its canonical field list."""

    name: str
    keywords: tuple[str, ...]
    noun: str
    fields: str

    def matches(self, lower_prompt: str) -> bool:
        return any(k in lower_prompt for k in self.keywords)

    def render(self, count: int) -> str:
        return (
            f"Generate a JSON array of {count} {self.noun}. "
            f"Each item should have: {self.fields}."
        )


# Checked in order; first match wins
DOMAIN_PATTERNS: tuple[DomainPattern, ...] = (
    DomainPattern(
        "products",
        ("product", "amazon", "ecommerce", "shop"),
        "products",
        'id (string), name (string), brand (string), price (number), currency (string, "USD"), '
        "category (string), rating (number, 0-5), reviewsCount (number), imageUrl (string), "
        'description (string), availability (string, "In Stock" or "Out of Stock"), '
        "and primeEligible (boolean)",
    ),
    DomainPattern(
        "users",
        ("user", "profile", "account", "member"),
        "user profiles",
        "id (number), name (string), email (string), age (number), country (string), "
        "registrationDate (string, ISO format), isPremium (boolean), "
        "lastLogin (string, ISO format), and avatar (string, URL)",
    ),
    DomainPattern(
        "countries",
        ("countr", "nation", "geo"),
        "countries",
        "name (string), capital (string), population (number), continent (string), "
        "currency (string), languages (array of strings), and flagUrl (string)",
    ),
    DomainPattern(
        "menu",
        ("restaurant", "menu", "food", "dish", "recipe"),
        "menu items",
        'id (string), name (string), description (string), price (number), currency (string, "USD"), '
        "category (string), isVegetarian (boolean), isVegan (boolean), calories (number), "
        "ingredients (array of strings), allergens (array of strings), and rating (number, 0-5)",
    ),
    DomainPattern(
        "employees",
        ("employee", "staff", "worker", "team member"),
        "employees",
        "id (number), name (string), email (string), position (string), department (string), "
        "salary (number), hireDate (string, ISO format), isActive (boolean), "
        "and skills (array of strings)",
    ),
    DomainPattern(
        "tasks",
        ("todo", "task", "checklist", "item"),
        "tasks",
        'id (number), title (string), description (string), priority (string, "high", "medium", '
        'or "low"), status (string, "pending", "in-progress", or "completed"), '
        "dueDate (string, ISO format), assignee (string), and tags (array of strings)",
    ),
    DomainPattern(
        "books",
        ("book",),
        "books",
        "title (string), author (string), year (number), genre (string), pages (number), "
        "isbn (string), rating (number, 0-5), description (string), and publisher (string)",
    ),
    DomainPattern(
        "movies",
        ("movie", "film", "cinema"),
        "movies",
        "title (string), year (number), director (string), genre (string), "
        "rating (number, 0-10), duration (number, in minutes), cast (array of strings), "
        "and description (string)",
    ),
    DomainPattern(
        "cars",
        ("car", "vehicle", "auto"),
        "cars",
        "make (string), model (string), year (number), price (number), fuelType (string), "
        "transmission (string), mileage (number), color (string), and features (array of strings)",
    ),
    DomainPattern(
        "events",
        ("event", "conference", "meetup", "seminar"),
        "events",
        "id (string), title (string), description (string), date (string, ISO format), "
        "time (string), location (string), organizer (string), capacity (number), "
        "ticketPrice (number), and category (string)",
    ),
    DomainPattern(
        "stocks",
        ("stock", "share", "finance", "ticker"),
        "stocks",
        "symbol (string), company (string), currentPrice (number), change (number), "
        "changePercent (number), volume (number), marketCap (number), and sector (string)",
    ),
    DomainPattern(
        "languages",
        ("programming", "language", "code"),
        "programming languages",
        "name (string), yearCreated (number), paradigm (string), popularityRank (number), "
        "and mainUseCase (string)",
    ),
    DomainPattern(
        "songs",
        ("song", "music", "track", "album"),
        "songs",
        "title (string), artist (string), album (string), year (number), genre (string), "
        "duration (number, in seconds), and rating (number, 0-5)",
    ),
    DomainPattern(
        "courses",
        ("course", "class", "lesson", "tutorial"),
        "courses",
        "id (string), title (string), instructor (string), description (string), "
        "duration (number, in hours), price (number), rating (number, 0-5), "
        'level (string, "beginner", "intermediate", or "advanced"), and enrolledStudents (number)',
    ),
)


class PromptStrategy(ABC):
    """One link in the enhancement chain."""

    @abstractmethod
    async def enhance(self, prompt: str) -> Optional[EnhancedPrompt]:
        """Return an EnhancedPrompt, or None to defer to the next strategy."""


class PatternStrategy(PromptStrategy):
    """Rewrite vague prompts in a known domain into a canonical prompt."""

    def __init__(self, patterns: tuple[DomainPattern, ...] = DOMAIN_PATTERNS):
        self.patterns = patterns

    async def enhance(self, prompt: str) -> Optional[EnhancedPrompt]:
        lower = prompt.lower().strip()
        # Explicit counts or field lists mean the caller was already specific
        if _DIGIT.search(lower) or "should have" in lower or "fields" in lower:
            return None
        for pattern in self.patterns:
            if pattern.matches(lower):
                logger.debug("prompt_pattern_matched", pattern=pattern.name)
                return EnhancedPrompt(
                    original=prompt,
                    enhanced=pattern.render(infer_item_count(prompt)),
                    was_enhanced=True,
                    method="pattern",
                )
        return None


def is_specific(prompt: str) -> bool:
    """At least two signals that the prompt already describes its output."""
    indicators = [
        len(prompt) > 50,
        bool(_DIGIT.search(prompt)),
        "should have" in prompt,
        "fields:" in prompt,
        "each" in prompt and "with" in prompt,
        len(prompt.split(",")) > 3,
    ]
    return sum(indicators) >= 2


class PassThroughStrategy(PromptStrategy):
    async def enhance(self, prompt: str) -> Optional[EnhancedPrompt]:
        if not is_specific(prompt):
            return None
        return EnhancedPrompt(
            original=prompt, enhanced=prompt, was_enhanced=False, method="none"
        )


class AIStrategy(PromptStrategy):
    """Ask a model to restate the prompt. Terminal: always returns a result."""

    def __init__(self, llm: Optional[BaseLLMClient], registry: ModelRegistry):
        self.llm = llm
        self.registry = registry

    async def enhance(self, prompt: str) -> Optional[EnhancedPrompt]:
        try:
            outcome = await generate_with_fallback(
                self.llm,
                self.registry,
                AI_ENHANCE_TEMPLATE.format(prompt=prompt),
                max_tokens=400,
                temperature=0.3,
                json_mode=False,
            )
        except GenerationFailure as e:
            logger.warning("prompt_enhancement_failed", error=str(e))
            return _fallback(prompt)

        enhanced = outcome.response.text.strip().strip('"').strip()
        if not enhanced or enhanced == prompt:
            return _fallback(prompt)

        logger.info(
            "prompt_enhanced",
            method="ai",
            model=outcome.model_used,
            original_length=len(prompt),
            enhanced_length=len(enhanced),
        )
        return EnhancedPrompt(
            original=prompt, enhanced=enhanced, was_enhanced=True, method="ai"
        )


def _fallback(prompt: str) -> EnhancedPrompt:
    return EnhancedPrompt(
        original=prompt,
        enhanced=prompt.rstrip(".") + FALLBACK_HINT,
        was_enhanced=True,
        method="fallback",
    )


class PromptEnhancer:
    """Runs strategies in priority order."""

    def __init__(self, strategies: list[PromptStrategy]):
        self.strategies = strategies

    @classmethod
    def default(cls, llm: Optional[BaseLLMClient], registry: ModelRegistry) -> "PromptEnhancer":
        return cls([PatternStrategy(), PassThroughStrategy(), AIStrategy(llm, registry)])

    async def enhance(self, prompt: str) -> EnhancedPrompt:
        for strategy in self.strategies:
            result = await strategy.enhance(prompt)
            if result is not None:
                return result
        return EnhancedPrompt(
            original=prompt, enhanced=prompt, was_enhanced=False, method="none"
        )
