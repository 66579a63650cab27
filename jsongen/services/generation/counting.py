"""Item-count inference and item-type naming for generation prompts."""

import re

DEFAULT_ITEM_COUNT = 5
MAX_ITEM_COUNT = 100

# Tried in order; first match wins
_COUNT_PATTERNS = [
    re.compile(r"(?:generate|create|make|give\s*me|build|produce)\s+(\d+)", re.IGNORECASE),
    re.compile(
        r"(\d+)\s+(?:user\s*profiles?|users?|products?|items?|records?|entries?"
        r"|people|customers?|employees?)",
        re.IGNORECASE,
    ),
]

_STANDALONE_INT = re.compile(r"\b(\d+)\b")


def infer_item_count(prompt: str) -> int:
    """Requested item count in [1, MAX_ITEM_COUNT]; DEFAULT_ITEM_COUNT when absent or zero."""
    for pattern in _COUNT_PATTERNS:
        match = pattern.search(prompt)
        if match:
            count = int(match.group(1))
            if count == 0:
                return DEFAULT_ITEM_COUNT
            return min(count, MAX_ITEM_COUNT)
    return DEFAULT_ITEM_COUNT


def first_integer(prompt: str, default: int = DEFAULT_ITEM_COUNT) -> int:
    """First standalone integer in the prompt (used for request costing)."""
    match = _STANDALONE_INT.search(prompt)
    return int(match.group(1)) if match else default


def item_type(prompt: str) -> str:
    """Human noun phrase for the items a prompt asks for."""
    lower = prompt.lower()
    if "product" in lower:
        return "products"
    if "user" in lower or "profile" in lower:
        return "user profiles"
    if "employee" in lower:
        return "employee records"
    if "customer" in lower:
        return "customers"
    return "items"


def array_key(prompt: str) -> str:
    """Top-level key used to wrap chunked results."""
    lower = prompt.lower()
    if "product" in lower:
        return "products"
    if "user" in lower or "profile" in lower:
        return "profiles"
    if "employee" in lower:
        return "employees"
    if "customer" in lower:
        return "customers"
    return "items"
