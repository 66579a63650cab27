"""Extract JSON from raw model output, repairing truncated responses.

Model output is often wrapped in markdown fences, prefixed with chatter, or
cut off at the token limit. extract_json isolates the JSON value and, when it
does not parse, applies a fixed sequence of repairs:

    1. truncate after the last complete object inside the value
    2. strip trailing commas before closers (and at end of text)
    3. close an unterminated string
    4. append the closers needed to balance the open brackets and braces

All scanning is string-aware: brackets inside string literals are ignored.
"""

import json
import re
from typing import Any, Optional

import structlog

logger = structlog.get_logger(__name__)

_FENCE = re.compile(r"```(?:json|JSON)?")
_COMMA_BEFORE_CLOSER = re.compile(r",\s*([\]}])")
_COMMA_AT_END = re.compile(r",\s*$")

_CLOSERS = {"{": "}", "[": "]"}

# Item arrays are looked up under these keys before any other list value
ITEM_KEYS = ("items", "products", "users", "profiles", "employees", "records", "data")


class JSONRepairError(ValueError):
    """Output could not be parsed even after repair."""


class _Scan:
    """String-aware bracket scan of a JSON fragment."""

    def __init__(self, text: str):
        self.stack: list[str] = []
        self.in_string = False
        self.last_object_end: Optional[int] = None
        self.balanced_at: Optional[int] = None

        escaped = False
        for i, ch in enumerate(text):
            if self.in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    self.in_string = False
                continue
            if ch == '"':
                self.in_string = True
            elif ch in _CLOSERS:
                self.stack.append(ch)
            elif ch in ("}", "]"):
                if self.stack and _CLOSERS[self.stack[-1]] == ch:
                    self.stack.pop()
                if not self.stack:
                    self.balanced_at = i
                    break
                if ch == "}":
                    self.last_object_end = i

    @property
    def closers(self) -> str:
        return "".join(_CLOSERS[opener] for opener in reversed(self.stack))


def strip_fences(text: str) -> str:
    return _FENCE.sub("", text).strip()


def isolate(text: str) -> str:
    """Slice from the first opener to its matching closer, or to end of text."""
    starts = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not starts:
        return text.strip()
    start = min(starts)
    scan = _Scan(text[start:])
    if scan.balanced_at is not None:
        return text[start : start + scan.balanced_at + 1]
    return text[start:].strip()


def _close(fragment: str) -> str:
    fragment = _COMMA_BEFORE_CLOSER.sub(r"\1", fragment)
    fragment = _COMMA_AT_END.sub("", fragment)
    scan = _Scan(fragment)
    if scan.in_string:
        fragment += '"'
        scan = _Scan(fragment)
    fragment += scan.closers
    return _COMMA_BEFORE_CLOSER.sub(r"\1", fragment)


def repair(fragment: str) -> str:
    """Truncate after the last complete inner object, then close what is open."""
    scan = _Scan(fragment)
    if scan.last_object_end is not None and scan.stack:
        fragment = fragment[: scan.last_object_end + 1]
    return _close(fragment)


def extract_json(text: str) -> Any:
    """Parse the JSON value in raw model output.

    Raises:
        JSONRepairError: nothing parseable, even after repair
    """
    fragment = isolate(strip_fences(text))
    try:
        return json.loads(fragment)
    except json.JSONDecodeError as e:
        first_error = e

    repaired = repair(fragment)
    try:
        data = json.loads(repaired)
    except json.JSONDecodeError:
        raise JSONRepairError(f"Could not parse model output as JSON: {first_error}") from None

    logger.info(
        "json_repaired",
        original_length=len(fragment),
        repaired_length=len(repaired),
    )
    return data


def parse_or_wrap(text: str) -> Any:
    """extract_json, falling back to {"raw_output": text}."""
    try:
        return extract_json(text)
    except JSONRepairError as e:
        logger.warning("json_unparseable", error=str(e), output_length=len(text))
        return {"raw_output": text}


def extract_items(data: Any) -> list:
    """Pull the item array out of a parsed response."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ITEM_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
        for value in data.values():
            if isinstance(value, list):
                return value
        return [data]
    return [data]
