"""Input validation shared by the job store and the HTTP layer."""

from typing import Any
from uuid import UUID

from jsongen.errors import ValidationError

MAX_PROMPT_LENGTH = 2000

PROMPT_REQUIRED = "Prompt is required"


def validate_prompt(prompt: Any, max_length: int = MAX_PROMPT_LENGTH) -> str:
    """Return the prompt unchanged, or raise ValidationError.

    Over-long prompts are rejected, never truncated.
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError(PROMPT_REQUIRED)
    if len(prompt) > max_length:
        raise ValidationError(f"Prompt too long (max {max_length} chars)")
    return prompt


def parse_job_id(job_id: Any) -> UUID:
    """Parse a job id, raising ValidationError for anything malformed."""
    if isinstance(job_id, UUID):
        return job_id
    if not isinstance(job_id, str) or job_id.strip() in ("", "undefined", "null"):
        raise ValidationError("Job ID is required and must be valid")
    try:
        return UUID(job_id.strip())
    except ValueError:
        raise ValidationError("Invalid job ID format")
