"""Domain error taxonomy.

Each error carries the HTTP status it maps to at the API edge. The
exception handler in ``jsongen.core.middleware`` renders them as ``{"error": ...}``.
"""

from typing import Optional, Sequence


class JsonGenError(Exception):
    """Base error for the generation service."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        if status_code is not None:
            self.status_code = status_code
        self.message = message
        super().__init__(message)


class ValidationError(JsonGenError):
    """Bad input shape or size."""

    status_code = 400


class Unauthorized(JsonGenError):
    """Missing or mismatched shared secret."""

    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFound(JsonGenError):
    """Well-formed identifier that does not exist."""

    status_code = 404


class RateLimited(JsonGenError):
    """Caller exceeded its quota. Recoverable by waiting."""

    status_code = 429

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: int = 60,
        reset_at: Optional[float] = None,
        remaining: int = 0,
    ):
        self.retry_after = retry_after
        self.reset_at = reset_at
        self.remaining = remaining
        super().__init__(message)


class GenerationFailure(JsonGenError):
    """The whole model fallback chain was exhausted, or no chunk produced items."""

    status_code = 500

    def __init__(self, message: str, attempted_models: Sequence[str] = ()):
        self.attempted_models = list(attempted_models)
        super().__init__(message)


class ServerError(JsonGenError):
    """Unexpected internal failure."""

    status_code = 500


class InvalidTransitionError(JsonGenError):
    """A job was moved out of lifecycle order. Programmer error."""

    status_code = 500
