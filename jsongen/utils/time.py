"""Timestamp helpers for response payloads."""

from datetime import datetime, timezone


def epoch_to_iso(epoch_s: float) -> str:
    """Epoch seconds as an ISO-8601 UTC string."""
    return datetime.fromtimestamp(epoch_s, tz=timezone.utc).isoformat()
