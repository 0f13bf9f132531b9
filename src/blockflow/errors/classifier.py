"""Classify exceptions into retryable and non-retryable failures."""

import asyncio
import re

import httpx

from .exceptions import BlockflowError, TransientError

# Messages that indicate a transient upstream condition even when the
# exception type itself is generic.
_TRANSIENT_PATTERNS = [
    re.compile(r"rate.?limit", re.IGNORECASE),
    re.compile(r"too many requests", re.IGNORECASE),
    re.compile(r"\b429\b"),
    re.compile(r"\btimed? ?out\b", re.IGNORECASE),
    re.compile(r"temporarily unavailable", re.IGNORECASE),
    re.compile(r"connection (reset|refused|aborted)", re.IGNORECASE),
]


def is_transient(error: BaseException) -> bool:
    """True if the error is worth retrying with backoff."""
    if isinstance(error, TransientError):
        return True
    if isinstance(error, BlockflowError):
        # Configuration, registry and validation errors are deterministic
        return False
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500

    message = str(error)
    return any(p.search(message) for p in _TRANSIENT_PATTERNS)


def error_type_name(error: BaseException) -> str:
    """Stable short name for an error, used in result envelopes."""
    kind = getattr(error, "kind", None)
    if isinstance(error, BlockflowError) and kind:
        return f"{kind}:{error.__class__.__name__}"
    if is_transient(error):
        return f"transient:{error.__class__.__name__}"
    return error.__class__.__name__
