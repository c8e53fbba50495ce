"""
Logging helpers for page store Lambdas.

Request events carry session cookies, bearer tokens and sometimes whole
HTML documents. These helpers strip them before anything reaches
CloudWatch Logs.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)

# Key substrings whose values never get logged verbatim.
# Matching is by substring, so "x-api-key" and "set-cookie" are caught too.
DEFAULT_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "token",
        "password",
        "secret",
        "credential",
        "api_key",
        "apikey",
        "x-api-key",
        "html",  # captured page bodies
        "body",  # API Gateway request/response bodies
        "claims",  # Cognito authorizer claims (emails, tenant lists)
    }
)

# Values longer than this are truncated even when the key is not sensitive
MAX_LOGGED_STRING = 300


def mask_value(key: str, value: Any, sensitive_keys: frozenset[str] | None = None) -> Any:
    """
    Mask a value when its key names sensitive data.

    Args:
        key: Dictionary key or header name
        value: Value to inspect
        sensitive_keys: Key substrings treated as sensitive

    Returns:
        The masked value, or the original value with nested structures
        masked recursively
    """
    if sensitive_keys is None:
        sensitive_keys = DEFAULT_SENSITIVE_KEYS

    key_lower = str(key).lower()

    if any(s in key_lower for s in sensitive_keys):
        if isinstance(value, str):
            if len(value) > 20:
                return f"{value[:10]}...({len(value)} chars)"
            return "***"
        if isinstance(value, (list, dict)):
            return f"[{type(value).__name__}: masked]"
        return "***"

    if isinstance(value, dict):
        return {k: mask_value(k, v, sensitive_keys) for k, v in value.items()}

    if isinstance(value, list):
        return [mask_value(key, item, sensitive_keys) for item in value]

    if isinstance(value, str) and len(value) > MAX_LOGGED_STRING:
        return f"{value[:MAX_LOGGED_STRING]}...({len(value)} chars)"

    return value


def safe_log_event(
    event: dict[str, Any],
    sensitive_keys: frozenset[str] | None = None,
) -> dict[str, Any]:
    """
    Return a copy of a Lambda event that is safe to log.

    Example:
        ```python
        logger.info(f"Received event: {safe_log_event(event)}")
        ```
    """
    if not isinstance(event, dict):
        return {"_raw": str(event)[:100]}

    try:
        return {k: mask_value(k, v, sensitive_keys) for k, v in event.items()}
    except Exception as e:
        # Never fall back to logging the raw event
        logger.warning(f"Failed to mask event: {e}")
        return {"_error": "Could not safely serialize event", "_keys": list(event.keys())[:10]}


def log_summary(
    operation: str,
    *,
    success: bool = True,
    duration_ms: float | None = None,
    item_count: int | None = None,
    error: str | None = None,
    **kwargs: Any,
) -> dict[str, Any]:
    """
    Build a structured summary of an operation for logging.

    Lists are reduced to their length so URL batches do not flood the log.

    Example:
        ```python
        logger.info(log_summary("run_batch", item_count=100, tenant_id=tenant_id))
        ```
    """
    summary: dict[str, Any] = {"operation": operation, "success": success}

    if duration_ms is not None:
        summary["duration_ms"] = round(duration_ms, 2)
    if item_count is not None:
        summary["item_count"] = item_count
    if error:
        summary["error"] = error[:500]

    for key, value in kwargs.items():
        if isinstance(value, (str, int, float, bool)):
            summary[key] = value
        elif isinstance(value, (list, tuple, set)):
            summary[key] = len(value)

    return summary
