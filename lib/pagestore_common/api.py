"""
API Gateway helpers shared by the page store Lambdas.

Responses are proxy-integration dicts with CORS headers and JSON bodies;
DynamoDB Decimal values are encoded as plain numbers.
"""

import json
import logging
from decimal import Decimal
from typing import Any

from pagestore_common.exceptions import (
    FetchError,
    InvalidUrlError,
    StorageError,
    UnauthenticatedError,
    UnauthorizedError,
)

logger = logging.getLogger(__name__)

# Error type -> HTTP status for single-request failures
ERROR_STATUS_CODES = (
    (UnauthenticatedError, 401),
    (UnauthorizedError, 403),
    (InvalidUrlError, 400),
    (ValueError, 400),
    (FetchError, 502),
    (StorageError, 500),
)


class DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal types from DynamoDB."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            if obj % 1 == 0:
                return int(obj)
            return float(obj)
        return super().default(obj)


def response(status_code: int, body: dict, methods: str = "GET,POST,DELETE,OPTIONS") -> dict:
    """Create API Gateway proxy response."""
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": methods,
            "Access-Control-Allow-Headers": "Content-Type,Authorization",
        },
        "body": json.dumps(body, cls=DecimalEncoder),
    }


def parse_body(event: dict[str, Any]) -> dict[str, Any]:
    """
    Decode the JSON body of a proxy event.

    Raises:
        ValueError: Body is not a JSON object
    """
    body = event.get("body")
    if not body:
        return {}
    if isinstance(body, dict):
        return body
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON body: {e.msg}") from e
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def parse_bool(value: Any) -> bool:
    """Interpret query string and JSON flags ("true", "1", True)."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes")


def error_response(error: Exception) -> dict:
    """Map an exception to an error response; unknown errors become 500."""
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            if status_code >= 500:
                logger.error(f"{type(error).__name__}: {error}")
                if status_code == 500:
                    return response(status_code, {"error": "Internal server error"})
            return response(status_code, {"error": str(error)})

    logger.error(f"Error handling request: {error}", exc_info=True)
    return response(500, {"error": "Internal server error"})
