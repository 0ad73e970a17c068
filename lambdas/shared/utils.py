"""Utility functions for the chat gateway Lambda handlers."""
import json
from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import uuid4

from aws_lambda_powertools.event_handler import Response


def generate_id() -> str:
    """Generate a unique ID for resources.

    Returns:
        UUID string
    """
    return str(uuid4())


def utc_now() -> str:
    """Get current UTC timestamp in ISO format.

    Returns:
        ISO formatted timestamp string
    """
    return datetime.now(UTC).isoformat()


def get_today_key() -> str:
    """Get today's date key in UTC."""
    return datetime.now(UTC).strftime("%Y-%m-%d")


def get_ttl_epoch(days: int) -> int:
    """Get TTL epoch timestamp for auto-deletion."""
    future = datetime.now(UTC) + timedelta(days=days)
    return int(future.timestamp())


def get_header(headers: dict[str, str] | None, name: str) -> str | None:
    """Look up a header case-insensitively.

    Args:
        headers: Request headers dict (may be None)
        name: Header name

    Returns:
        Header value or None if not present
    """
    wanted = name.lower()
    for key, value in (headers or {}).items():
        if key.lower() == wanted:
            return value
    return None


def extract_user_id(headers: dict[str, str] | None) -> str | None:
    """Extract user ID from request headers.

    Looks for the X-User-Id header (case-insensitive).

    Args:
        headers: Request headers dict

    Returns:
        User ID string or None if not found
    """
    user_id = get_header(headers, "x-user-id")
    return user_id.strip() if user_id and user_id.strip() else None


def error_response(
    status_code: int,
    error: str,
    message: str,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> Response:
    """Format an error response.

    Args:
        status_code: HTTP status code
        error: Error type/code
        message: Human-readable error message
        details: Optional additional error details, merged into the body
        headers: Optional extra response headers

    Returns:
        Powertools Response with a JSON body
    """
    body: dict[str, Any] = {
        "error": error,
        "message": message,
    }
    if details:
        body.update(details)

    return Response(
        status_code=status_code,
        content_type="application/json",
        body=json.dumps(body),
        headers=headers,
    )
