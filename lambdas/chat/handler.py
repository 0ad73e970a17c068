"""Chat Lambda handler for governed model calls."""

import json
from typing import Any

from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.event_handler import (
    APIGatewayRestResolver,
    CORSConfig,
    Response,
)
from aws_lambda_powertools.event_handler.exceptions import BadRequestError, UnauthorizedError
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError as PydanticValidationError

from chat.models import ChatRequest
from chat.service import ChatService
from shared.config import get_config
from shared.db import DynamoDBClient
from shared.exceptions import (
    ConfigurationError,
    ContentBlockedError,
    ConversationStateError,
    GatewayError,
    ModelCallError,
    NotFoundError,
    PolicyRejection,
    RateLimitExceededError,
    StoreUnavailableError,
    ValidationError,
)
from shared.identity import resolve_identity
from shared.models import RequestIdentity
from shared.token_quota import USAGE_RETENTION_DAYS
from shared.utils import error_response

logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="ChatGateway")

config = get_config()
cors_config = CORSConfig(
    allow_origin="*",
    allow_headers=["Content-Type", "Authorization", "X-User-Id"],
    expose_headers=["Retry-After"],
)
app = APIGatewayRestResolver(cors=cors_config)

_service: ChatService | None = None

# HTTP status per policy rejection
REJECTION_STATUS = {
    "rate_limit_exceeded": 429,
    "content_blocked": 400,
    "token_quota_exceeded": 429,
    "budget_exhausted": 503,
    "conversation_limit_reached": 400,
}

UNAVAILABLE_MESSAGE = "Service temporarily unavailable. Please try again later."
DEFAULT_HISTORY_DAYS = 30


def get_service() -> ChatService:
    """Get or create the chat service singleton."""
    global _service
    if _service is None:
        db = DynamoDBClient(config.table_name)
        _service = ChatService(db, config)
    return _service


def reset_service() -> None:
    """Reset the service instance (for testing)."""
    global _service
    _service = None


def _parse_chat_request() -> ChatRequest:
    try:
        return ChatRequest.model_validate(app.current_event.json_body or {})
    except PydanticValidationError as e:
        error_msg = e.errors()[0].get("msg", "Invalid request")
        raise BadRequestError(error_msg) from None
    except json.JSONDecodeError:
        raise BadRequestError("Request body must be valid JSON") from None


def _rejection_response(e: PolicyRejection) -> Response:
    """Map an expected governance rejection to a structured response."""
    metrics.add_metric(name="LimitHits", unit=MetricUnit.Count, value=1)
    metrics.add_dimension(name="Reason", value=e.reason)

    headers = None
    if isinstance(e, RateLimitExceededError):
        headers = {"Retry-After": str(e.retry_after_seconds)}
    if isinstance(e, ContentBlockedError):
        metrics.add_metric(name="ContentBlocked", unit=MetricUnit.Count, value=1)

    return error_response(
        REJECTION_STATUS.get(e.reason, 400),
        e.reason,
        e.message,
        details=e.details(),
        headers=headers,
    )


def _error_response(e: GatewayError) -> Response:
    """Map a gateway error to an HTTP response without leaking internals."""
    if isinstance(e, PolicyRejection):
        return _rejection_response(e)
    if isinstance(e, NotFoundError):
        return error_response(404, "not_found", f"{e.resource_type} not found")
    if isinstance(e, ConversationStateError):
        details = {"continued_as": e.continued_as} if e.continued_as else None
        return error_response(409, "conversation_archived", e.message, details=details)
    if isinstance(e, ValidationError):
        details = {"field": e.field} if e.field else None
        return error_response(400, "validation_error", e.message, details=details)
    if isinstance(e, (StoreUnavailableError, ModelCallError)):
        return error_response(503, "service_unavailable", UNAVAILABLE_MESSAGE)
    if isinstance(e, ConfigurationError):
        logger.error("Configuration error", extra={"config_key": e.config_key})
    return error_response(500, "internal_error", "An unexpected error occurred.")


@app.post("/chat")
@tracer.capture_method
def post_chat() -> Response:
    """Send a message through the governance layer to the model.

    Returns:
        200 response with the reply, or a structured rejection
    """
    request = _parse_chat_request()
    identity = resolve_identity(app.current_event.raw_event, config.trust_user_header)

    try:
        result = get_service().send_message(
            identity,
            request.message,
            conversation_id=request.conversation_id,
        )
    except GatewayError as e:
        return _error_response(e)

    return Response(
        status_code=200,
        content_type="application/json",
        body=result.model_dump_json(),
    )


@app.post("/conversations/<conversation_id>/summarize-and-continue")
@tracer.capture_method
def post_summarize_and_continue(conversation_id: str) -> Response:
    """Summarize a conversation and continue it under a new id.

    Args:
        conversation_id: Conversation at (or near) its token ceiling

    Returns:
        200 response with the new conversation id and the summary
    """
    identity = resolve_identity(app.current_event.raw_event, config.trust_user_header)
    if identity.is_anonymous:
        return error_response(401, "unauthorized", "Authentication required")

    try:
        result = get_service().summarize_and_continue(identity, conversation_id)
    except GatewayError as e:
        return _error_response(e)

    return Response(
        status_code=200,
        content_type="application/json",
        body=result.model_dump_json(),
    )


def _authenticated_identity() -> RequestIdentity:
    identity = resolve_identity(app.current_event.raw_event, config.trust_user_header)
    if identity.is_anonymous:
        raise UnauthorizedError("Authentication required")
    return identity


@app.get("/chat/history")
@tracer.capture_method
def get_history() -> Response:
    """Get the caller's daily usage history.

    Query parameters:
        days: Number of days to return (default 30, max 90)
    """
    identity = _authenticated_identity()

    params = app.current_event.query_string_parameters or {}
    try:
        days = min(int(params.get("days", DEFAULT_HISTORY_DAYS)), USAGE_RETENTION_DAYS)
    except ValueError:
        days = DEFAULT_HISTORY_DAYS

    try:
        result = get_service().get_usage_history(identity, days=max(days, 1))
    except GatewayError as e:
        return _error_response(e)

    return Response(
        status_code=200,
        content_type="application/json",
        body=result.model_dump_json(),
    )


@app.get("/chat/stats")
@tracer.capture_method
def get_stats() -> Response:
    """Get the caller's request count, success rate and tier."""
    identity = _authenticated_identity()

    try:
        result = get_service().get_usage_stats(identity)
    except GatewayError as e:
        return _error_response(e)

    return Response(
        status_code=200,
        content_type="application/json",
        body=result.model_dump_json(),
    )


@logger.inject_lambda_context
@tracer.capture_lambda_handler
@metrics.log_metrics
def lambda_handler(event: dict[str, Any], context: LambdaContext) -> dict[str, Any]:
    """Main Lambda entry point."""
    return app.resolve(event, context)
