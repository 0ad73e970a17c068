"""Conversation Lambda handler for CRUD operations."""

from typing import Any

from aws_lambda_powertools import Logger, Tracer
from aws_lambda_powertools.event_handler import APIGatewayRestResolver, CORSConfig, Response
from aws_lambda_powertools.event_handler.exceptions import (
    BadRequestError,
    ServiceError,
    UnauthorizedError,
)
from aws_lambda_powertools.event_handler.exceptions import (
    NotFoundError as APINotFoundError,
)
from aws_lambda_powertools.utilities.typing import LambdaContext
from pydantic import ValidationError

from conversation.models import ConversationCreateRequest, ConversationUpdateRequest
from conversation.service import ConversationService
from shared.config import get_config
from shared.db import DynamoDBClient
from shared.exceptions import NotFoundError, StoreUnavailableError
from shared.identity import resolve_identity

logger = Logger()
tracer = Tracer()
cors_config = CORSConfig(
    allow_origin="*", allow_headers=["Content-Type", "Authorization", "X-User-Id"], max_age=300
)
app = APIGatewayRestResolver(cors=cors_config)

# Initialize service lazily
_service: ConversationService | None = None


def get_service() -> ConversationService:
    """Get or create the conversation service instance."""
    global _service
    if _service is None:
        config = get_config()
        db = DynamoDBClient(config.table_name)
        _service = ConversationService(db)
    return _service


def reset_service() -> None:
    """Reset the service instance (for testing)."""
    global _service
    _service = None


def get_user_id() -> str:
    """Resolve the authenticated subject for this request.

    Returns:
        The subject ID from the authorizer or the X-User-Id header

    Raises:
        UnauthorizedError: If the request is anonymous
    """
    identity = resolve_identity(app.current_event.raw_event, get_config().trust_user_header)
    if identity.is_anonymous:
        raise UnauthorizedError("Authentication required")
    return identity.subject_id


@app.post("/conversations")
@tracer.capture_method
def create_conversation() -> Response:
    """Create a new conversation.

    Returns:
        201 response with created conversation
    """
    user_id = get_user_id()

    try:
        body = app.current_event.json_body or {}
        request = ConversationCreateRequest.model_validate(body)
    except ValidationError as e:
        raise BadRequestError(str(e)) from None

    try:
        conversation = get_service().create_conversation(user_id, request)
    except StoreUnavailableError:
        raise ServiceError(503, "Service temporarily unavailable") from None

    return Response(
        status_code=201,
        content_type="application/json",
        body=conversation.model_dump_json(),
    )


@app.get("/conversations")
@tracer.capture_method
def list_conversations() -> dict[str, Any]:
    """List the current user's active conversations.

    Returns:
        200 response with conversation list
    """
    user_id = get_user_id()

    params = app.current_event.query_string_parameters or {}
    limit_str = params.get("limit", "20")

    try:
        limit = min(int(limit_str), 50)  # Cap at 50
    except ValueError:
        limit = 20

    try:
        conversations = get_service().list_conversations(user_id, limit)
    except StoreUnavailableError:
        raise ServiceError(503, "Service temporarily unavailable") from None

    return {"conversations": [c.model_dump(mode="json") for c in conversations]}


@app.get("/conversations/<conversation_id>")
@tracer.capture_method
def get_conversation(conversation_id: str) -> dict[str, Any]:
    """Get a conversation with its turns.

    Args:
        conversation_id: The conversation's ID

    Returns:
        200 response with conversation details
    """
    user_id = get_user_id()

    try:
        return get_service().get_conversation(user_id, conversation_id).model_dump(mode="json")
    except NotFoundError:
        raise APINotFoundError("Conversation not found") from None
    except StoreUnavailableError:
        raise ServiceError(503, "Service temporarily unavailable") from None


@app.patch("/conversations/<conversation_id>")
@tracer.capture_method
def rename_conversation(conversation_id: str) -> dict[str, Any]:
    """Rename a conversation.

    Args:
        conversation_id: The conversation's ID

    Returns:
        200 response with the updated conversation
    """
    user_id = get_user_id()

    try:
        body = app.current_event.json_body or {}
        request = ConversationUpdateRequest.model_validate(body)
    except ValidationError as e:
        raise BadRequestError(str(e)) from None

    try:
        conversation = get_service().rename_conversation(user_id, conversation_id, request)
    except NotFoundError:
        raise APINotFoundError("Conversation not found") from None
    except StoreUnavailableError:
        raise ServiceError(503, "Service temporarily unavailable") from None

    return conversation.model_dump(mode="json")


@app.delete("/conversations/<conversation_id>")
@tracer.capture_method
def delete_conversation(conversation_id: str) -> Response:
    """Delete a conversation and its turns.

    Args:
        conversation_id: The conversation's ID

    Returns:
        204 response (no content)
    """
    user_id = get_user_id()

    try:
        get_service().delete_conversation(user_id, conversation_id)
    except NotFoundError:
        raise APINotFoundError("Conversation not found") from None
    except StoreUnavailableError:
        raise ServiceError(503, "Service temporarily unavailable") from None

    return Response(
        status_code=204,
        content_type="application/json",
        body=None,
    )


@logger.inject_lambda_context
@tracer.capture_lambda_handler
def lambda_handler(event: dict, context: LambdaContext) -> dict:
    """Main Lambda entry point.

    Args:
        event: API Gateway event
        context: Lambda context

    Returns:
        API Gateway response
    """
    return app.resolve(event, context)
