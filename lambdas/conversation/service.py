"""Conversation service - business logic for conversation CRUD operations."""

from aws_lambda_powertools import Logger

from conversation.models import (
    ConversationCreateRequest,
    ConversationDetail,
    ConversationSummary,
    ConversationUpdateRequest,
    TurnView,
)
from shared.conversations import ConversationStore
from shared.db import DynamoDBClient
from shared.exceptions import NotFoundError

logger = Logger()

MAX_CONVERSATIONS_LISTED = 50


class ConversationService:
    """Service layer for conversation CRUD operations."""

    def __init__(self, db_client: DynamoDBClient) -> None:
        """Initialize conversation service.

        Args:
            db_client: DynamoDB client instance
        """
        self.store = ConversationStore(db_client)

    def create_conversation(
        self, user_id: str, request: ConversationCreateRequest
    ) -> ConversationSummary:
        """Create an empty active conversation.

        Args:
            user_id: The user's ID
            request: Conversation creation request

        Returns:
            The created conversation
        """
        conversation = self.store.create(user_id, title=request.title or "New Conversation")
        return ConversationSummary.from_conversation(conversation)

    def list_conversations(
        self, user_id: str, limit: int = 20
    ) -> list[ConversationSummary]:
        """List the user's conversations that have not been archived.

        Args:
            user_id: The user's ID
            limit: Maximum number of conversations to return

        Returns:
            Conversation summaries, most recently updated first
        """
        conversations = self.store.list_active(user_id, limit=min(limit, MAX_CONVERSATIONS_LISTED))
        return [ConversationSummary.from_conversation(c) for c in conversations]

    def get_conversation(self, user_id: str, conversation_id: str) -> ConversationDetail:
        """Get a conversation with its turns.

        Args:
            user_id: The user's ID
            conversation_id: The conversation's ID

        Returns:
            Conversation detail including turns, oldest first

        Raises:
            NotFoundError: If the conversation doesn't exist
        """
        conversation = self.store.get(user_id, conversation_id)
        turns = self.store.list_turns(conversation_id)

        summary = ConversationSummary.from_conversation(conversation)
        return ConversationDetail(
            **summary.model_dump(),
            summary_context=conversation.summary_context,
            continued_as=conversation.continued_as,
            archived_at=conversation.archived_at,
            turns=[TurnView.from_turn(t) for t in turns],
        )

    def rename_conversation(
        self, user_id: str, conversation_id: str, request: ConversationUpdateRequest
    ) -> ConversationSummary:
        """Change a conversation's title.

        Raises:
            NotFoundError: If the conversation doesn't exist
        """
        conversation = self.store.update_title(user_id, conversation_id, request.title)
        if conversation is None:
            raise NotFoundError("Conversation", conversation_id)
        return ConversationSummary.from_conversation(conversation)

    def delete_conversation(self, user_id: str, conversation_id: str) -> None:
        """Delete a conversation and its turns.

        Conversations continued from or into this one keep their links.

        Raises:
            NotFoundError: If the conversation doesn't exist
        """
        if not self.store.delete(user_id, conversation_id):
            raise NotFoundError("Conversation", conversation_id)
        turns_deleted = self.store.delete_turns(conversation_id)

        logger.info(
            "Conversation deleted",
            extra={
                "user_id": user_id,
                "conversation_id": conversation_id,
                "turns_deleted": turns_deleted,
            },
        )
