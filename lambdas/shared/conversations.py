"""Conversation and turn persistence."""

from aws_lambda_powertools import Logger

from .db import DynamoDBClient
from .models import Conversation, ConversationState, Turn
from .utils import generate_id, utc_now

logger = Logger(child=True)

TITLE_MAX_LENGTH = 50


def generate_title(first_message: str) -> str:
    """Derive a conversation title from its first message."""
    text = " ".join(first_message.split())
    if len(text) <= TITLE_MAX_LENGTH:
        return text or "New Conversation"
    return text[:TITLE_MAX_LENGTH] + "..."


class ConversationStore:
    """Reads and writes conversation rows and their turns.

    Conversations live under the owner's partition; turns live under the
    conversation's own partition, sorted by creation time.
    """

    def __init__(self, db: DynamoDBClient) -> None:
        self.db = db

    def create(
        self,
        owner_id: str,
        title: str | None = None,
        summary_context: str | None = None,
        continued_from: str | None = None,
    ) -> Conversation:
        """Create a new active conversation with zero tokens."""
        conversation = Conversation(
            owner_id=owner_id,
            title=title,
            summary_context=summary_context,
            continued_from=continued_from,
        )
        pk, sk, data = conversation.to_db_item()
        self.db.put_item(pk, sk, data)

        logger.info(
            "Conversation created",
            extra={
                "owner_id": owner_id,
                "conversation_id": conversation.conversation_id,
                "continued_from": continued_from,
            },
        )
        return conversation

    def get(self, owner_id: str, conversation_id: str) -> Conversation:
        """Load a conversation.

        Raises:
            NotFoundError: If the owner has no such conversation
        """
        item = self.db.get_item_or_raise(
            pk=f"USER#{owner_id}",
            sk=f"CONV#{conversation_id}",
            resource_type="Conversation",
            resource_id=conversation_id,
        )
        return Conversation.from_db_item(item)

    def list_active(self, owner_id: str, limit: int = 50) -> list[Conversation]:
        """List the owner's active and limit-reached conversations, newest first."""
        items = self.db.query_by_pk(pk=f"USER#{owner_id}", sk_prefix="CONV#", limit=200)
        conversations = [
            Conversation.from_db_item(item)
            for item in items
            if item.get("state") != ConversationState.ARCHIVED.value
        ]
        conversations.sort(key=lambda c: c.updated_at or c.created_at, reverse=True)
        return conversations[:limit]

    def update_title(
        self, owner_id: str, conversation_id: str, title: str
    ) -> Conversation | None:
        """Rename a conversation.

        Returns:
            Conversation after the update, or None if the owner has no such conversation
        """
        item = self.db.update_item(
            f"USER#{owner_id}", f"CONV#{conversation_id}", {"title": title}
        )
        return Conversation.from_db_item(item) if item else None

    def delete(self, owner_id: str, conversation_id: str) -> bool:
        """Delete a conversation row (its turns are left in place)."""
        return self.db.delete_item(f"USER#{owner_id}", f"CONV#{conversation_id}")

    def delete_turns(self, conversation_id: str) -> int:
        """Delete every turn of a conversation.

        Returns:
            Number of turns deleted
        """
        deleted = 0
        while True:
            items = self.db.query_by_pk(pk=f"CONV#{conversation_id}", sk_prefix="TURN#")
            if not items:
                return deleted
            for item in items:
                if self.db.delete_item(item["PK"], item["SK"]):
                    deleted += 1

    def list_turns(self, conversation_id: str, limit: int = 500) -> list[Turn]:
        """Get a conversation's turns, oldest first."""
        items = self.db.query_by_pk(pk=f"CONV#{conversation_id}", sk_prefix="TURN#", limit=limit)
        return [Turn.from_db_item(item) for item in items]

    def append_turn(self, turn: Turn) -> Turn:
        """Store a completed turn."""
        # Suffix keeps turns created in the same instant distinct
        sk = f"TURN#{turn.created_at}#{generate_id()[:8]}"
        self.db.put_item(
            pk=f"CONV#{turn.conversation_id}",
            sk=sk,
            data={
                "user_text": turn.user_text,
                "assistant_text": turn.assistant_text,
                "input_tokens": turn.input_tokens,
                "output_tokens": turn.output_tokens,
                "tokens_used": turn.tokens_used,
                "created_at": turn.created_at,
            },
        )
        return turn

    def add_tokens(self, owner_id: str, conversation_id: str, tokens: int) -> Conversation | None:
        """Atomically add tokens to a conversation that is not archived.

        Returns:
            Conversation after the add, or None if it is archived or missing
        """
        item = self.db.increment(
            f"USER#{owner_id}",
            f"CONV#{conversation_id}",
            {"total_tokens": max(0, tokens)},
            condition="attribute_exists(PK) AND #state <> :archived",
            condition_names={"#state": "state"},
            condition_values={":archived": ConversationState.ARCHIVED.value},
        )
        return Conversation.from_db_item(item) if item else None

    def set_state(
        self,
        owner_id: str,
        conversation_id: str,
        new_state: ConversationState,
        expected: tuple[ConversationState, ...],
        extra: dict | None = None,
    ) -> Conversation | None:
        """Move a conversation to a new state if it is in one of ``expected``.

        Returns:
            Conversation after the update, or None if the state had changed
        """
        values = {f":s{i}": state.value for i, state in enumerate(expected)}
        updates = {"state": new_state.value, **(extra or {})}
        if new_state == ConversationState.ARCHIVED:
            updates["archived_at"] = utc_now()

        item = self.db.update_item(
            f"USER#{owner_id}",
            f"CONV#{conversation_id}",
            updates,
            condition=f"#state IN ({', '.join(values)})",
            condition_names={"#state": "state"},
            condition_values=values,
        )
        if item is None:
            return None

        logger.info(
            "Conversation state changed",
            extra={
                "owner_id": owner_id,
                "conversation_id": conversation_id,
                "state": new_state.value,
            },
        )
        return Conversation.from_db_item(item)
