"""Conversation length governor.

Lifecycle:
    active --(tokens below ceiling)--> active
    active --(total_tokens >= ceiling)--> limit_reached
    active | limit_reached --(remediation)--> archived (terminal)

Remediation summarizes the old thread with one model call, creates the
replacement conversation seeded with the summary, and archives the old one
last, so a failed summary leaves everything as it was.
"""

from collections.abc import Callable
from dataclasses import dataclass

from aws_lambda_powertools import Logger

from shared.conversations import ConversationStore
from shared.exceptions import (
    ConversationLimitReachedError,
    ConversationStateError,
    ModelCallError,
    ValidationError,
)
from shared.models import Conversation, ConversationState, Turn

logger = Logger(child=True)

ALLOWED_TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    ConversationState.ACTIVE: frozenset(
        {ConversationState.ACTIVE, ConversationState.LIMIT_REACHED, ConversationState.ARCHIVED}
    ),
    ConversationState.LIMIT_REACHED: frozenset({ConversationState.ARCHIVED}),
    ConversationState.ARCHIVED: frozenset(),
}


def transition(current: ConversationState, target: ConversationState) -> ConversationState:
    """Validate a lifecycle transition.

    Args:
        current: State the conversation is in
        target: Requested state

    Returns:
        The target state

    Raises:
        ConversationStateError: If the transition is not allowed
    """
    if target not in ALLOWED_TRANSITIONS[current]:
        raise ConversationStateError(
            f"Cannot move conversation from {current.value} to {target.value}",
            current_state=current.value,
        )
    return target


@dataclass
class RemediationResult:
    """Outcome of summarize-and-continue."""

    new_conversation: Conversation
    archived_conversation: Conversation
    summary: str


# Produces a summary for a conversation's turns via one model call
Summarizer = Callable[[Conversation, list[Turn]], str]


class ConversationGovernor:
    """Enforces the per-conversation token ceiling."""

    def __init__(self, store: ConversationStore, ceiling: int) -> None:
        """Initialize governor.

        Args:
            store: Conversation persistence
            ceiling: Maximum accumulated tokens per conversation
        """
        self.store = store
        self.ceiling = ceiling

    def can_accept(self, owner_id: str, conversation_id: str) -> bool:
        """Whether the conversation accepts another message."""
        conversation = self.store.get(owner_id, conversation_id)
        return (
            conversation.state == ConversationState.ACTIVE
            and conversation.total_tokens < self.ceiling
        )

    def require_accepting(self, owner_id: str, conversation_id: str) -> Conversation:
        """Load a conversation that must accept another message.

        Raises:
            NotFoundError: If the conversation does not exist
            ConversationStateError: If the conversation is archived
            ConversationLimitReachedError: If the ceiling has been reached
        """
        conversation = self.store.get(owner_id, conversation_id)

        if conversation.state == ConversationState.ARCHIVED:
            raise ConversationStateError(
                "This conversation is archived",
                current_state=conversation.state.value,
                continued_as=conversation.continued_as,
            )

        if conversation.state == ConversationState.LIMIT_REACHED or (
            conversation.total_tokens >= self.ceiling
        ):
            if conversation.state == ConversationState.ACTIVE:
                # Totals can reach the ceiling before the state flag is written
                self._mark_limit_reached(conversation)
            logger.info(
                "Conversation at token ceiling",
                extra={
                    "conversation_id": conversation_id,
                    "total_tokens": conversation.total_tokens,
                    "ceiling": self.ceiling,
                },
            )
            raise ConversationLimitReachedError(
                conversation_id, conversation.total_tokens, self.ceiling
            )

        return conversation

    def record_tokens(self, conversation: Conversation, tokens: int) -> Conversation:
        """Add a completed message's tokens to the conversation.

        Raises:
            ConversationStateError: If the conversation was archived meanwhile
        """
        updated = self.store.add_tokens(
            conversation.owner_id, conversation.conversation_id, tokens
        )
        if updated is None:
            raise ConversationStateError(
                "Conversation was archived before tokens were recorded",
                current_state=ConversationState.ARCHIVED.value,
            )

        if updated.state == ConversationState.ACTIVE and updated.total_tokens >= self.ceiling:
            updated = self._mark_limit_reached(updated) or updated

        return updated

    def _mark_limit_reached(self, conversation: Conversation) -> Conversation | None:
        transition(conversation.state, ConversationState.LIMIT_REACHED)
        return self.store.set_state(
            conversation.owner_id,
            conversation.conversation_id,
            ConversationState.LIMIT_REACHED,
            expected=(ConversationState.ACTIVE,),
        )

    def remediate(
        self,
        owner_id: str,
        conversation_id: str,
        summarize: Summarizer,
    ) -> RemediationResult:
        """Summarize a conversation, start its replacement and archive it.

        Args:
            owner_id: Owner of the conversation
            conversation_id: Conversation to continue
            summarize: Makes the single summarization model call

        Returns:
            RemediationResult with the new conversation and the summary

        Raises:
            NotFoundError: If the conversation does not exist
            ConversationStateError: If it is already archived, or was archived
                concurrently while this remediation ran
            ValidationError: If it has no turns to summarize
            ModelCallError: If the summary is empty
        """
        conversation = self.store.get(owner_id, conversation_id)
        if conversation.state == ConversationState.ARCHIVED:
            raise ConversationStateError(
                "This conversation is archived",
                current_state=conversation.state.value,
                continued_as=conversation.continued_as,
            )
        transition(conversation.state, ConversationState.ARCHIVED)

        turns = self.store.list_turns(conversation_id)
        if not turns:
            raise ValidationError("Cannot summarize an empty conversation")

        summary = summarize(conversation, turns).strip()
        if not summary:
            raise ModelCallError("Model returned an empty summary")

        new_conversation = self.store.create(
            owner_id,
            title=f"Continued: {conversation.title or 'Conversation'}",
            summary_context=summary,
            continued_from=conversation_id,
        )

        archived = self.store.set_state(
            owner_id,
            conversation_id,
            ConversationState.ARCHIVED,
            expected=(ConversationState.ACTIVE, ConversationState.LIMIT_REACHED),
            extra={"continued_as": new_conversation.conversation_id},
        )
        if archived is None:
            # Another remediation archived it first; keep only its replacement
            self.store.delete(owner_id, new_conversation.conversation_id)
            current = self.store.get(owner_id, conversation_id)
            raise ConversationStateError(
                "Conversation was already continued",
                current_state=current.state.value,
                continued_as=current.continued_as,
            )

        logger.info(
            "Conversation continued",
            extra={
                "owner_id": owner_id,
                "archived_conversation_id": conversation_id,
                "new_conversation_id": new_conversation.conversation_id,
                "turns_summarized": len(turns),
            },
        )
        return RemediationResult(
            new_conversation=new_conversation,
            archived_conversation=archived,
            summary=summary,
        )
