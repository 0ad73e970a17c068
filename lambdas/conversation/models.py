"""Pydantic models for conversation API request/response validation."""

from pydantic import BaseModel, Field, field_validator

from shared.models import Conversation, Turn


class ConversationCreateRequest(BaseModel):
    """Request body for creating a conversation."""

    title: str | None = Field(default=None, max_length=200)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str | None) -> str | None:
        """Strip whitespace; blank titles become None."""
        if v is None:
            return None
        return v.strip() or None


class ConversationUpdateRequest(BaseModel):
    """Request body for renaming a conversation."""

    title: str = Field(..., min_length=1, max_length=200)

    @field_validator("title", mode="before")
    @classmethod
    def strip_title(cls, v: object) -> object:
        """Trim surrounding whitespace before length checks."""
        return v.strip() if isinstance(v, str) else v


class ConversationSummary(BaseModel):
    """Conversation as shown in listings."""

    conversation_id: str
    title: str | None
    state: str
    total_tokens: int
    continued_from: str | None = None
    created_at: str
    updated_at: str | None = None

    @classmethod
    def from_conversation(cls, conversation: Conversation) -> "ConversationSummary":
        return cls(
            conversation_id=conversation.conversation_id,
            title=conversation.title,
            state=conversation.state.value,
            total_tokens=conversation.total_tokens,
            continued_from=conversation.continued_from,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
        )


class TurnView(BaseModel):
    """One stored turn."""

    user_text: str
    assistant_text: str
    tokens_used: int
    created_at: str

    @classmethod
    def from_turn(cls, turn: Turn) -> "TurnView":
        return cls(
            user_text=turn.user_text,
            assistant_text=turn.assistant_text,
            tokens_used=turn.tokens_used,
            created_at=turn.created_at,
        )


class ConversationDetail(ConversationSummary):
    """Conversation with its turns and lifecycle links."""

    summary_context: str | None = None
    continued_as: str | None = None
    archived_at: str | None = None
    turns: list[TurnView] = Field(default_factory=list)
