"""Pydantic models for chat gateway entities."""

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class Tier(str, Enum):
    """Account tiers. Limits for each live in shared.tiers."""

    ANONYMOUS = "anonymous"
    STANDARD = "standard"
    ELEVATED = "elevated"
    ENTERPRISE = "enterprise"


class ConversationState(str, Enum):
    """Conversation lifecycle states."""

    ACTIVE = "active"
    LIMIT_REACHED = "limit_reached"
    ARCHIVED = "archived"


class RequestIdentity(BaseModel):
    """Who a request is evaluated against. Recomputed per request."""

    network_address: str
    subject_id: str | None = None
    tier: Tier = Tier.ANONYMOUS

    @property
    def is_anonymous(self) -> bool:
        """True when there is no authenticated subject."""
        return self.subject_id is None


class Conversation(BaseModel):
    """A conversation thread owned by one subject."""

    conversation_id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str
    title: str | None = None
    total_tokens: int = Field(default=0, ge=0)
    state: ConversationState = ConversationState.ACTIVE
    summary_context: str | None = None
    continued_from: str | None = None
    continued_as: str | None = None
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    updated_at: str | None = None
    archived_at: str | None = None

    def to_db_keys(self) -> tuple[str, str]:
        """Get DynamoDB PK and SK for this conversation.

        Returns:
            Tuple of (PK, SK)
        """
        return f"USER#{self.owner_id}", f"CONV#{self.conversation_id}"

    def to_db_item(self) -> tuple[str, str, dict[str, Any]]:
        """Convert to DynamoDB item format.

        Returns:
            Tuple of (PK, SK, data dict)
        """
        pk, sk = self.to_db_keys()
        data = self.model_dump(exclude={"owner_id", "conversation_id"}, mode="json")
        return pk, sk, data

    @classmethod
    def from_db_item(cls, item: dict[str, Any]) -> "Conversation":
        """Create Conversation from DynamoDB item.

        Args:
            item: DynamoDB item dict

        Returns:
            Conversation instance
        """
        owner_id = item["PK"].replace("USER#", "", 1)
        conversation_id = item["SK"].replace("CONV#", "", 1)
        return cls(
            owner_id=owner_id,
            conversation_id=conversation_id,
            title=item.get("title"),
            total_tokens=int(item.get("total_tokens", 0)),
            state=item.get("state", ConversationState.ACTIVE),
            summary_context=item.get("summary_context"),
            continued_from=item.get("continued_from"),
            continued_as=item.get("continued_as"),
            created_at=item.get("created_at") or datetime.now(UTC).isoformat(),
            updated_at=item.get("updated_at"),
            archived_at=item.get("archived_at"),
        )


class Turn(BaseModel):
    """One user message and the assistant's reply. Append-only."""

    conversation_id: str
    user_text: str
    assistant_text: str
    input_tokens: int = Field(default=0, ge=0)
    output_tokens: int = Field(default=0, ge=0)
    created_at: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def tokens_used(self) -> int:
        """Total tokens the turn consumed."""
        return self.input_tokens + self.output_tokens

    @classmethod
    def from_db_item(cls, item: dict[str, Any]) -> "Turn":
        """Create Turn from DynamoDB item."""
        return cls(
            conversation_id=item["PK"].replace("CONV#", "", 1),
            user_text=item.get("user_text", ""),
            assistant_text=item.get("assistant_text", ""),
            input_tokens=int(item.get("input_tokens", 0)),
            output_tokens=int(item.get("output_tokens", 0)),
            created_at=item.get("created_at") or datetime.now(UTC).isoformat(),
        )


class BudgetLedgerEntry(BaseModel):
    """Aggregate spend and usage for one calendar day."""

    date: str
    total_spend_minor_units: int = 0
    reserved_minor_units: int = 0
    actual_spend_minor_units: int = 0
    request_count: int = 0
    token_count: int = 0
    unique_subject_count: int = 0
    breaker_open: bool = False

    @classmethod
    def from_db_item(cls, date: str, item: dict[str, Any] | None) -> "BudgetLedgerEntry":
        """Create an entry from a ledger item, zeroed when absent."""
        item = item or {}
        return cls(
            date=date,
            total_spend_minor_units=int(item.get("total_spend_minor_units", 0)),
            reserved_minor_units=int(item.get("reserved_minor_units", 0)),
            actual_spend_minor_units=int(item.get("actual_spend_minor_units", 0)),
            request_count=int(item.get("request_count", 0)),
            token_count=int(item.get("token_count", 0)),
            unique_subject_count=int(item.get("unique_subject_count", 0)),
            breaker_open=bool(item.get("breaker_open", False)),
        )


class DailyTokenUsage(BaseModel):
    """Token consumption for one subject on one calendar day."""

    subject_id: str
    date: str
    tokens_used: int = 0
    request_count: int = 0
    failed_count: int = 0

    @property
    def total_requests(self) -> int:
        """Completed plus failed requests."""
        return self.request_count + self.failed_count

    @classmethod
    def from_db_item(
        cls, subject_id: str, date: str, item: dict[str, Any] | None
    ) -> "DailyTokenUsage":
        """Create usage from a DynamoDB item, zeroed when absent."""
        item = item or {}
        return cls(
            subject_id=subject_id,
            date=date,
            tokens_used=int(item.get("tokens_used", 0)),
            request_count=int(item.get("request_count", 0)),
            failed_count=int(item.get("failed_count", 0)),
        )
