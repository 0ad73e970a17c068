"""Pydantic models for chat API request/response validation."""

from dataclasses import dataclass

from pydantic import BaseModel, Field, field_validator


@dataclass
class ModelResponse:
    """Model reply with the provider's usage report."""

    text: str
    input_tokens: int
    output_tokens: int

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


class ChatRequest(BaseModel):
    """Request body for sending a chat message."""

    message: str = Field(..., min_length=1, max_length=4000)
    """The user's message (1-4000 chars after trimming)."""

    conversation_id: str | None = Field(default=None, max_length=64)
    """Conversation to continue. Omit to start a new one."""

    @field_validator("message", mode="before")
    @classmethod
    def strip_message(cls, v: object) -> object:
        """Trim surrounding whitespace before length checks."""
        return v.strip() if isinstance(v, str) else v


class UsageReport(BaseModel):
    """Tokens consumed by one model call."""

    input_tokens: int
    output_tokens: int


class QuotaReport(BaseModel):
    """Subject's quota position after the call."""

    tokens_used_today: int
    daily_token_limit: int


class ChatResponse(BaseModel):
    """Response for a completed chat message."""

    response: str
    conversation_id: str | None = None
    usage: UsageReport
    quota: QuotaReport | None = None


class RemediationResponse(BaseModel):
    """Response for summarize-and-continue."""

    new_conversation_id: str
    summary: str
    continued_from: str


class UsageDay(BaseModel):
    """A subject's usage on one day."""

    date: str
    tokens_used: int
    requests: int
    failed_requests: int


class UsageHistoryResponse(BaseModel):
    """Response for the subject's daily usage history."""

    history: list[UsageDay]


class UsageStats(BaseModel):
    """Subject's request statistics."""

    today_requests: int
    tokens_used_today: int
    daily_token_limit: int
    success_rate: str
    """Percentage of successful requests over the reporting window, 2 decimals."""

    tier: str


class UsageStatsResponse(BaseModel):
    """Response for the subject's usage statistics."""

    stats: UsageStats
