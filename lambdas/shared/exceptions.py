"""Custom exceptions for the chat gateway."""

from typing import Any


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    def __init__(self, message: str = "An error occurred") -> None:
        """Initialize exception with message.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(self.message)


class NotFoundError(GatewayError):
    """Resource not found."""

    def __init__(self, resource_type: str, resource_id: str) -> None:
        """Initialize not found error.

        Args:
            resource_type: Type of resource (e.g., "Conversation")
            resource_id: ID of the missing resource
        """
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} '{resource_id}' not found")


class ValidationError(GatewayError):
    """Request validation failed."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize validation error.

        Args:
            message: Validation error message
            field: Optional field name that failed validation
        """
        self.field = field
        super().__init__(message)


class ConversationStateError(GatewayError):
    """Invalid conversation state transition."""

    def __init__(
        self,
        message: str,
        current_state: str | None = None,
        continued_as: str | None = None,
    ) -> None:
        """Initialize conversation state error.

        Args:
            message: Error message describing the invalid transition
            current_state: Current state when error occurred
            continued_as: ID of the conversation that replaced this one, if any
        """
        self.current_state = current_state
        self.continued_as = continued_as
        super().__init__(message)


class ConfigurationError(GatewayError):
    """Configuration or environment error."""

    def __init__(self, message: str, config_key: str | None = None) -> None:
        """Initialize configuration error.

        Args:
            message: Error message
            config_key: Optional configuration key that caused the error
        """
        self.config_key = config_key
        super().__init__(message)


class StoreUnavailableError(GatewayError):
    """The counter or durable store could not be reached."""

    def __init__(self, operation: str, pk: str | None = None) -> None:
        """Initialize store error.

        Args:
            operation: Store operation that failed (e.g., "update_item")
            pk: Partition key involved, for diagnostics
        """
        self.operation = operation
        self.pk = pk
        super().__init__(f"Store operation '{operation}' failed")


class ModelCallError(GatewayError):
    """The language-model call failed."""

    def __init__(
        self,
        message: str,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        """Initialize model call error.

        Args:
            message: Error message (never shown to clients)
            input_tokens: Input tokens the provider reported before failing
            output_tokens: Output tokens the provider reported before failing
        """
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        super().__init__(message)

    @property
    def has_partial_usage(self) -> bool:
        """Whether the provider reported any usage before failing."""
        return (self.input_tokens + self.output_tokens) > 0


class PolicyRejection(GatewayError):
    """Base class for expected governance rejections."""

    reason = "policy_rejection"

    def details(self) -> dict[str, Any]:
        """Structured details safe to return to the client."""
        return {}


class RateLimitExceededError(PolicyRejection):
    """Request count exceeded for a scope and window."""

    reason = "rate_limit_exceeded"

    def __init__(self, retry_after_seconds: int, limit: int, window: str) -> None:
        self.retry_after_seconds = retry_after_seconds
        self.limit = limit
        self.window = window
        super().__init__(f"Rate limit exceeded. Try again in {retry_after_seconds} seconds.")

    def details(self) -> dict[str, Any]:
        return {
            "retry_after": self.retry_after_seconds,
            "limit": self.limit,
            "window": self.window,
        }


class ContentBlockedError(PolicyRejection):
    """Message matched a content-gate signature."""

    reason = "content_blocked"

    def __init__(self, gate_reason: str) -> None:
        self.gate_reason = gate_reason
        super().__init__("Your message contains disallowed content. Please rephrase it.")


class TokenQuotaExceededError(PolicyRejection):
    """Subject's daily token allotment would be exceeded."""

    reason = "token_quota_exceeded"

    def __init__(self, used: int, limit: int) -> None:
        self.used = used
        self.limit = limit
        super().__init__(
            f"You've used {used:,} of your {limit:,} daily tokens. Resets at midnight UTC."
        )

    def details(self) -> dict[str, Any]:
        return {
            "tokens_used": self.used,
            "tokens_limit": self.limit,
            "tokens_remaining": max(0, self.limit - self.used),
        }


class BudgetExhaustedError(PolicyRejection):
    """Global daily spend cap reached or breaker open."""

    reason = "budget_exhausted"

    def __init__(self, percent_used: float, breaker_open: bool = False) -> None:
        self.percent_used = percent_used
        self.breaker_open = breaker_open
        super().__init__("Service temporarily unavailable due to budget limits.")

    def details(self) -> dict[str, Any]:
        return {
            "percent_used": round(self.percent_used, 1),
            "resets": "midnight UTC",
        }


class ConversationLimitReachedError(PolicyRejection):
    """Conversation has reached its token ceiling."""

    reason = "conversation_limit_reached"

    def __init__(self, conversation_id: str, total_tokens: int, ceiling: int) -> None:
        self.conversation_id = conversation_id
        self.total_tokens = total_tokens
        self.ceiling = ceiling
        super().__init__("This conversation has reached its maximum length.")

    def details(self) -> dict[str, Any]:
        return {
            "conversation_tokens": self.total_tokens,
            "max_tokens": self.ceiling,
            "action": {
                "type": "summarize_required",
                "endpoint": f"/conversations/{self.conversation_id}/summarize-and-continue",
            },
        }
