"""Shared governance components for the chat gateway Lambda functions."""

from .config import Config
from .db import DynamoDBClient
from .exceptions import (
    BudgetExhaustedError,
    ConfigurationError,
    ContentBlockedError,
    ConversationLimitReachedError,
    ConversationStateError,
    GatewayError,
    ModelCallError,
    NotFoundError,
    PolicyRejection,
    RateLimitExceededError,
    StoreUnavailableError,
    TokenQuotaExceededError,
    ValidationError,
)
from .models import (
    BudgetLedgerEntry,
    Conversation,
    ConversationState,
    DailyTokenUsage,
    RequestIdentity,
    Tier,
    Turn,
)

__all__ = [
    # Config
    "Config",
    # Database
    "DynamoDBClient",
    # Exceptions
    "BudgetExhaustedError",
    "ConfigurationError",
    "ContentBlockedError",
    "ConversationLimitReachedError",
    "ConversationStateError",
    "GatewayError",
    "ModelCallError",
    "NotFoundError",
    "PolicyRejection",
    "RateLimitExceededError",
    "StoreUnavailableError",
    "TokenQuotaExceededError",
    "ValidationError",
    # Models
    "BudgetLedgerEntry",
    "Conversation",
    "ConversationState",
    "DailyTokenUsage",
    "RequestIdentity",
    "Tier",
    "Turn",
]
