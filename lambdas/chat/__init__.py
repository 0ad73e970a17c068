"""Chat module: governed conversations with the MTG assistant."""

from .claude_client import ClaudeClient
from .governor import ConversationGovernor, RemediationResult
from .models import ChatRequest, ChatResponse, ModelResponse, RemediationResponse
from .service import ChatService

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "ChatService",
    "ClaudeClient",
    "ConversationGovernor",
    "ModelResponse",
    "RemediationResponse",
    "RemediationResult",
]
