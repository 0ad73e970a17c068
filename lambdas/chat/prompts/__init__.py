"""Prompt building utilities for the chat assistant."""

from .system_prompt import (
    SUMMARIZATION_PROMPT,
    SUMMARY_MAX_TOKENS,
    SYSTEM_PROMPT,
    build_history_messages,
    build_summary_messages,
    build_system_prompt,
)

__all__ = [
    "SYSTEM_PROMPT",
    "SUMMARIZATION_PROMPT",
    "SUMMARY_MAX_TOKENS",
    "build_history_messages",
    "build_summary_messages",
    "build_system_prompt",
]
