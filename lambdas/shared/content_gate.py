"""Pattern-based gate for attempts to override the assistant's instructions.

Cheap triage, not the sole defense: the model's own system prompt is the
second layer. False positives only ask the user to rephrase.
"""

import re
from dataclasses import dataclass

from aws_lambda_powertools import Logger

logger = Logger(child=True)

# Topics the assistant is allowed to roleplay about
DOMAIN_TERMS = ("mtg", "magic", "commander", "planeswalker")

_QUALIFIERS = r"(?:all|any|every|the|your|my|of|these|those|previous|prior|above|earlier|preceding|system)"
_TARGETS = r"(?:instructions?|rules|prompts?|commands?|directives?|guidelines|constraints)"


@dataclass(frozen=True)
class Signature:
    """One compiled detection pattern and the category it reports."""

    reason: str
    pattern: re.Pattern[str]


@dataclass(frozen=True)
class GateDecision:
    """Result of classifying a message."""

    blocked: bool
    reason: str | None = None


def _sig(reason: str, pattern: str, flags: int = re.IGNORECASE) -> Signature:
    return Signature(reason=reason, pattern=re.compile(pattern, flags))


# Order matters: first match wins and supplies the reason tag.
DEFAULT_SIGNATURES: tuple[Signature, ...] = (
    _sig(
        "instruction_override",
        rf"\b(?:ignore|disregard|forget|bypass|override)\s+(?:{_QUALIFIERS}\s+)+{_TARGETS}\b",
    ),
    _sig(
        "instruction_override",
        r"\b(?:forget|disregard|bypass|override)\s+(?:everything|all|previous|earlier)\b",
    ),
    _sig("instruction_override", r"\bnew\s+instructions?\b"),
    _sig(
        "role_reassignment",
        r"\b(?:you\s+are\s+now|from\s+now\s+on|starting\s+now|developer\s+mode)\b",
    ),
    _sig(
        "role_reassignment",
        r"\byour\s+new\s+(?:role|persona|identity|name)\b",
    ),
    _sig(
        "prompt_exfiltration",
        r"\bsystem\s+prompt\b|\breveal\s+(?:your\s+)?(?:prompt|instructions?|rules)\b",
    ),
    _sig(
        "prompt_exfiltration",
        r"\b(?:print|repeat|show|output)\s+(?:me\s+)?(?:your|the)\s+(?:initial\s+|original\s+|hidden\s+)?(?:prompt|instructions)\b",
    ),
    _sig(
        "delimiter_injection",
        r"\[/?INST\]|<\|im_(?:start|end)\|>|<\|endoftext\|>|<<<|>>>|</?system>",
        flags=0,
    ),
    _sig(
        "delimiter_injection",
        r"^\s*(?:system|assistant)\s*:",
        flags=re.IGNORECASE | re.MULTILINE,
    ),
    _sig(
        "non_domain_roleplay",
        r"\b(?:act\s+as|pretend\s+(?:to\s+be|you\s+are)|roleplay\s+as|simulate)\s+"
        rf"(?!.*\b(?:{'|'.join(DOMAIN_TERMS)})\b)",
    ),
    _sig(
        "code_execution",
        r"\b(?:execute|eval)\b|\brun\s+(?:this\s+|the\s+following\s+|some\s+)?code\b"
        r"|\b(?:system|shell)\s+command\b|\bos\.system\b|\bsubprocess\b",
    ),
)


class ContentGate:
    """Classifies messages against an ordered signature list."""

    def __init__(self, signatures: tuple[Signature, ...] | None = None) -> None:
        """Initialize gate.

        Args:
            signatures: Ordered signatures. Defaults to DEFAULT_SIGNATURES.
        """
        self.signatures = signatures if signatures is not None else DEFAULT_SIGNATURES

    def classify(self, text: str) -> GateDecision:
        """Classify a raw user message.

        Args:
            text: Message exactly as the user sent it

        Returns:
            GateDecision; blocked with the first matching reason, or pass
        """
        for signature in self.signatures:
            if signature.pattern.search(text):
                logger.debug(
                    "Content gate match",
                    extra={"reason": signature.reason, "pattern": signature.pattern.pattern},
                )
                return GateDecision(blocked=True, reason=signature.reason)
        return GateDecision(blocked=False)
