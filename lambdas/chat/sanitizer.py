"""Input and output sanitization for chat messages."""

import re

MAX_INPUT_CHARS = 4_000
MAX_OUTPUT_CHARS = 10_000
TRUNCATION_NOTICE = "\n\n[Response truncated for length]"
REDACTED = "[REDACTED]"

_SCRIPT_TAG = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_IFRAME_TAG = re.compile(r"<iframe[^>]*>.*?</iframe>", re.IGNORECASE | re.DOTALL)
_JS_SCHEME = re.compile(r"javascript:", re.IGNORECASE)
_INLINE_HANDLER = re.compile(r"\bon\w+\s*=", re.IGNORECASE)

_PROMPT_LEAKS = (
    re.compile(r"STRICT OPERATIONAL BOUNDARIES:", re.IGNORECASE),
    re.compile(r"system\s+prompt", re.IGNORECASE),
)


def sanitize_input(message: str) -> str:
    """Clean a user message before it is sent to the model.

    Removes null bytes, caps the length and collapses whitespace.
    """
    sanitized = message.replace("\0", "")[:MAX_INPUT_CHARS]
    return " ".join(sanitized.split())


def sanitize_output(response: str) -> str:
    """Clean model output before it is returned to the client.

    Strips markup that could execute in a browser, redacts fragments of
    the operating instructions and truncates overly long responses.
    """
    sanitized = _SCRIPT_TAG.sub("", response)
    sanitized = _IFRAME_TAG.sub("", sanitized)
    sanitized = _JS_SCHEME.sub("", sanitized)
    sanitized = _INLINE_HANDLER.sub("", sanitized)

    for pattern in _PROMPT_LEAKS:
        sanitized = pattern.sub(REDACTED, sanitized)

    if len(sanitized) > MAX_OUTPUT_CHARS:
        sanitized = sanitized[:MAX_OUTPUT_CHARS] + TRUNCATION_NOTICE

    return sanitized
