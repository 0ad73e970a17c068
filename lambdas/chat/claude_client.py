"""Claude API client with prompt caching."""

import anthropic
from aws_lambda_powertools import Logger

from chat.models import ModelResponse
from shared.exceptions import ModelCallError

logger = Logger(child=True)


class ClaudeClient:
    """Wrapper for the Anthropic Messages API with prompt caching."""

    def __init__(self, api_key: str, model_id: str, temperature: float = 0.7):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key
            model_id: Model to call
            temperature: Sampling temperature
        """
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model_id = model_id
        self.temperature = temperature

    def send_messages(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> ModelResponse:
        """Send a conversation to Claude, return the reply with usage stats.

        Uses prompt caching on system_prompt for cost savings.

        Args:
            system_prompt: Operating instructions (cacheable)
            messages: Alternating user/assistant messages, ending with user
            max_tokens: Output ceiling for this call

        Returns:
            ModelResponse with text and token usage

        Raises:
            ModelCallError: If the API call fails or returns no text
        """
        try:
            response = self.client.messages.create(
                model=self.model_id,
                max_tokens=max_tokens,
                temperature=self.temperature,
                system=[
                    {
                        "type": "text",
                        "text": system_prompt,
                        "cache_control": {"type": "ephemeral"},
                    }
                ],
                messages=messages,
            )
        except anthropic.APIError as e:
            logger.error(
                "Claude API error",
                extra={
                    "error_type": type(e).__name__,
                    "status_code": getattr(e, "status_code", None),
                    "error_message": str(e),
                },
            )
            raise ModelCallError(f"Claude API error: {type(e).__name__}") from e

        usage = response.usage
        cache_creation = getattr(usage, "cache_creation_input_tokens", 0) or 0
        cache_read = getattr(usage, "cache_read_input_tokens", 0) or 0

        logger.info(
            "Claude API usage",
            extra={
                "model": self.model_id,
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "cache_creation_input_tokens": cache_creation,
                "cache_read_input_tokens": cache_read,
                "stop_reason": response.stop_reason,
            },
        )

        text = "\n".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            # Billed but unusable; the reported usage is still real
            raise ModelCallError(
                "Claude returned no text",
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            )

        return ModelResponse(
            text=text,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
        )
