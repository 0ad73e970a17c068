"""Bedrock client using the Converse API."""

import boto3
from aws_lambda_powertools import Logger
from botocore.exceptions import BotoCoreError, ClientError

from chat.models import ModelResponse
from shared.exceptions import ModelCallError

logger = Logger(child=True)


class BedrockClient:
    """Wrapper for foundation models via AWS Bedrock."""

    def __init__(self, model_id: str, region: str = "us-east-1", temperature: float = 0.7):
        """Initialize Bedrock client.

        Args:
            model_id: Bedrock model identifier
            region: AWS region for Bedrock
            temperature: Sampling temperature
        """
        self.client = boto3.client("bedrock-runtime", region_name=region)
        self.model_id = model_id
        self.temperature = temperature

    def send_messages(
        self,
        system_prompt: str,
        messages: list[dict[str, str]],
        max_tokens: int,
    ) -> ModelResponse:
        """Send a conversation via Converse, return the reply with usage stats.

        Matches ClaudeClient interface for easy swapping.

        Args:
            system_prompt: Operating instructions
            messages: Alternating user/assistant messages, ending with user
            max_tokens: Output ceiling for this call

        Returns:
            ModelResponse with text and token usage

        Raises:
            ModelCallError: If the call fails or returns no text
        """
        try:
            response = self.client.converse(
                modelId=self.model_id,
                system=[{"text": system_prompt}],
                messages=[
                    {"role": m["role"], "content": [{"text": m["content"]}]} for m in messages
                ],
                inferenceConfig={"maxTokens": max_tokens, "temperature": self.temperature},
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(
                "Bedrock API error",
                extra={"error_code": error_code, "error_message": str(e)},
            )
            raise ModelCallError(f"Bedrock API error: {error_code}") from e
        except BotoCoreError as e:
            logger.error("Bedrock connection error", extra={"error_message": str(e)})
            raise ModelCallError("Bedrock connection error") from e

        usage = response.get("usage", {})
        input_tokens = int(usage.get("inputTokens", 0))
        output_tokens = int(usage.get("outputTokens", 0))

        logger.info(
            "Bedrock usage",
            extra={
                "model": self.model_id,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "stop_reason": response.get("stopReason"),
            },
        )

        content = response.get("output", {}).get("message", {}).get("content", [])
        text = "\n".join(block["text"] for block in content if "text" in block)
        if not text.strip():
            raise ModelCallError(
                "Bedrock returned no text",
                input_tokens=input_tokens,
                output_tokens=output_tokens,
            )

        return ModelResponse(text=text, input_tokens=input_tokens, output_tokens=output_tokens)
