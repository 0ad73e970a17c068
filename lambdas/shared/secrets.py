"""SSM Parameter Store helpers."""

import os
from functools import lru_cache

import boto3
from aws_lambda_powertools import Logger

logger = Logger(child=True)

# Default SSM parameter holding the Anthropic API key
ANTHROPIC_API_KEY_PARAM = "/chat-gateway/dev/secrets/anthropic_api_key"


@lru_cache(maxsize=1)
def get_anthropic_api_key() -> str:
    """Retrieve the Anthropic API key from SSM Parameter Store.

    Cached for the lifetime of the Lambda container.
    Uses WithDecryption=True for SecureString parameters.

    Returns:
        The API key string

    Raises:
        ClientError: If the SSM parameter is missing or unreadable
    """
    param_name = os.environ.get("ANTHROPIC_API_KEY_PARAM") or ANTHROPIC_API_KEY_PARAM

    client = boto3.client("ssm")
    response = client.get_parameter(Name=param_name, WithDecryption=True)
    logger.info("Retrieved Anthropic API key from SSM Parameter Store")
    return response["Parameter"]["Value"]
