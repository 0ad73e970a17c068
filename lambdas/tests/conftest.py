"""Shared pytest fixtures for the chat gateway tests."""

import os

import boto3
import pytest
from moto import mock_aws

# Set before any handler module is imported; handlers read config at import
os.environ.setdefault("TABLE_NAME", "test-chat-gateway")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("MODEL_PROVIDER", "claude")
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "chat-gateway")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "ChatGateway")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "1")
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_SECURITY_TOKEN", "testing")
os.environ.setdefault("AWS_SESSION_TOKEN", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

TABLE_NAME = os.environ["TABLE_NAME"]


@pytest.fixture
def env_setup(monkeypatch):
    """Reset governance environment variables to their defaults."""
    for name in (
        "DAILY_BUDGET_CAP_MINOR_UNITS",
        "ALERT_THRESHOLD_PERCENTAGES",
        "CONVERSATION_TOKEN_CEILING",
        "ADDRESS_REQUESTS_PER_MINUTE",
        "ADDRESS_REQUESTS_PER_HOUR",
        "ADDRESS_REQUESTS_PER_DAY",
        "TIER_LIMITS_OVERRIDES",
        "BUDGET_ALERT_TOPIC_ARN",
        "MODEL_ID",
        "ANTHROPIC_API_KEY_PARAM",
        "TRUST_USER_ID_HEADER",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("TABLE_NAME", TABLE_NAME)
    monkeypatch.setenv("MODEL_PROVIDER", "claude")
    yield monkeypatch


@pytest.fixture
def dynamodb_table():
    """Create the single table inside a moto mock."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        table = dynamodb.create_table(
            TableName=TABLE_NAME,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        table.wait_until_exists()
        yield table


@pytest.fixture
def db(dynamodb_table):
    """DynamoDBClient bound to the mocked table."""
    from shared.db import DynamoDBClient

    return DynamoDBClient(TABLE_NAME)


class FakeClock:
    """Controllable epoch clock for window arithmetic."""

    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Clock fixed 15 seconds into a minute window."""
    return FakeClock(1_760_000_415.0)
