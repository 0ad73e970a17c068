"""Tests for SSM secrets helper."""

from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws

from shared import secrets


@pytest.fixture(autouse=True)
def clear_cache(monkeypatch):
    """Isolate the cached key between tests."""
    monkeypatch.delenv("ANTHROPIC_API_KEY_PARAM", raising=False)
    secrets.get_anthropic_api_key.cache_clear()
    yield
    secrets.get_anthropic_api_key.cache_clear()


class TestGetAnthropicApiKey:
    """Tests for get_anthropic_api_key function."""

    def test_reads_secure_parameter(self) -> None:
        with mock_aws():
            ssm = boto3.client("ssm", region_name="us-east-1")
            ssm.put_parameter(
                Name=secrets.ANTHROPIC_API_KEY_PARAM,
                Value="sk-ant-test-12345",
                Type="SecureString",
            )

            assert secrets.get_anthropic_api_key() == "sk-ant-test-12345"

    def test_env_override(self, monkeypatch) -> None:
        """Parameter name can be overridden per environment."""
        monkeypatch.setenv("ANTHROPIC_API_KEY_PARAM", "/custom/path/api-key")
        mock_ssm = MagicMock()
        mock_ssm.get_parameter.return_value = {"Parameter": {"Value": "custom-key"}}

        with patch("boto3.client", return_value=mock_ssm):
            result = secrets.get_anthropic_api_key()

        assert result == "custom-key"
        mock_ssm.get_parameter.assert_called_once_with(
            Name="/custom/path/api-key",
            WithDecryption=True,
        )

    def test_cached(self) -> None:
        mock_ssm = MagicMock()
        mock_ssm.get_parameter.return_value = {"Parameter": {"Value": "cached-key"}}

        with patch("boto3.client", return_value=mock_ssm):
            assert secrets.get_anthropic_api_key() == "cached-key"
            assert secrets.get_anthropic_api_key() == "cached-key"

        assert mock_ssm.get_parameter.call_count == 1

    def test_missing_parameter_raises(self) -> None:
        with mock_aws(), pytest.raises(ClientError):
            secrets.get_anthropic_api_key()
