"""Environment configuration for Lambda functions."""
import os
from dataclasses import dataclass, field

from .exceptions import ConfigurationError
from .models import Tier
from .tiers import AddressLimits, TierLimits, apply_overrides

DEFAULT_MODEL_IDS = {
    "claude": "claude-sonnet-4-5-20250929",
    "bedrock": "anthropic.claude-3-haiku-20240307-v1:0",
}


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    """Read a non-negative integer environment variable."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer", config_key=name) from None
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}", config_key=name)
    return value


def _bool_env(name: str, default: bool) -> bool:
    """Read a true/false environment variable."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes"):
        return True
    if value in ("0", "false", "no"):
        return False
    raise ConfigurationError(f"{name} must be true or false", config_key=name)


def _thresholds_env(name: str, default: tuple[int, ...]) -> tuple[int, ...]:
    """Read a comma-separated list of percentages, returned sorted."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        values = sorted({int(part) for part in raw.split(",") if part.strip()})
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a comma-separated list of integers", config_key=name
        ) from None
    if any(v <= 0 or v > 100 for v in values):
        raise ConfigurationError(f"{name} values must be in 1..100", config_key=name)
    return tuple(values)


@dataclass
class GovernanceSettings:
    """Limits consumed by the governance components."""

    daily_budget_cap_minor_units: int = 1_000
    alert_threshold_percentages: tuple[int, ...] = (50, 75, 90)
    conversation_token_ceiling: int = 150_000
    address_limits: AddressLimits = field(default_factory=AddressLimits)
    tier_limits: dict[Tier, TierLimits] = field(default_factory=lambda: apply_overrides(None))
    budget_alert_topic_arn: str | None = None

    @classmethod
    def from_env(cls) -> "GovernanceSettings":
        """Load governance settings from environment variables.

        Raises:
            ConfigurationError: If a value is malformed
        """
        defaults = AddressLimits()
        return cls(
            daily_budget_cap_minor_units=_int_env(
                "DAILY_BUDGET_CAP_MINOR_UNITS", 1_000, minimum=1
            ),
            alert_threshold_percentages=_thresholds_env(
                "ALERT_THRESHOLD_PERCENTAGES", (50, 75, 90)
            ),
            conversation_token_ceiling=_int_env(
                "CONVERSATION_TOKEN_CEILING", 150_000, minimum=1
            ),
            address_limits=AddressLimits(
                requests_per_minute=_int_env(
                    "ADDRESS_REQUESTS_PER_MINUTE", defaults.requests_per_minute
                ),
                requests_per_hour=_int_env(
                    "ADDRESS_REQUESTS_PER_HOUR", defaults.requests_per_hour
                ),
                requests_per_day=_int_env(
                    "ADDRESS_REQUESTS_PER_DAY", defaults.requests_per_day
                ),
            ),
            tier_limits=apply_overrides(os.environ.get("TIER_LIMITS_OVERRIDES")),
            budget_alert_topic_arn=os.environ.get("BUDGET_ALERT_TOPIC_ARN") or None,
        )


@dataclass
class Config:
    """Application configuration loaded from environment variables."""

    table_name: str
    environment: str
    log_level: str
    model_provider: str
    model_id: str
    api_key_param: str | None
    governance: GovernanceSettings = field(default_factory=GovernanceSettings)
    trust_user_header: bool = False

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables.

        Returns:
            Config instance with values from environment

        Raises:
            ConfigurationError: If required environment variables are missing
        """
        table_name = os.environ.get("TABLE_NAME")
        if not table_name:
            raise ConfigurationError(
                "TABLE_NAME environment variable is required",
                config_key="TABLE_NAME",
            )

        provider = os.environ.get("MODEL_PROVIDER", "claude").strip().lower()
        if provider not in DEFAULT_MODEL_IDS:
            raise ConfigurationError(
                f"MODEL_PROVIDER must be one of {sorted(DEFAULT_MODEL_IDS)}",
                config_key="MODEL_PROVIDER",
            )

        environment = os.environ.get("ENVIRONMENT", "dev")

        return cls(
            table_name=table_name,
            environment=environment,
            log_level=os.environ.get("POWERTOOLS_LOG_LEVEL", "INFO"),
            model_provider=provider,
            model_id=os.environ.get("MODEL_ID") or DEFAULT_MODEL_IDS[provider],
            api_key_param=os.environ.get("ANTHROPIC_API_KEY_PARAM"),
            governance=GovernanceSettings.from_env(),
            trust_user_header=_bool_env(
                "TRUST_USER_ID_HEADER", default=environment in ("dev", "test")
            ),
        )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "prod"


def get_config() -> Config:
    """Get cached configuration instance.

    Returns:
        Config instance (cached after first call)
    """
    if not hasattr(get_config, "_config"):
        get_config._config = Config.from_env()
    return get_config._config
