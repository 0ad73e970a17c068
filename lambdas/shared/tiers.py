"""Per-tier usage limits.

Tiers are data: adding one means adding a row to TIER_LIMITS, not a branch.
Daily windows reset at midnight UTC.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace

from .exceptions import ConfigurationError
from .models import Tier


@dataclass(frozen=True)
class TierLimits:
    """Request and token ceilings for one tier."""

    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int

    # Input + output tokens per subject per day
    daily_token_limit: int

    # Per-request output ceiling passed to the model
    max_output_tokens: int


TIER_LIMITS: dict[Tier, TierLimits] = {
    # No durable subject, so only the request count bounds usage
    Tier.ANONYMOUS: TierLimits(
        requests_per_minute=2,
        requests_per_hour=3,
        requests_per_day=3,
        daily_token_limit=10_000,
        max_output_tokens=1_000,
    ),
    Tier.STANDARD: TierLimits(
        requests_per_minute=10,
        requests_per_hour=100,
        requests_per_day=500,
        daily_token_limit=100_000,
        max_output_tokens=2_000,
    ),
    Tier.ELEVATED: TierLimits(
        requests_per_minute=30,
        requests_per_hour=600,
        requests_per_day=5_000,
        daily_token_limit=1_000_000,
        max_output_tokens=4_000,
    ),
    Tier.ENTERPRISE: TierLimits(
        requests_per_minute=60,
        requests_per_hour=2_000,
        requests_per_day=10_000,
        daily_token_limit=10_000_000,
        max_output_tokens=8_000,
    ),
}


@dataclass(frozen=True)
class AddressLimits:
    """Ceilings shared by every account behind one network address."""

    requests_per_minute: int = 30
    requests_per_hour: int = 600
    requests_per_day: int = 5_000


def get_tier_limits(
    tier: Tier, table: Mapping[Tier, TierLimits] | None = None
) -> TierLimits:
    """Get limits for a tier, falling back to STANDARD.

    Args:
        tier: Tier to look up
        table: Optional limits table (defaults to TIER_LIMITS)

    Returns:
        TierLimits for the tier
    """
    table = table or TIER_LIMITS
    return table.get(tier) or table[Tier.STANDARD]


def apply_overrides(raw: str | None) -> dict[Tier, TierLimits]:
    """Build a tier table from TIER_LIMITS plus JSON overrides.

    Overrides look like ``{"standard": {"requests_per_minute": 20}}``; only the
    given fields change.

    Args:
        raw: JSON string or None/empty for no overrides

    Returns:
        New tier table

    Raises:
        ConfigurationError: If the JSON is malformed or names unknown tiers/fields
    """
    table = dict(TIER_LIMITS)
    if not raw or not raw.strip():
        return table

    try:
        overrides = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigurationError(
            f"TIER_LIMITS_OVERRIDES is not valid JSON: {e}",
            config_key="TIER_LIMITS_OVERRIDES",
        ) from None

    if not isinstance(overrides, dict):
        raise ConfigurationError(
            "TIER_LIMITS_OVERRIDES must be a JSON object",
            config_key="TIER_LIMITS_OVERRIDES",
        )

    allowed = {f.name for f in fields(TierLimits)}
    for tier_name, values in overrides.items():
        try:
            tier = Tier(tier_name)
        except ValueError:
            raise ConfigurationError(
                f"Unknown tier '{tier_name}' in TIER_LIMITS_OVERRIDES",
                config_key="TIER_LIMITS_OVERRIDES",
            ) from None
        if not isinstance(values, dict) or not set(values) <= allowed:
            raise ConfigurationError(
                f"Invalid limit fields for tier '{tier_name}'",
                config_key="TIER_LIMITS_OVERRIDES",
            )
        if any(not isinstance(v, int) or v < 0 for v in values.values()):
            raise ConfigurationError(
                f"Limits for tier '{tier_name}' must be non-negative integers",
                config_key="TIER_LIMITS_OVERRIDES",
            )
        base = table.get(tier) or table[Tier.STANDARD]
        table[tier] = replace(base, **values)

    return table
