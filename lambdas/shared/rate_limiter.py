"""Fixed-window rate limiting over multiple scopes and windows.

Each (scope, window) pair is one counter item keyed by the window's boundary
start. The counter is created by the first increment and expires through the
table's TTL at boundary_start + window length; a new window uses a new key,
so expiry lag never leaks counts across windows.
"""

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from aws_lambda_powertools import Logger

from .db import DynamoDBClient
from .models import RequestIdentity, Tier
from .tiers import TIER_LIMITS, AddressLimits, TierLimits, get_tier_limits

logger = Logger(child=True)


class Scope(str, Enum):
    """Dimension a counter is keyed on."""

    ADDRESS = "address"
    SUBJECT = "subject"


class Window(str, Enum):
    """Fixed time buckets."""

    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"

    @property
    def seconds(self) -> int:
        return _WINDOW_SECONDS[self]


_WINDOW_SECONDS = {Window.MINUTE: 60, Window.HOUR: 3_600, Window.DAY: 86_400}


@dataclass(frozen=True)
class RateLimitRule:
    """At most max_count requests per window for a scope."""

    scope: Scope
    window: Window
    max_count: int


@dataclass(frozen=True)
class CounterKey:
    """Address of one window counter."""

    scope: Scope
    scope_value: str
    window: Window
    boundary_start: int

    @classmethod
    def at(cls, scope: Scope, scope_value: str, window: Window, now: float) -> "CounterKey":
        """Key of the window containing ``now``."""
        boundary = int(now // window.seconds) * window.seconds
        return cls(scope, scope_value, window, boundary)

    @property
    def pk(self) -> str:
        return f"RATE#{self.scope.value.upper()}#{self.scope_value}"

    @property
    def sk(self) -> str:
        return f"WINDOW#{self.window.value.upper()}#{self.boundary_start}"

    @property
    def expires_at(self) -> int:
        return self.boundary_start + self.window.seconds


@dataclass(frozen=True)
class RuleResult:
    """Post-increment state of one rule."""

    rule: RateLimitRule
    count: int
    retry_after_seconds: int

    @property
    def exceeded(self) -> bool:
        return self.count > self.rule.max_count


@dataclass
class RateLimitDecision:
    """Outcome of a rate-limit check."""

    allowed: bool
    retry_after_seconds: int = 0
    violated: RateLimitRule | None = None
    results: list[RuleResult] | None = None


def _tier_rules(scope: Scope, limits: TierLimits | AddressLimits) -> list[RateLimitRule]:
    return [
        RateLimitRule(scope, Window.MINUTE, limits.requests_per_minute),
        RateLimitRule(scope, Window.HOUR, limits.requests_per_hour),
        RateLimitRule(scope, Window.DAY, limits.requests_per_day),
    ]


class RateLimiter:
    """Counts requests per scope and window and denies past the ceiling."""

    def __init__(
        self,
        db: DynamoDBClient,
        tier_limits: dict[Tier, TierLimits] | None = None,
        address_limits: AddressLimits | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize limiter.

        Args:
            db: Store holding the window counters
            tier_limits: Tier table (defaults to TIER_LIMITS)
            address_limits: Per-address ceilings for authenticated identities
            clock: Source of the current epoch time
        """
        self.db = db
        self.tier_limits = tier_limits or TIER_LIMITS
        self.address_limits = address_limits or AddressLimits()
        self.clock = clock

    def rules_for(self, identity: RequestIdentity) -> list[RateLimitRule]:
        """Rules applying to an identity.

        Anonymous identities are bounded by address using the anonymous tier's
        limits. Authenticated identities get their tier's limits per subject
        plus the address ceilings, so many accounts behind one address are
        still bounded.
        """
        if identity.is_anonymous:
            return _tier_rules(Scope.ADDRESS, get_tier_limits(Tier.ANONYMOUS, self.tier_limits))
        return _tier_rules(
            Scope.SUBJECT, get_tier_limits(identity.tier, self.tier_limits)
        ) + _tier_rules(Scope.ADDRESS, self.address_limits)

    def check(
        self,
        identity: RequestIdentity,
        rules: list[RateLimitRule] | None = None,
    ) -> RateLimitDecision:
        """Count this request against every rule and decide.

        All rules are incremented even after a violation is found, and the
        increments persist on deny.

        Args:
            identity: Identity the request is evaluated against
            rules: Rules to apply (defaults to rules_for(identity))

        Returns:
            RateLimitDecision; on deny, retry_after_seconds is the time until
            the furthest reset among the violated windows

        Raises:
            StoreUnavailableError: If the counter store fails
        """
        rules = rules if rules is not None else self.rules_for(identity)
        now = self.clock()

        results = [self._increment(identity, rule, now) for rule in rules]
        violations = [r for r in results if r.exceeded]

        if not violations:
            return RateLimitDecision(allowed=True, results=results)

        worst = max(violations, key=lambda r: r.retry_after_seconds)
        logger.info(
            "Rate limit exceeded",
            extra={
                "network_address": identity.network_address,
                "subject_id": identity.subject_id,
                "tier": identity.tier.value,
                "scope": worst.rule.scope.value,
                "window": worst.rule.window.value,
                "count": worst.count,
                "limit": worst.rule.max_count,
            },
        )
        return RateLimitDecision(
            allowed=False,
            retry_after_seconds=worst.retry_after_seconds,
            violated=worst.rule,
            results=results,
        )

    def _increment(self, identity: RequestIdentity, rule: RateLimitRule, now: float) -> RuleResult:
        scope_value = (
            identity.subject_id if rule.scope == Scope.SUBJECT else identity.network_address
        )
        key = CounterKey.at(rule.scope, scope_value or "unknown", rule.window, now)

        item = self.db.increment(
            key.pk,
            key.sk,
            {"request_count": 1},
            ttl_epoch=key.expires_at,
        )
        count = int((item or {}).get("request_count", 0))
        retry_after = max(1, math.ceil(key.expires_at - now))
        return RuleResult(rule=rule, count=count, retry_after_seconds=retry_after)
