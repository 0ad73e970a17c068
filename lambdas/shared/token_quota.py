"""Per-subject daily token quota."""

from dataclasses import dataclass

from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit

from .db import DynamoDBClient
from .models import DailyTokenUsage, RequestIdentity, Tier
from .tiers import TIER_LIMITS, TierLimits, get_tier_limits
from .utils import get_today_key, get_ttl_epoch

logger = Logger(child=True)
metrics = Metrics(namespace="ChatGateway")

# Usage rows are kept for reporting
USAGE_RETENTION_DAYS = 90


def usage_keys(subject_id: str, date_key: str) -> tuple[str, str]:
    """DynamoDB PK and SK of a subject's usage row for a date."""
    return f"USAGE#SUBJECT#{subject_id}", f"DATE#{date_key}"


@dataclass
class QuotaDecision:
    """Outcome of a quota check."""

    allowed: bool
    used: int = 0
    limit: int = 0
    estimate: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)


class TokenQuotaEnforcer:
    """Tracks tokens per subject per UTC day and denies past the tier limit.

    Anonymous identities have no durable subject and are exempt; their usage
    is bounded by the rate limiter alone.
    """

    def __init__(
        self,
        db: DynamoDBClient,
        tier_limits: dict[Tier, TierLimits] | None = None,
    ) -> None:
        """Initialize enforcer.

        Args:
            db: Store holding the usage rows
            tier_limits: Tier table (defaults to TIER_LIMITS)
        """
        self.db = db
        self.tier_limits = tier_limits or TIER_LIMITS

    def get_usage(self, subject_id: str, date_key: str | None = None) -> DailyTokenUsage:
        """Get a subject's usage for a date (defaults to today)."""
        date_key = date_key or get_today_key()
        pk, sk = usage_keys(subject_id, date_key)
        return DailyTokenUsage.from_db_item(subject_id, date_key, self.db.get_item(pk, sk))

    def reserve(self, identity: RequestIdentity, estimated_tokens: int) -> QuotaDecision:
        """Decide whether a request's estimated tokens fit today's quota.

        Read-only: usage is recorded by commit once actual counts are known.

        Args:
            identity: Requesting identity
            estimated_tokens: Estimated input tokens plus the output ceiling

        Returns:
            QuotaDecision; denied when used + estimate exceeds the tier limit
        """
        if identity.is_anonymous:
            return QuotaDecision(allowed=True, estimate=estimated_tokens)

        limit = get_tier_limits(identity.tier, self.tier_limits).daily_token_limit
        usage = self.get_usage(identity.subject_id)

        if usage.tokens_used + estimated_tokens > limit:
            logger.warning(
                "Daily token quota exceeded",
                extra={
                    "subject_id": identity.subject_id,
                    "tier": identity.tier.value,
                    "tokens_used": usage.tokens_used,
                    "estimate": estimated_tokens,
                    "limit": limit,
                },
            )
            return QuotaDecision(
                allowed=False, used=usage.tokens_used, limit=limit, estimate=estimated_tokens
            )

        return QuotaDecision(
            allowed=True, used=usage.tokens_used, limit=limit, estimate=estimated_tokens
        )

    def commit(
        self,
        identity: RequestIdentity,
        input_tokens: int,
        output_tokens: int,
        succeeded: bool = True,
    ) -> DailyTokenUsage | None:
        """Add actual tokens to today's usage.

        Args:
            identity: Requesting identity
            input_tokens: Input tokens the provider reported
            output_tokens: Output tokens the provider reported
            succeeded: False when the usage comes from a failed model call

        Returns:
            Usage after the increment, or None for anonymous identities
        """
        tokens = max(0, input_tokens) + max(0, output_tokens)
        metrics.add_metric(name="TokensConsumed", unit=MetricUnit.Count, value=tokens)

        if identity.is_anonymous:
            return None

        date_key = get_today_key()
        pk, sk = usage_keys(identity.subject_id, date_key)
        counter = "request_count" if succeeded else "failed_count"
        item = self.db.increment(
            pk,
            sk,
            {"tokens_used": tokens, counter: 1},
            ttl_epoch=get_ttl_epoch(days=USAGE_RETENTION_DAYS),
        )
        usage = DailyTokenUsage.from_db_item(identity.subject_id, date_key, item)

        logger.info(
            "Token usage recorded",
            extra={
                "subject_id": identity.subject_id,
                "input_tokens": input_tokens,
                "output_tokens": output_tokens,
                "tokens_used_today": usage.tokens_used,
                "succeeded": succeeded,
            },
        )
        return usage

    def record_failure(self, identity: RequestIdentity) -> DailyTokenUsage | None:
        """Count a failed request that reported no usage."""
        return self.commit(identity, 0, 0, succeeded=False)

    def get_history(self, subject_id: str, days: int = 30) -> list[DailyTokenUsage]:
        """Get a subject's daily usage rows, newest first.

        Args:
            subject_id: Subject to report on
            days: Maximum number of days to return

        Returns:
            Usage per day that has any recorded request
        """
        pk, _ = usage_keys(subject_id, "")
        items = self.db.query_by_pk(pk=pk, sk_prefix="DATE#", limit=days, newest_first=True)
        return [
            DailyTokenUsage.from_db_item(subject_id, item["SK"].replace("DATE#", "", 1), item)
            for item in items
        ]
