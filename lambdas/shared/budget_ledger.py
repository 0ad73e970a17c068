"""Global daily spend ledger with threshold alerts and a circuit breaker.

One ledger row per UTC day. Estimates are added speculatively before the
model call and never rolled back; actual costs are added on top after the
call. Once the day's total reaches the cap the breaker opens and every
reservation is denied until the date key changes.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass

import boto3
from aws_lambda_powertools import Logger, Metrics
from aws_lambda_powertools.metrics import MetricUnit
from botocore.exceptions import BotoCoreError, ClientError

from .db import DynamoDBClient
from .models import BudgetLedgerEntry
from .utils import get_today_key, get_ttl_epoch

logger = Logger(child=True)
metrics = Metrics(namespace="ChatGateway")

LEDGER_PK = "LEDGER#GLOBAL"
ALERTS_PK = "LEDGER#ALERTS"

# Markers only need to outlive their day
MARKER_RETENTION_DAYS = 7


def ledger_sk(date_key: str) -> str:
    return f"DATE#{date_key}"


@dataclass
class BudgetDecision:
    """Outcome of a reservation attempt."""

    allowed: bool
    total_spend: int = 0
    cap: int = 0
    breaker_open: bool = False

    @property
    def percent_used(self) -> float:
        return self.total_spend / self.cap * 100 if self.cap else 100.0


@dataclass
class BudgetStatus:
    """Snapshot of today's budget."""

    date: str
    used: int
    limit: int
    breaker_open: bool

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    @property
    def percent_used(self) -> float:
        return round(self.used / self.limit * 100, 1) if self.limit else 100.0


class AlertNotifier:
    """Publishes budget alerts to SNS, or only logs when no topic is set."""

    def __init__(self, topic_arn: str | None = None, sns_client=None) -> None:
        self.topic_arn = topic_arn
        self._sns = sns_client

    @property
    def sns(self):
        if self._sns is None:
            self._sns = boto3.client("sns")
        return self._sns

    def notify(self, date_key: str, threshold: int, total_spend: int, cap: int) -> None:
        """Send one threshold alert.

        Delivery failures are logged; the marker that guards the alert is
        already written, so the alert is not retried.
        """
        payload = {
            "date": date_key,
            "threshold_percent": threshold,
            "total_spend_minor_units": total_spend,
            "daily_cap_minor_units": cap,
        }
        logger.warning("Budget threshold crossed", extra=payload)

        if not self.topic_arn:
            return

        try:
            self.sns.publish(
                TopicArn=self.topic_arn,
                Subject=f"Chat gateway budget at {threshold}% for {date_key}",
                Message=json.dumps(payload),
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to publish budget alert",
                extra={"error": str(e), "threshold_percent": threshold},
            )


class BudgetLedger:
    """Reserves, commits and reports global daily spend."""

    def __init__(
        self,
        db: DynamoDBClient,
        daily_cap: int,
        thresholds: tuple[int, ...] = (50, 75, 90),
        notifier: AlertNotifier | None = None,
        today: Callable[[], str] = get_today_key,
    ) -> None:
        """Initialize ledger.

        Args:
            db: Store holding the ledger rows and markers
            daily_cap: Daily spend cap in minor units
            thresholds: Alert percentages, ascending
            notifier: Alert sink (defaults to log-only)
            today: Source of the current UTC date key
        """
        self.db = db
        self.daily_cap = daily_cap
        self.thresholds = tuple(sorted(thresholds))
        self.notifier = notifier or AlertNotifier()
        self.today = today

    def get_entry(self, date_key: str | None = None) -> BudgetLedgerEntry:
        """Get the ledger row for a date (defaults to today), zeroed if absent."""
        date_key = date_key or self.today()
        return BudgetLedgerEntry.from_db_item(
            date_key, self.db.get_item(LEDGER_PK, ledger_sk(date_key))
        )

    def get_status(self, date_key: str | None = None) -> BudgetStatus:
        """Summarize spend against the cap for a date."""
        entry = self.get_entry(date_key)
        return BudgetStatus(
            date=entry.date,
            used=entry.total_spend_minor_units,
            limit=self.daily_cap,
            breaker_open=entry.breaker_open,
        )

    def get_history(self, days: int = 30) -> list[BudgetLedgerEntry]:
        """Get the most recent ledger rows, newest first."""
        items = self.db.query_by_pk(LEDGER_PK, sk_prefix="DATE#", limit=days, newest_first=True)
        return [
            BudgetLedgerEntry.from_db_item(item["SK"].replace("DATE#", "", 1), item)
            for item in items
        ]

    def check_and_reserve(self, estimated_cost: int) -> BudgetDecision:
        """Add an estimate to today's spend if it fits under the cap.

        The check and the add are one conditional update, so concurrent
        reservations cannot both pass on the same headroom.

        Args:
            estimated_cost: Worst-case cost of the request in minor units

        Returns:
            BudgetDecision; denied when the breaker is open or the estimate
            would take the total past the cap

        Raises:
            StoreUnavailableError: If the ledger cannot be reached
        """
        date_key = self.today()
        estimated_cost = max(0, estimated_cost)

        if estimated_cost > self.daily_cap:
            return self._deny(date_key, estimated_cost)

        item = self.db.increment(
            LEDGER_PK,
            ledger_sk(date_key),
            {"total_spend_minor_units": estimated_cost, "reserved_minor_units": estimated_cost},
            condition=(
                "(attribute_not_exists(#total) OR #total <= :headroom) "
                "AND attribute_not_exists(#breaker)"
            ),
            condition_names={"#total": "total_spend_minor_units", "#breaker": "breaker_open"},
            condition_values={":headroom": self.daily_cap - estimated_cost},
        )
        if item is None:
            return self._deny(date_key, estimated_cost)

        total = int(item.get("total_spend_minor_units", 0))
        logger.debug(
            "Budget reserved",
            extra={"estimate": estimated_cost, "total_spend": total, "cap": self.daily_cap},
        )
        return BudgetDecision(allowed=True, total_spend=total, cap=self.daily_cap)

    def _deny(self, date_key: str, estimated_cost: int) -> BudgetDecision:
        entry = self.get_entry(date_key)
        logger.warning(
            "Budget reservation denied",
            extra={
                "estimate": estimated_cost,
                "total_spend": entry.total_spend_minor_units,
                "cap": self.daily_cap,
                "breaker_open": entry.breaker_open,
            },
        )
        return BudgetDecision(
            allowed=False,
            total_spend=entry.total_spend_minor_units,
            cap=self.daily_cap,
            breaker_open=entry.breaker_open,
        )

    def commit(
        self,
        actual_cost: int,
        actual_tokens: int,
        subject_id: str | None = None,
    ) -> BudgetLedgerEntry:
        """Record a completed call's actual cost and usage.

        Adds to spend, request and token counts, counts the subject once per
        day, then fires any newly crossed alerts and opens the breaker at the
        cap.

        Args:
            actual_cost: Cost from the provider's usage report, in minor units
            actual_tokens: Input plus output tokens
            subject_id: Authenticated subject, if any

        Returns:
            The ledger row after the update
        """
        date_key = self.today()
        sk = ledger_sk(date_key)
        actual_cost = max(0, actual_cost)

        item = self.db.increment(
            LEDGER_PK,
            sk,
            {
                "total_spend_minor_units": actual_cost,
                "actual_spend_minor_units": actual_cost,
                "request_count": 1,
                "token_count": max(0, actual_tokens),
            },
        )

        if subject_id and self.db.put_item_if_absent(
            f"LEDGER#SUBJECTS#{date_key}",
            f"SUBJECT#{subject_id}",
            {"ttl": get_ttl_epoch(days=MARKER_RETENTION_DAYS)},
        ):
            item = self.db.increment(LEDGER_PK, sk, {"unique_subject_count": 1})

        metrics.add_metric(name="SpendMinorUnits", unit=MetricUnit.Count, value=actual_cost)

        entry = BudgetLedgerEntry.from_db_item(date_key, item)
        self._evaluate_thresholds(entry)
        return entry

    def _evaluate_thresholds(self, entry: BudgetLedgerEntry) -> None:
        total = entry.total_spend_minor_units
        percent = total / self.daily_cap * 100 if self.daily_cap else 100.0

        for threshold in self.thresholds:
            if percent < threshold:
                break
            created = self.db.put_item_if_absent(
                ALERTS_PK,
                f"DATE#{entry.date}#THRESHOLD#{threshold}",
                {"total_spend_minor_units": total, "ttl": get_ttl_epoch(days=MARKER_RETENTION_DAYS)},
            )
            if created:
                metrics.add_metric(name="BudgetAlerts", unit=MetricUnit.Count, value=1)
                self.notifier.notify(entry.date, threshold, total, self.daily_cap)

        if total >= self.daily_cap and not entry.breaker_open:
            self._open_breaker(entry)

    def _open_breaker(self, entry: BudgetLedgerEntry) -> None:
        opened = self.db.update_item(
            LEDGER_PK,
            ledger_sk(entry.date),
            {"breaker_open": True},
            condition="attribute_not_exists(#breaker)",
            condition_names={"#breaker": "breaker_open"},
        )
        if opened is not None:
            entry.breaker_open = True
            logger.warning(
                "Budget circuit breaker opened",
                extra={
                    "date": entry.date,
                    "total_spend": entry.total_spend_minor_units,
                    "cap": self.daily_cap,
                },
            )
