"""Tests for rate limiter module."""

import pytest

from shared.models import RequestIdentity, Tier
from shared.rate_limiter import (
    CounterKey,
    RateLimiter,
    RateLimitRule,
    Scope,
    Window,
)
from shared.tiers import AddressLimits


@pytest.fixture
def limiter(db, clock):
    """Create a RateLimiter over the mocked table with a fixed clock."""
    return RateLimiter(db, clock=clock)


@pytest.fixture
def standard_user():
    return RequestIdentity(network_address="203.0.113.7", subject_id="user-1", tier=Tier.STANDARD)


@pytest.fixture
def anonymous():
    return RequestIdentity(network_address="198.51.100.9")


class TestCounterKey:
    """Tests for CounterKey window arithmetic."""

    def test_boundary_is_window_start(self):
        """Boundary start is floored to the window length."""
        key = CounterKey.at(Scope.ADDRESS, "1.2.3.4", Window.MINUTE, 1_000_000_059.9)
        assert key.boundary_start == 1_000_000_020
        assert key.expires_at == 1_000_000_080

    def test_keys_differ_across_windows(self):
        """Adjacent windows get distinct sort keys."""
        first = CounterKey.at(Scope.SUBJECT, "u", Window.MINUTE, 120.0)
        second = CounterKey.at(Scope.SUBJECT, "u", Window.MINUTE, 180.0)
        assert first.pk == second.pk == "RATE#SUBJECT#u"
        assert first.sk != second.sk

    def test_window_seconds(self):
        assert Window.MINUTE.seconds == 60
        assert Window.HOUR.seconds == 3_600
        assert Window.DAY.seconds == 86_400


class TestRulesFor:
    """Tests for rule derivation from the tier table."""

    def test_anonymous_gets_address_rules_only(self, limiter, anonymous):
        rules = limiter.rules_for(anonymous)
        assert {r.scope for r in rules} == {Scope.ADDRESS}
        assert [r.max_count for r in rules] == [2, 3, 3]

    def test_authenticated_gets_subject_and_address_rules(self, limiter, standard_user):
        rules = limiter.rules_for(standard_user)
        subject_rules = [r for r in rules if r.scope == Scope.SUBJECT]
        address_rules = [r for r in rules if r.scope == Scope.ADDRESS]
        assert [r.max_count for r in subject_rules] == [10, 100, 500]
        assert [r.max_count for r in address_rules] == [30, 600, 5_000]


class TestCheck:
    """Tests for RateLimiter.check."""

    def test_standard_tier_eleventh_request_in_minute_denied(self, limiter, standard_user, clock):
        """10 requests pass, the 11th is denied with retry-after <= 60s."""
        for _ in range(10):
            decision = limiter.check(standard_user)
            assert decision.allowed
            clock.advance(1)

        decision = limiter.check(standard_user)

        assert not decision.allowed
        assert decision.violated.scope == Scope.SUBJECT
        assert decision.violated.window == Window.MINUTE
        assert 0 < decision.retry_after_seconds <= 60

    def test_rejected_call_still_increments_once(self, limiter, db, standard_user, clock):
        """Counter is N+1 after N allowed and one denied request."""
        for _ in range(11):
            limiter.check(standard_user)

        key = CounterKey.at(Scope.SUBJECT, "user-1", Window.MINUTE, clock())
        item = db.get_item(key.pk, key.sk)
        assert int(item["request_count"]) == 11

    def test_counter_sets_ttl_at_window_end(self, limiter, db, standard_user, clock):
        limiter.check(standard_user)

        key = CounterKey.at(Scope.SUBJECT, "user-1", Window.HOUR, clock())
        item = db.get_item(key.pk, key.sk)
        assert int(item["ttl"]) == key.boundary_start + 3_600

    def test_new_window_resets_count(self, limiter, standard_user, clock):
        """A request in the next minute window is allowed again."""
        for _ in range(11):
            limiter.check(standard_user)

        clock.advance(60)
        decision = limiter.check(standard_user)

        assert decision.allowed

    def test_anonymous_daily_limit(self, limiter, anonymous, clock):
        """Anonymous identities get a small fixed count per address."""
        for _ in range(3):
            assert limiter.check(anonymous).allowed
            clock.advance(61)

        decision = limiter.check(anonymous)

        assert not decision.allowed
        assert decision.violated.window in (Window.HOUR, Window.DAY)

    def test_retry_after_uses_furthest_violated_window(self, limiter, anonymous):
        """When minute and day windows are both exceeded, report the day reset."""
        for _ in range(4):
            decision = limiter.check(anonymous)

        assert not decision.allowed
        assert decision.violated.window == Window.DAY
        # 15s into the minute, 32415s into the day
        assert decision.retry_after_seconds == 86_400 - 32_415

    def test_address_ceiling_bounds_many_accounts(self, db, clock):
        """Accounts behind one address share the address ceiling."""
        limiter = RateLimiter(
            db,
            address_limits=AddressLimits(requests_per_minute=3, requests_per_hour=100, requests_per_day=100),
            clock=clock,
        )

        results = [
            limiter.check(
                RequestIdentity(network_address="10.0.0.1", subject_id=f"user-{i}", tier=Tier.STANDARD)
            )
            for i in range(4)
        ]

        assert [r.allowed for r in results] == [True, True, True, False]
        assert results[-1].violated.scope == Scope.ADDRESS

    def test_all_rules_evaluated_after_violation(self, db, clock, standard_user):
        """Every rule is incremented even when an earlier one is violated."""
        rules = [
            RateLimitRule(Scope.SUBJECT, Window.MINUTE, 0),
            RateLimitRule(Scope.ADDRESS, Window.MINUTE, 5),
        ]
        limiter = RateLimiter(db, clock=clock)

        decision = limiter.check(standard_user, rules=rules)

        assert not decision.allowed
        assert [r.count for r in decision.results] == [1, 1]

    def test_store_failure_fails_closed(self, standard_user, clock):
        """Store errors propagate instead of allowing the request."""
        from unittest.mock import MagicMock

        from shared.exceptions import StoreUnavailableError

        db = MagicMock()
        db.increment.side_effect = StoreUnavailableError("increment", "RATE#SUBJECT#user-1")
        limiter = RateLimiter(db, clock=clock)

        with pytest.raises(StoreUnavailableError):
            limiter.check(standard_user)
