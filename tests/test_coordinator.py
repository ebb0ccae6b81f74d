"""Tests for the multi-scope coordinator.

Covers the priority fold, fail-open handling of store failures and
timeouts, concurrent fan-out, administrative reset and input validation.
"""

import asyncio
import logging

import pytest

from attempt_guard.adapters.counter_store import AbstractCounterStore, WindowCounts
from attempt_guard.adapters.counter_store.in_memory import InMemoryCounterStore
from attempt_guard.core.errors import (
    InvalidIdentifierError,
    StoreUnavailableError,
    UnknownUseCaseError,
)
from attempt_guard.core.policies import Scope, build_policy_table
from attempt_guard.services.coordinator import (
    RateLimitCoordinator,
    ScopeOutcome,
    Verdict,
    combine_outcomes,
)
from attempt_guard.services.sliding_window import LimitResult, SlidingWindowLimiter, bucket_key, window_bounds


def _allowed(remaining: int, *, limit: int = 10, reset_at: int = 1_000) -> LimitResult:
    return LimitResult(allowed=True, limit=limit, remaining=remaining, reset_at=reset_at, effective_count=1.0)


def _denied(*, limit: int = 10, reset_at: int = 1_000) -> LimitResult:
    return LimitResult(allowed=False, limit=limit, remaining=0, reset_at=reset_at, effective_count=limit + 1.0)


@pytest.fixture
def policies():
    return build_policy_table("ratelimit")


@pytest.fixture
def store(fake_time) -> InMemoryCounterStore:
    return InMemoryCounterStore(clock=fake_time.time)


@pytest.fixture
def coordinator(store, policies, fake_time) -> RateLimitCoordinator:
    return RateLimitCoordinator(SlidingWindowLimiter(store, clock=fake_time.time), policies)


class TestCombineOutcomes:
    """The fold is pure; no store involved."""

    def test_all_admitted_reports_min_remaining_and_address_limit(self):
        verdict = combine_outcomes(
            [
                ScopeOutcome(Scope.GLOBAL, _allowed(99, limit=100, reset_at=60)),
                ScopeOutcome(Scope.SOURCE_ADDRESS, _allowed(2, limit=3, reset_at=900)),
                ScopeOutcome(Scope.IDENTITY, _allowed(1, limit=5, reset_at=3600)),
            ]
        )

        assert verdict == Verdict(allowed=True, limit=3, remaining=1, reset_at=900)

    def test_global_denial_wins_over_all_others(self):
        verdict = combine_outcomes(
            [
                ScopeOutcome(Scope.IDENTITY, _denied(limit=5)),
                ScopeOutcome(Scope.SOURCE_ADDRESS, _denied(limit=3)),
                ScopeOutcome(Scope.GLOBAL, _denied(limit=100, reset_at=60)),
            ]
        )

        assert verdict.allowed is False
        assert verdict.scope is Scope.GLOBAL
        assert verdict.limit == 100
        assert verdict.reset_at == 60

    def test_address_denial_hides_identity_denial(self):
        verdict = combine_outcomes(
            [
                ScopeOutcome(Scope.GLOBAL, _allowed(50)),
                ScopeOutcome(Scope.SOURCE_ADDRESS, _denied(limit=3)),
                ScopeOutcome(Scope.IDENTITY, _denied(limit=5)),
            ]
        )

        assert verdict.scope is Scope.SOURCE_ADDRESS
        assert verdict.limit == 3
        assert verdict.remaining == 0

    def test_identity_denial_reported_when_alone(self):
        verdict = combine_outcomes(
            [
                ScopeOutcome(Scope.GLOBAL, _allowed(50)),
                ScopeOutcome(Scope.SOURCE_ADDRESS, _allowed(2)),
                ScopeOutcome(Scope.IDENTITY, _denied(limit=5)),
            ]
        )

        assert verdict.scope is Scope.IDENTITY

    def test_any_incomplete_scope_fails_open_even_with_denials(self):
        verdict = combine_outcomes(
            [
                ScopeOutcome(Scope.GLOBAL, _denied()),
                ScopeOutcome(Scope.SOURCE_ADDRESS, failure="timeout"),
                ScopeOutcome(Scope.IDENTITY, _allowed(1)),
            ]
        )

        assert verdict == Verdict.fail_open()
        assert verdict.scope is None
        assert verdict.degraded is True

    def test_falls_back_to_highest_priority_scope_without_address(self):
        verdict = combine_outcomes(
            [
                ScopeOutcome(Scope.IDENTITY, _allowed(4, limit=5, reset_at=3600)),
                ScopeOutcome(Scope.GLOBAL, _allowed(9, limit=100, reset_at=60)),
            ]
        )

        assert verdict.limit == 100
        assert verdict.reset_at == 60
        assert verdict.remaining == 4

    def test_empty_outcomes_rejected(self):
        with pytest.raises(ValueError):
            combine_outcomes([])


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_source_address_scenario(self, coordinator):
        verdicts = [
            await coordinator.evaluate("signup", source_address="9.9.9.9", identity=f"user{i}@example.com")
            for i in range(4)
        ]

        assert [v.allowed for v in verdicts[:3]] == [True, True, True]
        assert [v.remaining for v in verdicts[:3]] == [2, 1, 0]
        denied = verdicts[3]
        assert denied.allowed is False
        assert denied.scope is Scope.SOURCE_ADDRESS
        assert denied.limit == 3
        assert denied.remaining == 0

    @pytest.mark.asyncio
    async def test_identity_scenario(self, coordinator):
        verdicts = [
            await coordinator.evaluate("signup", source_address=f"10.0.0.{i}", identity="a@example.com")
            for i in range(6)
        ]

        assert all(v.allowed for v in verdicts[:5])
        assert verdicts[5].allowed is False
        assert verdicts[5].scope is Scope.IDENTITY

    @pytest.mark.asyncio
    async def test_identity_is_normalized_before_counting(self, coordinator):
        for spelling in ["A@Example.com", " a@example.com ", "a@EXAMPLE.COM", "a@example.com", "A@example.com"]:
            await coordinator.evaluate("signup", source_address=spelling.strip() + "-ip", identity=spelling)

        verdict = await coordinator.evaluate("signup", source_address="fresh-ip", identity="a@example.com")

        assert verdict.scope is Scope.IDENTITY

    @pytest.mark.asyncio
    async def test_global_saturation_denies_fresh_clients(self, coordinator, store, policies, fake_time):
        global_policy = policies["signup"][Scope.GLOBAL]
        bucket = window_bounds(fake_time.time(), global_policy.window_seconds).bucket
        for _ in range(100):
            await store.increment(
                bucket_key(global_policy, "global", bucket),
                window_seconds=global_policy.window_seconds,
            )

        verdict = await coordinator.evaluate("signup", source_address="1.2.3.4", identity="new@example.com")

        assert verdict.allowed is False
        assert verdict.scope is Scope.GLOBAL
        assert verdict.limit == 100

    @pytest.mark.asyncio
    async def test_every_scope_is_charged_even_when_one_denies(self, coordinator, store, policies, fake_time):
        for i in range(3):
            await coordinator.evaluate("signup", source_address="9.9.9.9", identity=f"u{i}@example.com")
        await coordinator.evaluate("signup", source_address="9.9.9.9", identity="victim@example.com")

        email_policy = policies["signup"][Scope.IDENTITY]
        bucket = window_bounds(fake_time.time(), email_policy.window_seconds).bucket
        counts = await store.increment(
            bucket_key(email_policy, "victim@example.com", bucket),
            window_seconds=email_policy.window_seconds,
        )
        assert counts.current == 2

    @pytest.mark.asyncio
    async def test_unavailable_store_fails_open(self, unavailable_store, policies, caplog):
        coordinator = RateLimitCoordinator(SlidingWindowLimiter(unavailable_store), policies)

        with caplog.at_level(logging.WARNING):
            verdicts = [
                await coordinator.evaluate("login", source_address="9.9.9.9", identity="a@example.com")
                for _ in range(20)
            ]

        assert all(v.allowed for v in verdicts)
        assert all(v.scope is None and v.degraded for v in verdicts)
        assert unavailable_store.calls == 60
        assert "rate_limit.degraded" in caplog.text

    @pytest.mark.asyncio
    async def test_slow_scope_times_out_and_fails_open(self, policies):
        class SlowAddressStore(InMemoryCounterStore):
            async def increment(self, key, *, window_seconds, previous_key=None):
                if ":ip:" in key:
                    await asyncio.sleep(5)
                return await super().increment(key, window_seconds=window_seconds, previous_key=previous_key)

        coordinator = RateLimitCoordinator(
            SlidingWindowLimiter(SlowAddressStore()),
            policies,
            check_timeout_seconds=0.05,
        )

        verdict = await coordinator.evaluate("signup", source_address="9.9.9.9", identity="a@example.com")

        assert verdict.allowed is True
        assert verdict.degraded is True
        assert verdict.scope is None

    @pytest.mark.asyncio
    async def test_scopes_run_concurrently(self, policies):
        class BarrierStore(AbstractCounterStore):
            """Blocks every increment until all three scopes have arrived."""

            def __init__(self) -> None:
                self.arrived = 0
                self.all_arrived = asyncio.Event()

            async def increment(self, key, *, window_seconds, previous_key=None):
                self.arrived += 1
                if self.arrived == 3:
                    self.all_arrived.set()
                await self.all_arrived.wait()
                return WindowCounts(current=1)

            async def delete(self, *keys):
                return 0

            async def ping(self):
                return True

        coordinator = RateLimitCoordinator(
            SlidingWindowLimiter(BarrierStore()),
            policies,
            check_timeout_seconds=1.0,
        )

        verdict = await coordinator.evaluate("signup", source_address="9.9.9.9", identity="a@example.com")

        assert verdict.degraded is False
        assert verdict.allowed is True

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_not_swallowed(self, policies):
        class BrokenStore(InMemoryCounterStore):
            async def increment(self, key, *, window_seconds, previous_key=None):
                raise RuntimeError("bug")

        coordinator = RateLimitCoordinator(SlidingWindowLimiter(BrokenStore()), policies)

        with pytest.raises(RuntimeError):
            await coordinator.evaluate("signup", source_address="9.9.9.9", identity="a@example.com")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "address, identity",
        [("", "a@example.com"), ("   ", "a@example.com"), ("9.9.9.9", ""), ("9.9.9.9", "  ")],
    )
    async def test_empty_identifiers_rejected(self, coordinator, store, address, identity):
        with pytest.raises(InvalidIdentifierError):
            await coordinator.evaluate("signup", source_address=address, identity=identity)
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_use_case_rejected(self, coordinator):
        with pytest.raises(UnknownUseCaseError):
            await coordinator.evaluate("checkout", source_address="9.9.9.9", identity="a@example.com")

    def test_timeout_must_be_positive(self, policies, store):
        with pytest.raises(ValueError):
            RateLimitCoordinator(SlidingWindowLimiter(store), policies, check_timeout_seconds=0)


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_then_check_matches_new_identifier(self, coordinator):
        for _ in range(4):
            await coordinator.evaluate("signup", source_address="9.9.9.9", identity="a@example.com")

        await coordinator.reset("signup", Scope.SOURCE_ADDRESS, "9.9.9.9")
        await coordinator.reset("signup", Scope.IDENTITY, "A@Example.com")

        after_reset = await coordinator.evaluate("signup", source_address="9.9.9.9", identity="a@example.com")

        assert after_reset.allowed is True
        assert after_reset.remaining == 2

    @pytest.mark.asyncio
    async def test_reset_global_without_identifier(self, coordinator):
        await coordinator.evaluate("login", source_address="9.9.9.9", identity="a@example.com")

        assert await coordinator.reset("login", Scope.GLOBAL, "") == 1

    @pytest.mark.asyncio
    async def test_reset_global_ignores_path_identifier(self, coordinator):
        await coordinator.evaluate("login", source_address="9.9.9.9", identity="a@example.com")

        assert await coordinator.reset("login", Scope.GLOBAL, "anything") == 1
        assert await coordinator.reset("login", Scope.GLOBAL, "anything") == 0

    @pytest.mark.asyncio
    async def test_reset_propagates_store_failure(self, unavailable_store, policies):
        coordinator = RateLimitCoordinator(SlidingWindowLimiter(unavailable_store), policies)

        with pytest.raises(StoreUnavailableError):
            await coordinator.reset("signup", Scope.IDENTITY, "a@example.com")

    @pytest.mark.asyncio
    async def test_reset_unconfigured_scope_rejected(self, store, fake_time):
        policies = build_policy_table(limits={"signup": {Scope.IDENTITY: (5, 3600)}})
        coordinator = RateLimitCoordinator(SlidingWindowLimiter(store, clock=fake_time.time), policies)

        with pytest.raises(UnknownUseCaseError):
            await coordinator.reset("signup", Scope.SOURCE_ADDRESS, "9.9.9.9")


def test_describe_lists_scopes_in_priority_order(coordinator):
    described = coordinator.describe("signup")

    assert list(described) == [Scope.GLOBAL, Scope.SOURCE_ADDRESS, Scope.IDENTITY]
    assert described[Scope.SOURCE_ADDRESS].limit == 3
    assert described[Scope.SOURCE_ADDRESS].window_seconds == 900
