from __future__ import annotations

from structlog.testing import capture_logs

from endpoint_checks.breaker import (
    BreakerRegistry,
    any_failure_policy,
    per_endpoint_policy,
    policy_for,
)
from endpoint_checks.config import EndpointSpec, RunConfig
from endpoint_checks.models import FailureKind, Outcome, RunReport, Summary


A = "https://a.example.com/health"
B = "https://b.example.com/health?token=secret"


class FakeClock:
    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _up(url: str) -> Outcome:
    return Outcome.up(url, latency_ms=1.0, http_status=200)


def _down(url: str) -> Outcome:
    return Outcome.down(url, reason="HTTP 500", kind=FailureKind.STATUS, http_status=500)


def test_opens_exactly_at_threshold() -> None:
    clock = FakeClock()
    reg = BreakerRegistry(3, 60, clock=clock)
    reg.record_failure(A)
    reg.record_failure(A)
    assert not reg.is_open(A)
    state = reg.record_failure(A)
    assert state.failures == 3
    assert state.open_until == clock.now + 60
    assert reg.is_open(A)


def test_closes_lazily_after_cooldown_and_reopens_on_next_failure() -> None:
    clock = FakeClock()
    reg = BreakerRegistry(2, 30, clock=clock)
    reg.record_failure(A)
    reg.record_failure(A)
    assert reg.is_open(A)

    clock.now += 29.9
    assert reg.is_open(A)

    clock.now += 0.2
    assert not reg.is_open(A)
    assert reg.get(A).open_until is None

    reg.record_failure(A)
    assert reg.is_open(A)
    assert reg.get(A).open_until == clock.now + 30


def test_reset_removes_entry() -> None:
    reg = BreakerRegistry(1, 60, clock=FakeClock())
    reg.record_failure(A)
    assert A in reg
    reg.reset(A)
    assert A not in reg
    assert len(reg) == 0
    reg.reset(A)


def test_filter_endpoints_skips_open_and_logs_redacted() -> None:
    reg = BreakerRegistry(1, 60, clock=FakeClock())
    reg.record_failure(B)
    endpoints = [EndpointSpec(url=A), EndpointSpec(url=B)]
    with capture_logs() as logs:
        kept = reg.filter_endpoints(endpoints)
    assert [e.url for e in kept] == [A]
    skipped = [e for e in logs if e["event"] == "circuit open; skipping this iteration"]
    assert len(skipped) == 1
    assert skipped[0]["log_level"] == "warning"
    assert skipped[0]["endpoint"] == "https://b.example.com/health"


def test_any_failure_policy_penalizes_whole_batch() -> None:
    reg = BreakerRegistry(3, 60, clock=FakeClock())
    any_failure_policy(reg, {A: _up(A), B: _down(B)})
    assert reg.get(A).failures == 1
    assert reg.get(B).failures == 1

    any_failure_policy(reg, {A: _up(A), B: _up(B)})
    assert len(reg) == 0


def test_any_failure_policy_leaves_unprobed_endpoints_alone() -> None:
    clock = FakeClock()
    reg = BreakerRegistry(1, 60, clock=clock)
    reg.record_failure(B)
    any_failure_policy(reg, {A: _up(A)})
    assert reg.is_open(B)
    any_failure_policy(reg, {})
    assert reg.is_open(B)


def test_per_endpoint_policy_only_counts_real_failures() -> None:
    reg = BreakerRegistry(2, 60, clock=FakeClock())
    per_endpoint_policy(reg, {A: _up(A), B: _down(B)})
    per_endpoint_policy(reg, {A: _up(A), B: _down(B)})
    assert A not in reg
    assert reg.is_open(B)


def test_policy_for_config() -> None:
    assert policy_for(RunConfig()) is any_failure_policy
    assert policy_for(RunConfig(cb_policy="per_endpoint")) is per_endpoint_policy


def test_from_config() -> None:
    reg = BreakerRegistry.from_config(RunConfig(cb_failures_threshold=5, cb_cooldown_sec=12))
    assert reg.threshold == 5
    assert reg.cooldown_seconds == 12.0


def test_shared_url_failure_is_not_masked_by_healthy_twin() -> None:
    report = RunReport(
        summary=Summary(total=2, up=1, down=1),
        results=[
            (EndpointSpec(url=A), _down(A)),
            (EndpointSpec(url=A, method="HEAD"), _up(A)),
        ],
    )
    assert not report.outcomes_by_url[A].is_up

    reg = BreakerRegistry(1, 60, clock=FakeClock())
    per_endpoint_policy(reg, report.outcomes_by_url)
    assert reg.is_open(A)

    reg = BreakerRegistry(1, 60, clock=FakeClock())
    any_failure_policy(reg, report.outcomes_by_url)
    assert reg.is_open(A)
