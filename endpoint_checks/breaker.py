"""
Per-endpoint circuit breaker state for watch mode.

The registry is owned by the watch loop and only touched between
iterations, so it carries no locking. Policies decide how one run's
outcomes move the counters; the registry itself only knows how to count,
open and reset.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Iterable, Mapping

import structlog

from endpoint_checks.config import EndpointSpec, RunConfig
from endpoint_checks.models import Outcome
from endpoint_checks.probe import redact_url


logger = structlog.get_logger(__name__)


@dataclass
class BreakerState:
    failures: int = 0
    open_until: float | None = None


class BreakerRegistry:
    def __init__(
        self,
        threshold: int,
        cooldown_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.threshold = max(1, int(threshold))
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self._clock = clock
        self._states: dict[str, BreakerState] = {}

    @classmethod
    def from_config(cls, config: RunConfig, *, clock: Callable[[], float] = time.monotonic) -> BreakerRegistry:
        return cls(config.cb_failures_threshold, config.cb_cooldown_sec, clock=clock)

    def __contains__(self, url: object) -> bool:
        return url in self._states

    def __len__(self) -> int:
        return len(self._states)

    def get(self, url: str) -> BreakerState | None:
        return self._states.get(url)

    def is_open(self, url: str) -> bool:
        state = self._states.get(url)
        if state is None or state.open_until is None:
            return False
        if self._clock() >= state.open_until:
            # Cooldown over: closed again. The count stays, so one more
            # failure re-opens with a fresh deadline.
            state.open_until = None
            return False
        return state.failures >= self.threshold

    def record_failure(self, url: str) -> BreakerState:
        state = self._states.setdefault(url, BreakerState())
        state.failures += 1
        if state.failures >= self.threshold:
            state.open_until = self._clock() + self.cooldown_seconds
        return state

    def reset(self, url: str) -> None:
        self._states.pop(url, None)

    def filter_endpoints(self, endpoints: Iterable[EndpointSpec]) -> list[EndpointSpec]:
        kept: list[EndpointSpec] = []
        for endpoint in endpoints:
            if self.is_open(endpoint.url):
                logger.warning("circuit open; skipping this iteration", endpoint=redact_url(endpoint.url))
                continue
            kept.append(endpoint)
        return kept


BreakerPolicy = Callable[[BreakerRegistry, Mapping[str, Outcome]], None]


def any_failure_policy(registry: BreakerRegistry, outcomes_by_url: Mapping[str, Outcome]) -> None:
    """
    Coarse rule: one down endpoint counts a failure against every endpoint
    checked in the batch; a fully healthy batch resets all of them.
    """
    any_down = any(not outcome.is_up for outcome in outcomes_by_url.values())
    for url in outcomes_by_url:
        if any_down:
            registry.record_failure(url)
        else:
            registry.reset(url)


def per_endpoint_policy(registry: BreakerRegistry, outcomes_by_url: Mapping[str, Outcome]) -> None:
    for url, outcome in outcomes_by_url.items():
        if outcome.is_up:
            registry.reset(url)
        else:
            registry.record_failure(url)


POLICIES: dict[str, BreakerPolicy] = {
    "any_failure": any_failure_policy,
    "per_endpoint": per_endpoint_policy,
}


def policy_for(config: RunConfig) -> BreakerPolicy:
    return POLICIES[config.cb_policy]
