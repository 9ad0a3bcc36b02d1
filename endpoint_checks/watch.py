from __future__ import annotations

import asyncio
import random

import httpx
import structlog

from endpoint_checks.breaker import BreakerPolicy, BreakerRegistry, policy_for
from endpoint_checks.client import build_client
from endpoint_checks.config import RunConfig
from endpoint_checks.dispatcher import dispatch
from endpoint_checks.metrics import ProbeMetrics
from endpoint_checks.models import RunReport, Summary


logger = structlog.get_logger(__name__)


class PeriodicTicker:
    """
    Fixed-period timer with "delay" behaviour: a tick that fires late by a
    full period or more re-anchors the schedule instead of bursting to catch up.
    """

    def __init__(self, period_seconds: float):
        self.period = float(period_seconds)
        self._next = asyncio.get_running_loop().time() + self.period

    async def tick(self) -> None:
        loop = asyncio.get_running_loop()
        delay = self._next - loop.time()
        if delay > 0:
            await asyncio.sleep(delay)
        now = loop.time()
        if now - self._next >= self.period:
            self._next = now + self.period
        else:
            self._next += self.period


async def _wait_for_next_iteration(
    interval_seconds: float,
    ticker: PeriodicTicker | None,
    last_summary: Summary,
) -> None:
    if ticker is None:
        await asyncio.sleep(interval_seconds)
        return

    iteration_timer = asyncio.ensure_future(asyncio.sleep(interval_seconds))
    metrics_tick: asyncio.Future | None = None
    try:
        while True:
            metrics_tick = asyncio.ensure_future(ticker.tick())
            done, _ = await asyncio.wait({iteration_timer, metrics_tick}, return_when=asyncio.FIRST_COMPLETED)
            if metrics_tick in done:
                logger.info(
                    "periodic summary",
                    total=last_summary.total,
                    up=last_summary.up,
                    down=last_summary.down,
                )
            if iteration_timer in done:
                return
    finally:
        iteration_timer.cancel()
        if metrics_tick is not None and not metrics_tick.done():
            metrics_tick.cancel()


async def _watch_loop(
    config: RunConfig,
    client: httpx.AsyncClient,
    registry: BreakerRegistry,
    policy: BreakerPolicy,
    *,
    max_iterations: int | None,
    metrics: ProbeMetrics | None,
    rng: random.Random | None,
) -> None:
    interval = float(config.watch_interval_sec or 0)
    ticker = PeriodicTicker(config.metrics_log_interval_sec) if config.metrics_log_interval_sec else None
    endpoints = config.resolved_endpoints()
    last_summary = Summary()
    iteration = 0

    while True:
        iteration += 1
        logger.debug("watch iteration", iteration=iteration)

        eligible = registry.filter_endpoints(endpoints)
        if endpoints and not eligible:
            logger.warning("all endpoints skipped by open circuits", skipped=len(endpoints))
            report = RunReport(summary=Summary())
        else:
            report = await dispatch(config.with_endpoints(eligible), client, metrics=metrics, rng=rng)
        last_summary = report.summary
        if config.summary_json:
            print(last_summary.to_json_line(), flush=True)

        policy(registry, report.outcomes_by_url)

        if max_iterations is not None and iteration >= max_iterations:
            return
        await _wait_for_next_iteration(interval, ticker, last_summary)


async def watch(
    config: RunConfig,
    *,
    client: httpx.AsyncClient | None = None,
    registry: BreakerRegistry | None = None,
    policy: BreakerPolicy | None = None,
    max_iterations: int | None = None,
    metrics: ProbeMetrics | None = None,
    rng: random.Random | None = None,
) -> None:
    """
    Repeat dispatcher runs every `watch_interval_sec` until cancelled.

    Iterations never overlap. Endpoints whose breaker is open are left out
    of the batch; breaker state is updated from each batch's outcomes.
    Returns immediately when no watch interval is configured.
    """
    if not config.watch_interval_sec:
        return
    if registry is None:
        registry = BreakerRegistry.from_config(config)
    if policy is None:
        policy = policy_for(config)

    logger.info(
        "starting watch loop",
        interval_sec=config.watch_interval_sec,
        metrics_log_interval_sec=config.metrics_log_interval_sec,
        cb_failures_threshold=registry.threshold,
        cb_cooldown_sec=registry.cooldown_seconds,
    )
    if client is not None:
        await _watch_loop(
            config, client, registry, policy, max_iterations=max_iterations, metrics=metrics, rng=rng
        )
        return
    async with build_client(config) as own_client:
        await _watch_loop(
            config, own_client, registry, policy, max_iterations=max_iterations, metrics=metrics, rng=rng
        )
