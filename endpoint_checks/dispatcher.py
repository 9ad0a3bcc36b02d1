from __future__ import annotations

import asyncio
import random

import httpx
import structlog

from endpoint_checks.client import build_client
from endpoint_checks.config import EndpointSpec, RunConfig
from endpoint_checks.metrics import ProbeMetrics
from endpoint_checks.models import Outcome, RunReport, Summary
from endpoint_checks.probe import redact_url
from endpoint_checks.retry import check_with_retries


logger = structlog.get_logger(__name__)


def _log_outcome(outcome: Outcome) -> None:
    if outcome.is_up:
        logger.info(
            "endpoint up",
            endpoint=outcome.endpoint,
            latency_ms=outcome.latency_ms,
            attempts=outcome.attempts,
            http_status=outcome.last_http_status,
        )
    else:
        logger.error(
            "endpoint down",
            endpoint=outcome.endpoint,
            attempts=outcome.attempts,
            reason=outcome.reason,
            http_status=outcome.last_http_status,
        )


async def dispatch(
    config: RunConfig,
    client: httpx.AsyncClient,
    *,
    metrics: ProbeMetrics | None = None,
    rng: random.Random | None = None,
) -> RunReport:
    """
    Check every resolved endpoint of `config` concurrently, at most
    `config.concurrency` attempts in flight, and aggregate the outcomes.
    """
    endpoints = config.resolved_endpoints()
    if not endpoints:
        logger.warning("no endpoints configured")
        return RunReport(summary=Summary())

    gate = asyncio.Semaphore(config.concurrency)
    logger.info(
        "starting healthchecks",
        total=len(endpoints),
        concurrency=config.concurrency,
        timeout_ms=config.request_timeout_ms,
        retries=config.retries,
    )

    async def _check(endpoint: EndpointSpec) -> tuple[EndpointSpec, Outcome]:
        logger.debug("checking endpoint", endpoint=redact_url(endpoint.url), method=endpoint.method)
        retries = endpoint.retries if endpoint.retries is not None else config.retries
        outcome = await check_with_retries(
            client,
            endpoint,
            max_retries=retries,
            default_timeout_ms=config.request_timeout_ms,
            backoff_base_ms=config.base_backoff_ms,
            backoff_max_ms=config.max_backoff_ms,
            gate=gate,
            metrics=metrics,
            rng=rng,
        )
        _log_outcome(outcome)
        return endpoint, outcome

    results = list(await asyncio.gather(*(_check(ep) for ep in endpoints)))
    summary = Summary.from_outcomes(outcome for _, outcome in results)
    logger.info("healthcheck summary", total=summary.total, up=summary.up, down=summary.down)
    return RunReport(summary=summary, results=results)


async def run_healthchecks(config: RunConfig, *, client: httpx.AsyncClient | None = None) -> Summary:
    """One-shot run. Builds (and closes) a client unless one is supplied."""
    if not config.resolved_endpoints():
        logger.warning("no endpoints configured")
        return Summary()
    if client is not None:
        report = await dispatch(config, client)
        return report.summary
    async with build_client(config) as own_client:
        report = await dispatch(config, own_client)
    return report.summary
