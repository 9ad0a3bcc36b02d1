from __future__ import annotations

import asyncio
import random
from dataclasses import replace

import httpx
import structlog

from endpoint_checks.config import EndpointSpec
from endpoint_checks.metrics import ProbeMetrics
from endpoint_checks.models import Outcome
from endpoint_checks.probe import probe, redact_url


logger = structlog.get_logger(__name__)

# 2**30 * any sane base already exceeds every realistic cap.
_MAX_BACKOFF_EXPONENT = 30


def backoff_delay_ms(
    retry_number: int,
    *,
    base_ms: float,
    max_ms: float,
    rng: random.Random | None = None,
) -> float:
    """
    Delay before the n-th retry (n starts at 1):
    min(base * 2**(n-1), max) plus uniform jitter in [0, delay/2].
    """
    exponent = min(max(retry_number - 1, 0), _MAX_BACKOFF_EXPONENT)
    delay = min(base_ms * (2**exponent), max_ms)
    jitter = (rng or random).uniform(0.0, delay / 2.0)
    return delay + jitter


async def _attempt(
    client: httpx.AsyncClient,
    endpoint: EndpointSpec,
    default_timeout_ms: int,
    gate: asyncio.Semaphore | None,
    metrics: ProbeMetrics | None,
) -> Outcome:
    if gate is None:
        return await probe(client, endpoint, default_timeout_ms, metrics=metrics)
    async with gate:
        return await probe(client, endpoint, default_timeout_ms, metrics=metrics)


async def check_with_retries(
    client: httpx.AsyncClient,
    endpoint: EndpointSpec,
    *,
    max_retries: int,
    default_timeout_ms: int,
    backoff_base_ms: float,
    backoff_max_ms: float,
    gate: asyncio.Semaphore | None = None,
    metrics: ProbeMetrics | None = None,
    rng: random.Random | None = None,
) -> Outcome:
    """
    Probe until the first Up or until max_retries extra attempts have failed.

    Each attempt holds one gate slot only while the request is in flight;
    backoff sleeps happen outside the gate so a retrying endpoint does not
    starve its siblings.
    """
    outcome = await _attempt(client, endpoint, default_timeout_ms, gate, metrics)
    attempts = 1
    while not outcome.is_up and attempts <= max_retries:
        retry_number = attempts
        logger.warning("retrying failed endpoint", endpoint=redact_url(endpoint.url), attempt=retry_number)
        delay_ms = backoff_delay_ms(retry_number, base_ms=backoff_base_ms, max_ms=backoff_max_ms, rng=rng)
        await asyncio.sleep(delay_ms / 1000.0)
        outcome = await _attempt(client, endpoint, default_timeout_ms, gate, metrics)
        attempts += 1
    return replace(outcome, attempts=attempts)
