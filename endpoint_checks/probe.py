from __future__ import annotations

import time
from urllib.parse import urlsplit, urlunsplit

import httpx
import structlog

from endpoint_checks.config import EndpointSpec
from endpoint_checks.metrics import ProbeMetrics, get_probe_metrics
from endpoint_checks.models import FailureKind, Outcome


logger = structlog.get_logger(__name__)


def redact_url(url: str) -> str:
    """
    Strip query string and fragment so tokens passed as parameters
    never reach logs, metrics or stdout.
    """
    s = (url or "").strip()
    if not s:
        return s
    parts = urlsplit(s)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))


def classify_error(exc: Exception) -> FailureKind:
    if isinstance(exc, httpx.TimeoutException):
        return FailureKind.TIMEOUT
    if isinstance(exc, httpx.ConnectError):
        return FailureKind.CONNECT
    if isinstance(exc, (httpx.ReadError, httpx.RemoteProtocolError, httpx.DecodingError)):
        return FailureKind.BODY
    return FailureKind.OTHER


def effective_timeout_ms(endpoint: EndpointSpec, default_timeout_ms: int) -> int:
    if endpoint.timeout_ms is not None:
        return endpoint.timeout_ms
    return default_timeout_ms


async def probe(
    client: httpx.AsyncClient,
    endpoint: EndpointSpec,
    default_timeout_ms: int,
    *,
    metrics: ProbeMetrics | None = None,
) -> Outcome:
    """Single attempt against one endpoint. Never raises for network/HTTP failures."""
    metrics = metrics or get_probe_metrics()
    redacted = redact_url(endpoint.url)
    timeout_s = effective_timeout_ms(endpoint, default_timeout_ms) / 1000.0

    started = time.perf_counter()
    try:
        resp = await client.request(
            endpoint.method,
            endpoint.url,
            headers=endpoint.headers,
            timeout=timeout_s,
        )
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        kind = classify_error(e)
        reason = str(e) or type(e).__name__
        logger.debug("probe transport failure", endpoint=redacted, kind=kind.value, error=type(e).__name__)
        metrics.record_down()
        return Outcome.down(redacted, reason=reason, kind=kind)
    except Exception as e:
        # Request construction errors, e.g. header encoding.
        logger.warning("probe request could not be sent", endpoint=redacted, error=type(e).__name__)
        metrics.record_down()
        return Outcome.down(redacted, reason=f"{type(e).__name__}: {e}", kind=FailureKind.OTHER)

    elapsed_ms = (time.perf_counter() - started) * 1000.0
    code = resp.status_code
    if endpoint.status_ok(code):
        latency_ms = round(elapsed_ms, 3)
        metrics.record_up(latency_ms)
        return Outcome.up(redacted, latency_ms=latency_ms, http_status=code)

    metrics.record_down()
    return Outcome.down(redacted, reason=f"HTTP {code}", kind=FailureKind.STATUS, http_status=code)
