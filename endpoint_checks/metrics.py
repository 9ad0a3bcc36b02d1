"""
Prometheus collectors emitted by the prober.

Registration is idempotent so importing modules (or tests) more than once
never trips the default registry's duplicate check.
"""

from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import REGISTRY, Counter, Histogram


LATENCY_BUCKETS_MS = [5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1_000.0, 2_500.0, 5_000.0, 10_000.0]


def _get_or_create(metric_cls, name, documentation, **kwargs):
    try:
        return metric_cls(name, documentation, **kwargs)
    except ValueError:
        # Already registered; reuse it. Counters drop the _total suffix from _name.
        candidates = {name, name.removesuffix("_total")}
        for collector in REGISTRY._names_to_collectors.values():
            if getattr(collector, "_name", None) in candidates:
                return collector
        raise


@dataclass(frozen=True)
class ProbeMetrics:
    up_total: Counter
    down_total: Counter
    latency_ms: Histogram

    def record_up(self, latency_ms: float) -> None:
        self.up_total.inc()
        self.latency_ms.observe(latency_ms)

    def record_down(self) -> None:
        self.down_total.inc()


_DEFAULT: ProbeMetrics | None = None


def get_probe_metrics() -> ProbeMetrics:
    global _DEFAULT
    if _DEFAULT is None:
        _DEFAULT = ProbeMetrics(
            up_total=_get_or_create(Counter, "healthcheck_up_total", "Probe attempts that found the endpoint up"),
            down_total=_get_or_create(Counter, "healthcheck_down_total", "Probe attempts that found the endpoint down"),
            latency_ms=_get_or_create(
                Histogram,
                "healthcheck_latency_ms",
                "Round-trip latency of successful probes in milliseconds",
                buckets=LATENCY_BUCKETS_MS,
            ),
        )
    return _DEFAULT
