"""Concurrent HTTP endpoint healthchecking with retries and circuit breaking."""

from .breaker import BreakerRegistry, any_failure_policy, per_endpoint_policy
from .config import ConfigError, EndpointSpec, ExpectedStatus, RunConfig, load_config
from .dispatcher import dispatch, run_healthchecks
from .models import HealthStatus, Outcome, RunReport, Summary
from .probe import probe
from .retry import backoff_delay_ms, check_with_retries
from .watch import watch

__all__ = [
    "BreakerRegistry",
    "ConfigError",
    "EndpointSpec",
    "ExpectedStatus",
    "HealthStatus",
    "Outcome",
    "RunConfig",
    "RunReport",
    "Summary",
    "any_failure_policy",
    "backoff_delay_ms",
    "check_with_retries",
    "dispatch",
    "load_config",
    "per_endpoint_policy",
    "probe",
    "run_healthchecks",
    "watch",
]
