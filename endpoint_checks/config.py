"""Configuration loading for the endpoint healthchecker."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Literal, Optional
from urllib.parse import urlsplit

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


DEFAULT_USER_AGENT = "endpoint-healthcheck/1.0"
DEFAULT_CONFIG_PATH = "./config/config.json"

_ALLOWED_METHODS = ("GET", "HEAD")


class ConfigError(Exception):
    """Raised when the config file cannot be read, parsed or validated."""


def _check_url(value: str) -> str:
    s = (value or "").strip()
    parts = urlsplit(s)
    if parts.scheme.lower() not in ("http", "https") or not parts.hostname:
        raise ValueError(f"not an http(s) URL: {value!r}")
    return s


class ExpectedStatus(BaseModel):
    """Inclusive acceptance range for response status codes."""

    model_config = ConfigDict(frozen=True)

    min: Optional[int] = Field(default=None, ge=100, le=599, description="Lowest accepted status code")
    max: Optional[int] = Field(default=None, ge=100, le=599, description="Highest accepted status code")

    def accepts(self, code: int) -> bool:
        if self.min is not None and code < self.min:
            return False
        if self.max is not None and code > self.max:
            return False
        return True


class EndpointSpec(BaseModel):
    """One target to probe. Overrides fall back to run defaults at the point of use."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="HTTP/HTTPS URL to check")
    method: str = Field(default="GET", description="GET or HEAD")
    timeout_ms: Optional[int] = Field(default=None, gt=0, description="Per-endpoint timeout override")
    retries: Optional[int] = Field(default=None, ge=0, description="Per-endpoint retry count override")
    expected_status: Optional[ExpectedStatus] = Field(default=None, description="Accepted status range (default 2xx)")
    headers: Optional[dict[str, str]] = Field(default=None, description="Extra request headers")

    @field_validator("url")
    @classmethod
    def _validate_url(cls, value: str) -> str:
        return _check_url(value)

    @field_validator("method")
    @classmethod
    def _validate_method(cls, value: str) -> str:
        method = str(value or "").strip().upper()
        if method not in _ALLOWED_METHODS:
            raise ValueError(f"unsupported method {value!r} (expected one of {', '.join(_ALLOWED_METHODS)})")
        return method

    @field_validator("headers")
    @classmethod
    def _validate_headers(cls, value: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        if value is None:
            return value
        for name, header_value in value.items():
            # httpx encodes header names and values as ASCII on send.
            if not name.isascii() or not header_value.isascii():
                raise ValueError(f"header {name!r} must be ASCII")
            if any(ch in name + header_value for ch in "\r\n"):
                raise ValueError(f"header {name!r} must not contain line breaks")
        return value

    def status_ok(self, code: int) -> bool:
        if self.expected_status is not None:
            return self.expected_status.accepts(code)
        return 200 <= code < 300


class RunConfig(BaseModel):
    """Process-wide settings for one run (or one watch loop)."""

    model_config = ConfigDict(frozen=True)

    # Targets
    endpoints_to_check: list[str] = Field(default_factory=list, description="HTTP/HTTPS endpoints to check")
    endpoints: Optional[list[EndpointSpec]] = Field(
        default=None,
        description="Advanced endpoint configs (replace endpoints_to_check when provided)",
    )

    # Checking
    request_timeout_ms: int = Field(default=5_000, gt=0, description="Request timeout in milliseconds")
    concurrency: int = Field(default=8, ge=1, description="Maximum number of concurrent checks")
    retries: int = Field(default=0, ge=0, description="Retries per endpoint (0 = no retry)")
    base_backoff_ms: int = Field(default=200, ge=0, description="Base backoff for retries in milliseconds")
    max_backoff_ms: int = Field(default=5_000, ge=0, description="Max backoff for retries in milliseconds")
    user_agent: str = Field(default=DEFAULT_USER_AGENT, description="User-Agent header for outbound requests")

    # Output
    log_level: Optional[str] = Field(default=None, description="Log level; falls back to LOG_LEVEL, then INFO")
    json_logging: bool = Field(default=False, description="Render log lines as JSON")
    summary_json: bool = Field(default=False, description="Print each run summary as a JSON line on stdout")

    # Watch mode
    watch_interval_sec: Optional[float] = Field(default=None, gt=0, description="Run repeatedly with this interval")
    metrics_log_interval_sec: Optional[float] = Field(
        default=None, gt=0, description="Periodically log the last summary (watch mode)"
    )
    cb_failures_threshold: int = Field(default=3, ge=1, description="Failures before the circuit breaker opens")
    cb_cooldown_sec: float = Field(default=60, ge=0, description="Seconds an open breaker skips its endpoint")
    cb_policy: Literal["any_failure", "per_endpoint"] = Field(
        default="any_failure", description="How run outcomes update breaker state"
    )

    # TLS
    danger_accept_invalid_certs: bool = Field(default=False, description="Skip TLS certificate verification")
    ca_bundle_path: Optional[str] = Field(default=None, description="PEM CA bundle to trust in addition to defaults")

    @field_validator("endpoints_to_check")
    @classmethod
    def _validate_plain_urls(cls, value: list[str]) -> list[str]:
        return [_check_url(u) for u in value]

    def resolved_endpoints(self) -> list[EndpointSpec]:
        if self.endpoints is not None:
            return list(self.endpoints)
        return [EndpointSpec(url=u) for u in self.endpoints_to_check]

    def with_endpoints(self, endpoints: list[EndpointSpec]) -> RunConfig:
        return self.model_copy(update={"endpoints": list(endpoints)})


_ENV_INT_OVERRIDES = {
    "CONCURRENCY": "concurrency",
    "REQUEST_TIMEOUT_MS": "request_timeout_ms",
    "RETRIES": "retries",
}


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None:
        return None
    try:
        return int(str(raw).strip())
    except Exception:
        return None


def apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    out = dict(data)
    for env_name, key in _ENV_INT_OVERRIDES.items():
        value = _env_int(env_name)
        if value is not None:
            out[key] = value
    return out


def _parse_config_bytes(raw: bytes, path: Path) -> Any:
    ext = path.suffix.lower().lstrip(".") or "json"
    if ext in ("yaml", "yml"):
        try:
            return yaml.safe_load(raw)
        except yaml.YAMLError as e:
            raise ConfigError(f"failed to parse YAML config {path}: {e}") from e
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ConfigError(f"failed to parse JSON config {path}: {e}") from e


def load_config(path: str | Path, *, env_overrides: bool = True) -> RunConfig:
    """Load a JSON or YAML (by extension) config file into a RunConfig."""
    p = Path(path)
    try:
        raw = p.read_bytes()
    except OSError as e:
        raise ConfigError(f"failed to read config file {p}: {e}") from e

    data = _parse_config_bytes(raw, p)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"config {p} must be a mapping")

    if env_overrides:
        data = apply_env_overrides(data)

    try:
        return RunConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid config {p}: {e}") from e


def resolve_config_path(cli_value: str | None) -> Path:
    if cli_value:
        return Path(cli_value)
    return Path(os.getenv("CONFIG_PATH") or DEFAULT_CONFIG_PATH)


def config_json_schema() -> dict[str, Any]:
    return RunConfig.model_json_schema()
