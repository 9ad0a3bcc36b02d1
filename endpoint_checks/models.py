from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from endpoint_checks.config import EndpointSpec


class HealthStatus(str, Enum):
    UP = "up"
    DOWN = "down"


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    CONNECT = "connect"
    BODY = "body"
    OTHER = "other"
    # Response received, status rejected by the endpoint's rule.
    STATUS = "status"


@dataclass(frozen=True)
class Outcome:
    endpoint: str
    status: HealthStatus
    reason: str | None = None
    latency_ms: float | None = None
    attempts: int = 1
    last_http_status: int | None = None
    failure_kind: FailureKind | None = None

    @property
    def is_up(self) -> bool:
        return self.status is HealthStatus.UP

    @classmethod
    def up(cls, endpoint: str, *, latency_ms: float, http_status: int) -> Outcome:
        return cls(endpoint=endpoint, status=HealthStatus.UP, latency_ms=latency_ms, last_http_status=http_status)

    @classmethod
    def down(
        cls,
        endpoint: str,
        *,
        reason: str,
        kind: FailureKind,
        http_status: int | None = None,
    ) -> Outcome:
        return cls(
            endpoint=endpoint,
            status=HealthStatus.DOWN,
            reason=reason,
            last_http_status=http_status,
            failure_kind=kind,
        )


@dataclass(frozen=True)
class Summary:
    total: int = 0
    up: int = 0
    down: int = 0

    @classmethod
    def from_outcomes(cls, outcomes: Iterable[Outcome]) -> Summary:
        up = 0
        down = 0
        for outcome in outcomes:
            if outcome.is_up:
                up += 1
            else:
                down += 1
        return cls(total=up + down, up=up, down=down)

    def to_dict(self) -> dict[str, int]:
        return {"total": self.total, "up": self.up, "down": self.down}

    def to_json_line(self) -> str:
        # Stable machine-readable stdout contract.
        return json.dumps(self.to_dict(), separators=(",", ":"))


@dataclass(frozen=True)
class RunReport:
    """Everything one dispatcher run produced."""

    summary: Summary
    results: list[tuple[EndpointSpec, Outcome]] = field(default_factory=list)

    @property
    def outcomes(self) -> list[Outcome]:
        return [outcome for _, outcome in self.results]

    @property
    def outcomes_by_url(self) -> dict[str, Outcome]:
        """
        Outcomes keyed by the raw endpoint URL (not redacted). When several
        endpoints share a URL a down outcome wins over an up one.
        """
        by_url: dict[str, Outcome] = {}
        for endpoint, outcome in self.results:
            seen = by_url.get(endpoint.url)
            if seen is None or (seen.is_up and not outcome.is_up):
                by_url[endpoint.url] = outcome
        return by_url
