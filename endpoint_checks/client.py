from __future__ import annotations

import ssl

import httpx

from endpoint_checks.config import RunConfig


class ClientSetupError(Exception):
    """The shared HTTP client (or its TLS trust store) could not be built."""


def _build_verify(cfg: RunConfig) -> ssl.SSLContext | bool:
    if cfg.danger_accept_invalid_certs:
        return False
    ctx = ssl.create_default_context()
    if cfg.ca_bundle_path:
        try:
            ctx.load_verify_locations(cafile=cfg.ca_bundle_path)
        except FileNotFoundError as e:
            raise ClientSetupError(f"failed to read ca bundle at {cfg.ca_bundle_path}: {e}") from e
        except (ssl.SSLError, OSError) as e:
            raise ClientSetupError(f"invalid PEM for CA bundle {cfg.ca_bundle_path}: {e}") from e
    return ctx


def build_client(cfg: RunConfig, *, transport: httpx.AsyncBaseTransport | None = None) -> httpx.AsyncClient:
    """
    One client per process/loop; shared by every concurrent probe.
    Per-request timeouts override the client default.
    """
    verify = _build_verify(cfg)
    try:
        return httpx.AsyncClient(
            headers={"User-Agent": cfg.user_agent},
            timeout=cfg.request_timeout_ms / 1000.0,
            verify=verify,
            follow_redirects=True,
            limits=httpx.Limits(max_connections=cfg.concurrency, max_keepalive_connections=cfg.concurrency),
            transport=transport,
        )
    except Exception as e:
        raise ClientSetupError(f"failed to build http client: {type(e).__name__}: {e}") from e
