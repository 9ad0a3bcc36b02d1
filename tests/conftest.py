from __future__ import annotations

import asyncio
import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from prometheus_client import CollectorRegistry, Counter, Histogram

from endpoint_checks.metrics import LATENCY_BUCKETS_MS, ProbeMetrics


class _Handler(BaseHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002
        return

    def _send(self, status: int, body: bytes, *, with_body: bool, headers: dict[str, str] | None = None) -> None:
        try:
            self.send_response(status)
            for k, v in (headers or {}).items():
                self.send_header(k, v)
            self.send_header("Content-Type", "text/plain; charset=utf-8")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            if with_body:
                self.wfile.write(body)
        except (BrokenPipeError, ConnectionResetError):
            # Client gave up (timeout tests).
            return

    def _route(self, with_body: bool) -> None:
        parts = urlsplit(self.path)
        query = parse_qs(parts.query)
        path = parts.path

        if path == "/slow":
            delay_ms = float((query.get("ms") or ["1000"])[0])
            time.sleep(delay_ms / 1000.0)
            self._send(200, b"slow ok", with_body=with_body)
            return
        if path == "/redirect":
            self._send(302, b"", with_body=with_body, headers={"Location": "/ok"})
            return
        if path == "/needs-header":
            status = 200 if self.headers.get("X-Probe") == "yes" else 403
            self._send(status, b"header check", with_body=with_body)
            return
        if path == "/user-agent":
            status = 200 if (self.headers.get("User-Agent") or "").startswith("endpoint-healthcheck/") else 400
            self._send(status, b"ua check", with_body=with_body)
            return

        routes = {
            "/ok": 200,
            "/created": 201,
            "/err": 500,
            "/bad-gateway": 502,
            "/not-found": 404,
        }
        self._send(routes.get(path, 404), b"body", with_body=with_body)

    def do_GET(self) -> None:  # noqa: N802
        self._route(with_body=True)

    def do_HEAD(self) -> None:  # noqa: N802
        self._route(with_body=False)


@pytest.fixture(scope="session")
def local_server_base_url() -> str:
    httpd = ThreadingHTTPServer(("127.0.0.1", 0), _Handler)
    httpd.daemon_threads = True
    host, port = httpd.server_address
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()

    try:
        yield f"http://{host}:{port}"
    finally:
        httpd.shutdown()
        thread.join(timeout=5)
        httpd.server_close()


@pytest.fixture
def closed_port_url() -> str:
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return f"http://127.0.0.1:{port}/health"


@pytest.fixture
def probe_metrics() -> tuple[CollectorRegistry, ProbeMetrics]:
    registry = CollectorRegistry()
    metrics = ProbeMetrics(
        up_total=Counter("healthcheck_up_total", "up", registry=registry),
        down_total=Counter("healthcheck_down_total", "down", registry=registry),
        latency_ms=Histogram("healthcheck_latency_ms", "latency", buckets=LATENCY_BUCKETS_MS, registry=registry),
    )
    return registry, metrics


class ScriptedTransport:
    """
    httpx.MockTransport handler that answers from a per-URL script and
    records every request. The last script entry repeats forever.
    """

    def __init__(self, scripts: dict[str, list[object]], *, delay_seconds: float = 0.0):
        self.scripts = scripts
        self.delay_seconds = delay_seconds
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def calls_for(self, url: str) -> int:
        return sum(1 for u in self.calls if u == url)

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            script = self.scripts[url]
            idx = min(self.calls_for(url) - 1, len(script) - 1)
            step = script[idx]
        finally:
            self.in_flight -= 1
        if isinstance(step, Exception):
            raise step
        return httpx.Response(int(step), request=request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def scripted_transport() -> type[ScriptedTransport]:
    return ScriptedTransport
