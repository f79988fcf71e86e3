"""
HTTP client for the URL-shortening service under test.

* One :class:`httpx.Client` is shared by every worker (its connection pool is
  thread-safe).
* Every request has an overall deadline of ``timeout`` seconds. httpx only
  bounds each connect, write and read step, so the body is streamed and the
  deadline checked per chunk; a server trickling bytes cannot hold a worker
  past it. Time spent before the first body byte is bounded per step.
* Each request is timed with :func:`time.perf_counter` and recorded in the
  built-in metrics ``http_reqs``, ``http_req_duration`` (ms) and
  ``http_req_failed``.
* Transport errors and timeouts never escape: they come back as an
  :class:`Exchange` with ``response=None`` and the error text.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from slo_engine.errors import DecodeError
from slo_engine.metrics import MetricSink
from slo_engine.model import TargetOptions


@dataclass(frozen=True)
class Exchange:
    """One request/response pair as seen by a scenario."""

    name: str
    duration_ms: float
    response: Optional[httpx.Response] = None
    error: Optional[str] = None

    @property
    def status(self) -> Optional[int]:
        return self.response.status_code if self.response is not None else None

    @property
    def failed(self) -> bool:
        """Transport error, or a status outside 2xx/3xx."""
        return self.status is None or not 200 <= self.status < 400

    def header(self, name: str) -> Optional[str]:
        return self.response.headers.get(name) if self.response is not None else None

    def body_contains(self, marker: str) -> bool:
        return self.response is not None and marker in self.response.text


def decode_short_code(exchange: Exchange, field: str = "short_code") -> str:
    """Extract the identifier returned by a create call or raise :class:`DecodeError`."""
    if exchange.response is None:
        raise DecodeError(f"no response to decode ({exchange.error})")
    try:
        body: Any = exchange.response.json()
    except ValueError as exc:
        raise DecodeError(f"response body is not JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise DecodeError(f"expected a JSON object, got {type(body).__name__}")
    code = body.get(field)
    if not isinstance(code, str) or not code:
        raise DecodeError(f"field {field!r} missing or empty")
    return code


class TargetClient:
    """Thin timed wrapper around the target's two routes."""

    def __init__(
        self,
        base_url: str,
        sink: MetricSink,
        *,
        options: TargetOptions = TargetOptions(),
        timeout: float = 10.0,
        max_connections: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.sink = sink
        self.options = options
        self.timeout = timeout
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
            follow_redirects=False,
            transport=transport,
        )

    # Context manager helpers

    def __enter__(self) -> "TargetClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    # Requests

    def _fetch(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        deadline = time.perf_counter() + self.timeout
        with self._client.stream(method, url, **kwargs) as streamed:
            body = bytearray()
            for chunk in streamed.iter_raw():
                body += chunk
                if time.perf_counter() > deadline:
                    break
            if time.perf_counter() > deadline:
                raise httpx.ReadTimeout(
                    f"request exceeded its {self.timeout:g}s deadline",
                    request=streamed.request,
                )
        # Raw body with the original headers; httpx applies content-encoding on read
        return httpx.Response(
            streamed.status_code,
            headers=streamed.headers,
            content=bytes(body),
            request=streamed.request,
            extensions=streamed.extensions,
        )

    def _send(self, name: str, method: str, url: str, **kwargs: Any) -> Exchange:
        started = time.perf_counter()
        try:
            response = self._fetch(method, url, **kwargs)
        except httpx.HTTPError as exc:
            exchange = Exchange(
                name=name,
                duration_ms=(time.perf_counter() - started) * 1000,
                error=f"{type(exc).__name__}: {exc}",
            )
        else:
            exchange = Exchange(
                name=name,
                duration_ms=(time.perf_counter() - started) * 1000,
                response=response,
            )

        self.sink.counter("http_reqs").add(1)
        self.sink.trend("http_req_duration").add(exchange.duration_ms)
        self.sink.rate("http_req_failed").add(not exchange.failed)
        return exchange

    def create(self, original_url: str) -> Exchange:
        """``POST create(original_url)``."""
        return self._send(
            "CreateLink",
            "POST",
            self.options.create_path,
            json={"original_url": original_url},
        )

    def resolve(self, identifier: str, *, name: str = "Redirect") -> Exchange:
        """``GET resolve(identifier)`` without following the redirect."""
        return self._send(name, "GET", f"/{identifier}")
