"""Shared async HTTP transport for the tunnel-exposed backend."""

import time
from collections.abc import Callable
from typing import IO, Any

import httpx
import structlog

from video_search_client.config import Settings, get_settings
from video_search_client.endpoint_registry import EndpointRegistry
from video_search_client.errors import NotConfigured, ProtocolError, TransportError
from video_search_client.observability import (
    backend_latency_seconds,
    backend_requests_total,
    ensure_trace_id,
)

logger = structlog.get_logger()


class ProgressReader:
    """File wrapper that reports bytes read while httpx streams a multipart body."""

    def __init__(self, fileobj: IO[bytes], total: int, on_read: Callable[[int, int], None]):
        self._file = fileobj
        self._total = total
        self._on_read = on_read
        self._sent = 0

    def read(self, size: int = -1) -> bytes:
        chunk = self._file.read(size)
        if chunk:
            self._sent += len(chunk)
            self._on_read(self._sent, self._total)
        return chunk

    def seek(self, offset: int, whence: int = 0) -> int:
        position = self._file.seek(offset, whence)
        self._sent = position
        return position

    def tell(self) -> int:
        return self._file.tell()

    def fileno(self) -> int:
        return self._file.fileno()


class BackendTransport:
    """Async HTTP client bound to an EndpointRegistry.

    URLs are built from the registry on every call so that a reconnect to a new
    tunnel takes effect immediately. Network failures are reported as
    TransportError, non-JSON answers as ProtocolError.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        settings: Settings | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the transport.

        Args:
            registry: Source of the active endpoint.
            settings: Client settings. Defaults to config value.
            client: Pre-built HTTP client (tests inject one with a MockTransport).
        """
        self._registry = registry
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "BackendTransport":
        await self.connect()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    @property
    def registry(self) -> EndpointRegistry:
        return self._registry

    @property
    def settings(self) -> Settings:
        return self._settings

    async def connect(self) -> None:
        """Create the HTTP client if one was not injected."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            headers=self._settings.tunnel_headers,
            timeout=httpx.Timeout(
                self._settings.request_timeout_seconds,
                connect=self._settings.connect_timeout_seconds,
            ),
        )
        self._owns_client = True
        logger.debug("Backend HTTP client created")

    async def close(self) -> None:
        """Close the HTTP client if this transport created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.debug("Backend HTTP client closed")

    async def request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        files: Any = None,
        timeout: float | httpx.Timeout | None = None,
    ) -> httpx.Response:
        """Issue one request against the active endpoint.

        Args:
            operation: Short name used for logs and metrics (e.g. "health").
            method: HTTP method.
            path: API path such as "/api/health".
            params: Query parameters.
            json: JSON body.
            files: Multipart files mapping.
            timeout: Per-request timeout override.

        Returns:
            The response, whatever its status code.

        Raises:
            NotConfigured: If no endpoint is set. No request is made.
            TransportError: On DNS failure, refused connection or timeout.
        """
        url = self._registry.url_for(path)
        if url is None:
            raise NotConfigured("Backend API URL is not configured")

        if self._client is None:
            await self.connect()

        trace_id = ensure_trace_id()
        headers = {**self._settings.tunnel_headers, "X-Request-ID": trace_id}
        kwargs: dict[str, Any] = {"params": params, "json": json, "files": files, "headers": headers}
        if timeout is not None:
            kwargs["timeout"] = timeout

        start_time = time.time()
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            self._observe(operation, "transport_error", start_time)
            logger.error("backend_timeout", operation=operation, url=url, trace_id=trace_id)
            raise TransportError(f"{operation}: backend did not answer in time") from e
        except httpx.TransportError as e:
            self._observe(operation, "transport_error", start_time)
            logger.error(
                "backend_unreachable",
                operation=operation,
                url=url,
                trace_id=trace_id,
                error=str(e),
            )
            raise TransportError(f"{operation}: cannot reach backend ({e})") from e

        outcome = "ok" if response.is_success else "http_error"
        latency = self._observe(operation, outcome, start_time)
        logger.info(
            "backend_request",
            operation=operation,
            method=method,
            status=response.status_code,
            latency_ms=int(latency * 1000),
            trace_id=trace_id,
        )
        return response

    def decode_json(self, response: httpx.Response, operation: str) -> Any:
        """Parse a JSON body, rejecting HTML/plain-text answers.

        Raises:
            ProtocolError: If the body is not JSON (usually a tunnel interstitial).
        """
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type.lower():
            backend_requests_total.labels(operation=operation, outcome="protocol_error").inc()
            logger.warning(
                "backend_non_json_response",
                operation=operation,
                status=response.status_code,
                content_type=content_type,
            )
            raise ProtocolError(
                f"{operation}: server returned {content_type or 'an unknown content type'} "
                "instead of JSON"
            )
        try:
            return response.json()
        except ValueError as e:
            backend_requests_total.labels(operation=operation, outcome="protocol_error").inc()
            logger.warning("backend_invalid_json", operation=operation, status=response.status_code)
            raise ProtocolError(f"{operation}: server returned malformed JSON") from e

    @staticmethod
    def error_detail(response: httpx.Response) -> str:
        """Extract the backend's error detail, falling back to the status line."""
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict):
            detail = data.get("detail") or data.get("error") or data.get("message")
            if isinstance(detail, dict):
                detail = detail.get("message")
            if detail:
                return str(detail)
        return f"HTTP {response.status_code} {response.reason_phrase}".strip()

    @staticmethod
    def _observe(operation: str, outcome: str, start_time: float) -> float:
        latency = time.time() - start_time
        backend_requests_total.labels(operation=operation, outcome=outcome).inc()
        backend_latency_seconds.labels(operation=operation).observe(latency)
        return latency
