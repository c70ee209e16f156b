"""Health probe that classifies the state of the backend endpoint."""

import httpx
import structlog
from pydantic import ValidationError

from video_search_client.backend_client import BackendTransport
from video_search_client.errors import NotConfigured, ProtocolError, TransportError
from video_search_client.models import (
    Connected,
    ConnectionState,
    Disconnected,
    HealthStatus,
    Probing,
)

logger = structlog.get_logger()

HEALTH_PATH = "/api/health"


class ConnectionProbe:
    """Single-attempt health check against the registry's endpoint."""

    def __init__(self, transport: BackendTransport):
        self._transport = transport
        self._registry = transport.registry

    async def probe(self) -> ConnectionState:
        """Check backend health once.

        The outcome is recorded in the registry only if the probed endpoint is
        still the active one when the answer arrives.

        Returns:
            Connected when the backend reports "healthy", Disconnected otherwise.

        Raises:
            NotConfigured: If no endpoint is set.
            TransportError: On network-level failure.
            ProtocolError: If the backend answered with something other than JSON.
        """
        endpoint = self._registry.get()
        if endpoint is None:
            raise NotConfigured("Backend API URL is not configured")

        self._registry.record_state(Probing(), for_endpoint=endpoint)
        timeout = httpx.Timeout(
            self._transport.settings.health_timeout_seconds,
            connect=self._transport.settings.connect_timeout_seconds,
        )
        try:
            response = await self._transport.request("health", "GET", HEALTH_PATH, timeout=timeout)
            data = self._transport.decode_json(response, "health")
        except TransportError:
            self._registry.record_state(Disconnected(reason="unreachable"), for_endpoint=endpoint)
            raise
        except ProtocolError:
            self._registry.record_state(
                Disconnected(reason="tunnel_interstitial"), for_endpoint=endpoint
            )
            raise

        state = self._classify(response, data)
        stored = self._registry.record_state(state, for_endpoint=endpoint)
        logger.info(
            "Backend probed",
            base_url=endpoint.base_url,
            state=state.kind,
            status=response.status_code,
            current=stored,
        )
        return state

    @staticmethod
    def _classify(response: httpx.Response, data: object) -> ConnectionState:
        if not response.is_success or not isinstance(data, dict):
            return Disconnected(reason="unhealthy")
        try:
            health = HealthStatus.model_validate(data)
        except ValidationError:
            return Disconnected(reason="unhealthy")
        if health.status != "healthy":
            return Disconnected(reason="unhealthy")
        return Connected(health=health)
