"""Holder of the single active backend endpoint and its cached connection state."""

from urllib.parse import urlparse

import structlog

from video_search_client.errors import InvalidEndpoint
from video_search_client.models import ConnectionState, Endpoint, Unconfigured

logger = structlog.get_logger()


def normalize_endpoint(url: str) -> str:
    """Trim whitespace and strip trailing slashes.

    Raises:
        InvalidEndpoint: If nothing is left, or the value is not an http(s) URL.
    """
    value = (url or "").strip().rstrip("/")
    if not value:
        raise InvalidEndpoint("Endpoint URL is empty")

    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidEndpoint(f"Endpoint must be an http(s) URL, got {value!r}")
    return value


class EndpointRegistry:
    """Session-owned registry for the active backend endpoint.

    The registry is the only component that mutates the endpoint. Changing or
    clearing it resets the cached connection state so stale health data is
    never read after a reconnect.
    """

    def __init__(self, url: str | None = None):
        self._endpoint: Endpoint | None = None
        self._state: ConnectionState = Unconfigured()
        if url:
            self.set(url)

    def set(self, url: str) -> Endpoint:
        """Set the active endpoint, returning the normalized value."""
        endpoint = Endpoint(base_url=normalize_endpoint(url))
        self._endpoint = endpoint
        self._state = Unconfigured()
        logger.info("Backend endpoint set", base_url=endpoint.base_url)
        return endpoint

    def get(self) -> Endpoint | None:
        return self._endpoint

    def is_configured(self) -> bool:
        return self._endpoint is not None

    def clear(self) -> None:
        """Forget the endpoint (explicit disconnect)."""
        if self._endpoint is not None:
            logger.info("Backend endpoint cleared", base_url=self._endpoint.base_url)
        self._endpoint = None
        self._state = Unconfigured()

    @property
    def state(self) -> ConnectionState:
        """Cached result of the last probe."""
        return self._state

    def record_state(self, state: ConnectionState, for_endpoint: Endpoint | None = None) -> bool:
        """Store a probe outcome. Called by ConnectionProbe only.

        When for_endpoint is given, the outcome is dropped unless that endpoint
        is still the active one.

        Returns:
            True if the state was stored.
        """
        if for_endpoint is not None and for_endpoint is not self._endpoint:
            logger.debug(
                "Discarding probe outcome for a replaced endpoint",
                probed=for_endpoint.base_url,
                state=state.kind,
            )
            return False
        self._state = state
        return True

    def url_for(self, path: str) -> str | None:
        """Absolute URL for an API path, or None when unconfigured."""
        if self._endpoint is None:
            return None
        return f"{self._endpoint.base_url}/{path.lstrip('/')}"
