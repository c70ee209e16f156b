"""Playback URLs that open a search hit already seeked to its timestamp."""

import math

import structlog

from video_search_client.models import SearchResult

logger = structlog.get_logger()

# Path segment after which the CDN accepts transformation directives.
UPLOAD_SEGMENT = "/upload/"

# The transcoder start offset has one-second granularity; shorter offsets are
# seeked client-side.
MIN_URL_OFFSET_SECONDS = 0.5


def _inject_directive(url: str, directive: str) -> str | None:
    parts = url.split(UPLOAD_SEGMENT)
    if len(parts) != 2:
        return None
    return f"{parts[0]}{UPLOAD_SEGMENT}{directive}/{parts[1]}"


class ResultTimeLocator:
    """Pure URL transforms for search results. No network access."""

    def locate(self, result: SearchResult) -> str | None:
        """Playback URL starting at the matched timestamp.

        Returns the original URL when the offset is below half a second, or
        when the URL does not have exactly one upload segment.
        """
        url = result.playback_url
        if not url:
            return None

        timestamp = result.timestamp_seconds
        if not math.isfinite(timestamp) or timestamp < MIN_URL_OFFSET_SECONDS:
            return url

        offset = math.floor(timestamp)
        located = _inject_directive(url, f"so_{offset}")
        if located is None:
            logger.debug("Playback URL has no upload segment, leaving unchanged", url=url)
            return url
        return located

    def client_seek_seconds(self, result: SearchResult) -> float:
        """Seek the player applies after metadata loads (sub-second offsets only)."""
        timestamp = result.timestamp_seconds
        if 0.0 < timestamp < MIN_URL_OFFSET_SECONDS:
            return timestamp
        return 0.0

    def thumbnail_url(self, result: SearchResult, width: int = 400, height: int = 300) -> str | None:
        """JPEG frame thumbnail at the matched second."""
        url = result.playback_url
        if not url:
            return None
        offset = math.floor(result.timestamp_seconds) if math.isfinite(result.timestamp_seconds) else 0
        thumb = _inject_directive(url, f"so_{offset}/w_{width},h_{height},c_fill")
        if thumb is None:
            return None
        stem, dot, ext = thumb.rpartition(".")
        if not dot or "/" in ext:
            return f"{thumb}.jpg"
        return f"{stem}.jpg"

    def annotate(self, result: SearchResult) -> SearchResult:
        """Copy of the result with seek_url filled in."""
        return result.model_copy(update={"seek_url": self.locate(result)})
