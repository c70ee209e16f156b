"""Unsigned upload of videos to the durable CDN (Cloudinary video API)."""

import re
from collections.abc import Callable
from typing import Any

import httpx
import structlog

from video_search_client.backend_client import ProgressReader
from video_search_client.config import Settings, get_settings
from video_search_client.errors import DurableStorageError
from video_search_client.models import DurableUpload, VideoFile
from video_search_client.observability import upload_bytes_total

logger = structlog.get_logger()


def sanitize_public_id(name: str) -> str:
    """Restrict a video name to characters accepted in a public id."""
    return re.sub(r"[^a-zA-Z0-9_-]", "_", name.strip())


class DurableStorageUploader:
    """Client for the unsigned upload endpoint of the video CDN.

    Only uploads are exposed. Deleting an asset needs a signed request and has
    to happen server-side.
    """

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self._settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None

    @property
    def is_configured(self) -> bool:
        return self._settings.has_durable_storage

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def upload(
        self,
        video: VideoFile,
        on_progress: Callable[[float], None] | None = None,
        public_id: str | None = None,
    ) -> DurableUpload:
        """Upload a video and return its durable, publicly playable URL.

        Args:
            video: File to upload.
            on_progress: Called with the leg's percentage (0-100).
            public_id: Optional asset name; sanitized before sending.

        Raises:
            DurableStorageError: If storage is not configured or the upload fails.
        """
        if not self.is_configured:
            raise DurableStorageError("Durable storage is not configured")

        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(
                    self._settings.upload_timeout_seconds,
                    connect=self._settings.connect_timeout_seconds,
                )
            )
            self._owns_client = True

        data: dict[str, Any] = {
            "upload_preset": self._settings.cloudinary_upload_preset,
            "folder": self._settings.cloudinary_folder,
            "resource_type": "video",
            "tags": self._settings.cloudinary_tags,
        }
        if public_id:
            data["public_id"] = sanitize_public_id(public_id)

        def _report(sent: int, total: int) -> None:
            if on_progress and total:
                on_progress(min(sent / total * 100.0, 100.0))

        logger.info(
            "Uploading to durable storage",
            cloud=self._settings.cloudinary_cloud_name,
            size_mb=round(video.size_bytes / (1024 * 1024), 2),
        )

        try:
            with open(video.path, "rb") as fh:
                reader = ProgressReader(fh, video.size_bytes, _report)
                response = await self._client.post(
                    self._settings.cloudinary_upload_url,
                    data=data,
                    files={"file": (video.name, reader, video.content_type or "video/mp4")},
                )
        except OSError as e:
            raise DurableStorageError(f"Cannot read {video.name}: {e}") from e
        except httpx.HTTPError as e:
            raise DurableStorageError(f"Network error during durable upload: {e}") from e

        if not response.is_success:
            raise DurableStorageError(f"Durable upload failed: {self._error_message(response)}")

        try:
            payload = response.json()
            result = DurableUpload(
                secure_url=payload["secure_url"],
                public_id=payload["public_id"],
                thumbnail_url=self.thumbnail_url(payload["public_id"]),
                duration=payload.get("duration"),
                format=payload.get("format"),
                bytes=payload.get("bytes"),
            )
        except (ValueError, KeyError, TypeError) as e:
            raise DurableStorageError("Durable storage returned an unexpected response") from e

        upload_bytes_total.labels(leg="durable").inc(video.size_bytes)
        logger.info("Durable upload complete", public_id=result.public_id, url=result.secure_url)
        return result

    def thumbnail_url(self, public_id: str, seconds: int = 0) -> str:
        """Thumbnail of an uploaded asset at a given second."""
        cloud = self._settings.cloudinary_cloud_name
        return (
            f"https://res.cloudinary.com/{cloud}/video/upload/"
            f"so_{seconds}/w_400,h_300,c_fill/{public_id}.jpg"
        )

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            return response.json().get("error", {}).get("message") or response.reason_phrase
        except (ValueError, AttributeError):
            return f"HTTP {response.status_code} {response.reason_phrase}"
