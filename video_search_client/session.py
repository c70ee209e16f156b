"""Composition root: one operator session against one backend."""

from pathlib import Path
from typing import Any

import httpx
import structlog

from video_search_client.backend_client import BackendTransport
from video_search_client.config import Settings, get_settings
from video_search_client.connection_probe import ConnectionProbe
from video_search_client.durable_storage import DurableStorageUploader
from video_search_client.endpoint_registry import EndpointRegistry
from video_search_client.job_poller import JobObserver, JobPoller
from video_search_client.models import (
    ConnectionState,
    ProcessingResult,
    ProcessOptions,
    UploadOptions,
    UploadResult,
    VideoFile,
)
from video_search_client.observability import generate_trace_id, set_trace_id
from video_search_client.search_client import SearchClient
from video_search_client.time_locator import ResultTimeLocator
from video_search_client.upload_pipeline import ProgressObserver, UploadPipeline

logger = structlog.get_logger()


class VideoSearchSession:
    """Owns the endpoint registry and wires every component around it."""

    def __init__(
        self,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
        storage_client: httpx.AsyncClient | None = None,
    ):
        """Initialize the session.

        Args:
            settings: Client settings. Defaults to config value.
            http_client: HTTP client for the backend (tests inject a mock transport).
            storage_client: HTTP client for durable storage.
        """
        self.settings = settings or get_settings()
        self.registry = EndpointRegistry()
        self.transport = BackendTransport(self.registry, self.settings, client=http_client)
        self.durable = DurableStorageUploader(self.settings, client=storage_client)
        self.probe = ConnectionProbe(self.transport)
        self.uploads = UploadPipeline(self.transport, self.durable, self.settings)
        self.jobs = JobPoller(self.transport)
        self.locator = ResultTimeLocator()
        self.search = SearchClient(self.transport, self.locator)

    async def __aenter__(self) -> "VideoSearchSession":
        await self.transport.connect()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self.transport.close()
        await self.durable.close()

    @property
    def state(self) -> ConnectionState:
        return self.registry.state

    async def connect(self, url: str) -> ConnectionState:
        """Set the endpoint and probe it once."""
        set_trace_id(generate_trace_id())
        self.registry.set(url)
        return await self.probe.probe()

    def disconnect(self) -> None:
        self.registry.clear()

    async def process_video(
        self,
        file: VideoFile | str | Path,
        options: ProcessOptions | None = None,
        on_progress: ProgressObserver | None = None,
        on_update: JobObserver | None = None,
        upload_options: UploadOptions | None = None,
    ) -> tuple[UploadResult, ProcessingResult]:
        """Upload a video, start processing it, and wait for the job to finish.

        The durable URL, when there is one, is forwarded to the backend so that
        search results can be played back from it.
        """
        set_trace_id(generate_trace_id())
        options = options or ProcessOptions()
        upload_options = upload_options or UploadOptions(video_name=options.video_name)

        uploaded = await self.uploads.upload(file, on_progress, upload_options)

        updates: dict[str, Any] = {}
        if uploaded.external_url and not options.cloudinary_url:
            updates["cloudinary_url"] = uploaded.external_url
        if not options.video_name:
            updates["video_name"] = uploaded.original_name
        if updates:
            options = options.model_copy(update=updates)

        job_id = await self.jobs.start(uploaded.storage_handle, options)
        result = await self.jobs.wait(job_id, on_update)
        logger.info(
            "Video processed",
            job_id=job_id,
            frames_extracted=result.frames_extracted,
            embeddings_indexed=result.embeddings_indexed,
        )
        return uploaded, result
