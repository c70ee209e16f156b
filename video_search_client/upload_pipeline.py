"""Two-leg upload pipeline: optional durable storage plus the required backend upload."""

import asyncio
from collections.abc import Callable
from pathlib import Path

import httpx
import structlog
from pydantic import ValidationError

from video_search_client.backend_client import BackendTransport, ProgressReader
from video_search_client.config import Settings
from video_search_client.durable_storage import DurableStorageUploader
from video_search_client.errors import (
    DurableStorageError,
    InvalidFile,
    NotConfigured,
    ProtocolError,
    TransportError,
    UploadFailed,
)
from video_search_client.models import (
    BackendUpload,
    DurableUpload,
    UploadOptions,
    UploadProgress,
    UploadResult,
    VideoFile,
)
from video_search_client.observability import upload_bytes_total, upload_legs_total

logger = structlog.get_logger()

UPLOAD_PATH = "/api/upload"

ProgressObserver = Callable[[UploadProgress], None]


def validate_video_file(video: VideoFile, settings: Settings) -> None:
    """Reject files the backend cannot process. Pure; no I/O.

    A file is accepted when either its MIME type or its extension is in the
    accepted video set, it is not empty, and it fits under the size ceiling.

    Raises:
        InvalidFile: On type mismatch, empty file, or oversize file.
    """
    accepted_types = {t.lower() for t in settings.accepted_video_types}
    accepted_exts = {e.lower().lstrip(".") for e in settings.accepted_video_extensions}

    type_ok = (video.content_type or "").lower() in accepted_types
    ext_ok = video.extension in accepted_exts
    if not (type_ok or ext_ok):
        raise InvalidFile(
            f"{video.name} is not a supported video "
            f"({', '.join(sorted(e.upper() for e in accepted_exts))})"
        )

    if video.size_bytes == 0:
        raise InvalidFile(f"{video.name} is empty")

    if video.size_bytes > settings.max_upload_bytes:
        limit_mb = settings.max_upload_bytes // (1024 * 1024)
        raise InvalidFile(f"{video.name} is too large. Maximum size is {limit_mb}MB")


class _ProgressTracker:
    """Combines per-leg progress into one non-decreasing overall percentage.

    While the durable leg is running or has succeeded each leg carries half the
    bar. Once it is skipped or has failed, the processing leg owns the full range.
    """

    def __init__(self, on_progress: ProgressObserver | None, durable_enabled: bool):
        self._on_progress = on_progress
        self._durable_counts = durable_enabled
        self._legs = {"durable": 0.0, "processing": 0.0}
        self._overall = 0.0

    def durable_outcome(self, succeeded: bool) -> None:
        self._durable_counts = succeeded
        if succeeded:
            self._legs["durable"] = 100.0
            self._emit("durable")

    def update(self, stage: str, percent: float) -> None:
        self._legs[stage] = max(self._legs[stage], min(max(percent, 0.0), 100.0))
        self._emit(stage)

    def complete(self) -> None:
        if self._overall < 100.0:
            self._legs["processing"] = 100.0
            self._overall = 100.0
            self._notify("processing")

    def _emit(self, stage: str) -> None:
        if self._durable_counts:
            computed = 0.5 * self._legs["durable"] + 0.5 * self._legs["processing"]
        else:
            computed = self._legs["processing"]
        self._overall = max(self._overall, computed)
        self._notify(stage)

    def _notify(self, stage: str) -> None:
        if self._on_progress:
            self._on_progress(
                UploadProgress(
                    stage=stage,
                    leg_percent=self._legs[stage],
                    overall_percent=self._overall,
                )
            )


class UploadPipeline:
    """Uploads a local video to durable storage and to the backend's working storage.

    The two legs are independent. Only the processing leg decides whether the
    pipeline succeeds; a durable-leg failure is logged and the result simply has
    no external URL.
    """

    def __init__(
        self,
        transport: BackendTransport,
        durable: DurableStorageUploader | None = None,
        settings: Settings | None = None,
    ):
        self._transport = transport
        self._durable = durable
        self._settings = settings or transport.settings

    def validate(self, video: VideoFile) -> None:
        validate_video_file(video, self._settings)

    async def upload(
        self,
        file: VideoFile | str | Path,
        on_progress: ProgressObserver | None = None,
        options: UploadOptions | None = None,
    ) -> UploadResult:
        """Run the upload pipeline.

        Args:
            file: A VideoFile or a path to one.
            on_progress: Observer receiving UploadProgress snapshots.
            options: Per-upload options.

        Returns:
            UploadResult with the backend handle and, if the durable leg
            succeeded, its URL.

        Raises:
            InvalidFile: If the file fails validation (no network call is made).
            NotConfigured: If no backend endpoint is set.
            UploadFailed: If the processing leg fails.
        """
        options = options or UploadOptions()
        video = self._load(file)
        self.validate(video)

        if not self._transport.registry.is_configured():
            raise NotConfigured("Backend API URL is not configured")

        use_durable = bool(
            options.use_durable_storage and self._durable is not None and self._durable.is_configured
        )
        concurrent = (
            options.concurrent_legs
            if options.concurrent_legs is not None
            else self._settings.upload_concurrent_legs
        )
        tracker = _ProgressTracker(on_progress, durable_enabled=use_durable)

        logger.info(
            "Starting upload pipeline",
            file=video.name,
            size_bytes=video.size_bytes,
            durable=use_durable,
            concurrent=concurrent and use_durable,
        )

        durable_result: DurableUpload | None = None
        if not use_durable:
            backend = await self._processing_leg(video, tracker)
        elif concurrent:
            durable_outcome, processing_outcome = await asyncio.gather(
                self._durable_leg(video, tracker, options.video_name),
                self._processing_leg(video, tracker),
                return_exceptions=True,
            )
            if isinstance(processing_outcome, BaseException):
                if isinstance(processing_outcome, UploadFailed):
                    raise processing_outcome
                raise UploadFailed(f"Processing upload failed: {processing_outcome}") from processing_outcome
            backend = processing_outcome
            if isinstance(durable_outcome, BaseException):
                logger.warning("Durable upload leg errored", error=str(durable_outcome))
            else:
                durable_result = durable_outcome
        else:
            durable_result = await self._durable_leg(video, tracker, options.video_name)
            backend = await self._processing_leg(video, tracker)

        tracker.complete()
        result = UploadResult(
            storage_handle=backend.filename,
            external_url=durable_result.secure_url if durable_result else None,
            original_name=video.name,
            size_bytes=video.size_bytes,
            public_id=durable_result.public_id if durable_result else None,
        )
        logger.info(
            "Upload pipeline finished",
            storage_handle=result.storage_handle,
            external_url=result.external_url,
        )
        return result

    @staticmethod
    def _load(file: VideoFile | str | Path) -> VideoFile:
        if isinstance(file, VideoFile):
            return file
        try:
            return VideoFile.from_path(file)
        except OSError as e:
            raise InvalidFile(f"Cannot read {file}: {e}") from e

    async def _durable_leg(
        self, video: VideoFile, tracker: _ProgressTracker, video_name: str | None
    ) -> DurableUpload | None:
        """Best-effort durable upload; returns None instead of raising."""
        assert self._durable is not None
        try:
            result = await self._durable.upload(
                video,
                on_progress=lambda pct: tracker.update("durable", pct),
                public_id=video_name,
            )
        except Exception as e:
            upload_legs_total.labels(leg="durable", outcome="failed").inc()
            tracker.durable_outcome(succeeded=False)
            logger.warning(
                "Durable upload failed, continuing with backend-only upload",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=not isinstance(e, DurableStorageError),
            )
            return None

        upload_legs_total.labels(leg="durable", outcome="ok").inc()
        tracker.durable_outcome(succeeded=True)
        return result

    async def _processing_leg(self, video: VideoFile, tracker: _ProgressTracker) -> BackendUpload:
        """Required upload to the backend; any failure raises UploadFailed."""

        def _report(sent: int, total: int) -> None:
            if total:
                tracker.update("processing", sent / total * 100.0)

        timeout = httpx.Timeout(
            self._settings.upload_timeout_seconds,
            connect=self._settings.connect_timeout_seconds,
        )
        try:
            with open(video.path, "rb") as fh:
                reader = ProgressReader(fh, video.size_bytes, _report)
                response = await self._transport.request(
                    "upload",
                    "POST",
                    UPLOAD_PATH,
                    files={"file": (video.name, reader, video.content_type or "video/mp4")},
                    timeout=timeout,
                )
            if not response.is_success:
                detail = self._transport.error_detail(response)
                raise UploadFailed(f"Processing upload failed: {detail}")
            backend = BackendUpload.model_validate(self._transport.decode_json(response, "upload"))
        except (TransportError, ProtocolError, OSError) as e:
            upload_legs_total.labels(leg="processing", outcome="failed").inc()
            logger.error("Processing upload failed", file=video.name, error=str(e))
            raise UploadFailed(f"Processing upload failed: {e}") from e
        except ValidationError as e:
            upload_legs_total.labels(leg="processing", outcome="failed").inc()
            raise UploadFailed("Processing upload failed: backend response had no filename") from e
        except UploadFailed:
            upload_legs_total.labels(leg="processing", outcome="failed").inc()
            raise

        upload_legs_total.labels(leg="processing", outcome="ok").inc()
        upload_bytes_total.labels(leg="processing").inc(video.size_bytes)
        return backend
