"""Submission and polling of asynchronous video processing jobs."""

import asyncio
from collections.abc import AsyncIterator, Callable, Generator
from typing import Any
from urllib.parse import quote

import structlog
from pydantic import ValidationError

from video_search_client.backend_client import BackendTransport
from video_search_client.errors import (
    JobFailed,
    JobLookupError,
    NotConfigured,
    ProtocolError,
    SubmissionError,
)
from video_search_client.models import (
    JobState,
    ProcessingJob,
    ProcessingResult,
    ProcessOptions,
)
from video_search_client.observability import active_job_watches, job_polls_total

logger = structlog.get_logger()

PROCESS_PATH = "/api/process"
JOB_PATH = "/api/job/{job_id}"
JOBS_PATH = "/api/jobs"

JobObserver = Callable[[ProcessingJob], None]


class JobHandle:
    """Handle to a job being polled in a background task.

    Cancelling the handle cancels the task; no further status requests are
    issued after that.
    """

    def __init__(self, job_id: str, task: "asyncio.Task[ProcessingResult]"):
        self.job_id = job_id
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def result(self) -> ProcessingResult:
        return await self._task

    def __await__(self) -> Generator[Any, None, ProcessingResult]:
        return self._task.__await__()


class JobPoller:
    """Starts processing jobs and follows them to a terminal state."""

    def __init__(self, transport: BackendTransport, poll_interval: float | None = None):
        """Initialize the poller.

        Args:
            transport: Backend transport.
            poll_interval: Seconds between status polls. Defaults to config value.
        """
        self._transport = transport
        self._poll_interval = (
            poll_interval if poll_interval is not None else transport.settings.poll_interval_seconds
        )

    async def start(self, storage_handle: str, options: ProcessOptions | None = None) -> str:
        """Submit a processing request for an uploaded file.

        Returns:
            The backend job id.

        Raises:
            SubmissionError: If no endpoint is configured or the backend rejects
                the request.
            TransportError: If the backend cannot be reached.
            ProtocolError: If the backend answers with something other than JSON.
        """
        options = options or ProcessOptions()
        try:
            response = await self._transport.request(
                "process",
                "POST",
                PROCESS_PATH,
                params={"video_filename": storage_handle},
                json=options.to_wire(),
            )
        except NotConfigured as e:
            raise SubmissionError(f"Cannot submit job: {e}") from e

        if not response.is_success:
            detail = self._transport.error_detail(response)
            logger.error(
                "Processing request rejected",
                storage_handle=storage_handle,
                status=response.status_code,
                detail=detail,
            )
            raise SubmissionError(f"Processing request rejected: {detail}")

        data = self._transport.decode_json(response, "process")
        job_id = data.get("job_id") if isinstance(data, dict) else None
        if not job_id:
            raise SubmissionError("Processing request accepted but no job id was returned")

        logger.info("Processing job started", job_id=job_id, storage_handle=storage_handle)
        return str(job_id)

    async def get_status(self, job_id: str) -> ProcessingJob:
        """Fetch one snapshot of a job.

        Raises:
            JobLookupError: If the backend does not know the job.
            ProtocolError: If the payload is not a recognizable job status.
        """
        response = await self._transport.request(
            "job_status", "GET", JOB_PATH.format(job_id=quote(job_id, safe=""))
        )
        if not response.is_success:
            raise JobLookupError(
                f"Failed to fetch status of job {job_id}: {self._transport.error_detail(response)}"
            )
        data = self._transport.decode_json(response, "job_status")
        job = self._parse_job(job_id, data)
        job_polls_total.labels(state=job.state.value).inc()
        return job

    async def iter_states(
        self, job_id: str, poll_interval: float | None = None
    ) -> AsyncIterator[ProcessingJob]:
        """Yield every observed snapshot of a job, ending after the terminal one.

        The first poll is immediate. Closing the generator, or cancelling the
        task consuming it, stops polling.
        """
        interval = poll_interval if poll_interval is not None else self._poll_interval
        while True:
            job = await self.get_status(job_id)
            yield job
            if job.state.is_terminal:
                return
            await asyncio.sleep(interval)

    async def wait(
        self,
        job_id: str,
        on_update: JobObserver | None = None,
        poll_interval: float | None = None,
    ) -> ProcessingResult:
        """Poll a job until it completes or fails.

        Every observed snapshot, terminal or not, is passed to on_update before
        the next poll is scheduled.

        Returns:
            The job's ProcessingResult.

        Raises:
            JobFailed: If the job ends in the failed state.
            TransportError: If the backend drops mid-job; polling stops.
            asyncio.CancelledError: If the caller abandons the wait.
        """
        active_job_watches.inc()
        states = self.iter_states(job_id, poll_interval)
        try:
            async for job in states:
                if on_update:
                    on_update(job)
                if job.state is JobState.COMPLETED:
                    logger.info("Processing job completed", job_id=job_id)
                    return job.result or ProcessingResult()
                if job.state is JobState.FAILED:
                    logger.warning("Processing job failed", job_id=job_id, error=job.error_message)
                    raise JobFailed(job.error_message or "Processing failed")
        except asyncio.CancelledError:
            logger.info("Stopped polling abandoned job", job_id=job_id)
            raise
        finally:
            await states.aclose()
            active_job_watches.dec()
        raise ProtocolError(f"Polling of job {job_id} ended without a terminal state")

    def track(
        self,
        job_id: str,
        on_update: JobObserver | None = None,
        poll_interval: float | None = None,
    ) -> JobHandle:
        """Poll a job in a background task and return a cancellable handle."""
        task = asyncio.create_task(
            self.wait(job_id, on_update, poll_interval), name=f"poll-job-{job_id}"
        )
        return JobHandle(job_id, task)

    async def list_jobs(self) -> list[dict[str, Any]]:
        """List jobs known to the backend."""
        response = await self._transport.request("list_jobs", "GET", JOBS_PATH)
        if not response.is_success:
            raise JobLookupError(f"Failed to fetch jobs: {self._transport.error_detail(response)}")
        data = self._transport.decode_json(response, "list_jobs")
        if isinstance(data, dict):
            data = data.get("jobs", [])
        if not isinstance(data, list):
            raise ProtocolError("Job list response is not a list")
        return data

    async def delete_job(self, job_id: str) -> dict[str, Any]:
        """Delete a job record on the backend."""
        response = await self._transport.request(
            "delete_job", "DELETE", JOB_PATH.format(job_id=quote(job_id, safe=""))
        )
        if not response.is_success:
            raise JobLookupError(
                f"Failed to delete job {job_id}: {self._transport.error_detail(response)}"
            )
        logger.info("Processing job deleted", job_id=job_id)
        return self._transport.decode_json(response, "delete_job")

    @staticmethod
    def _parse_job(job_id: str, data: Any) -> ProcessingJob:
        if not isinstance(data, dict):
            raise ProtocolError("Job status response is not an object")
        raw_state = str(data.get("status", "")).lower()
        try:
            state = JobState(raw_state)
        except ValueError as e:
            raise ProtocolError(f"Unknown job status {raw_state!r}") from e

        result = None
        if state is JobState.COMPLETED and isinstance(data.get("result"), dict):
            try:
                result = ProcessingResult.model_validate(data["result"])
            except ValidationError as e:
                raise ProtocolError(f"Malformed result for job {job_id}") from e

        progress = data.get("progress")
        return ProcessingJob(
            id=str(data.get("job_id") or job_id),
            state=state,
            progress_message="" if progress is None else str(progress),
            result=result,
            error_message=data.get("error") if state is JobState.FAILED else None,
        )
