"""Tests for job submission and polling."""

import asyncio
import json

import httpx
import pytest

from conftest import html_response, json_response
from video_search_client.backend_client import BackendTransport
from video_search_client.errors import (
    JobFailed,
    JobLookupError,
    ProtocolError,
    SubmissionError,
    TransportError,
)
from video_search_client.job_poller import JobPoller
from video_search_client.models import JobState, ProcessingJob, ProcessOptions

JOB_PATH = "/api/job/job-1"
RESULT = {
    "total_frames_extracted": 120,
    "frames_with_captions": 45,
    "embeddings_generated": 45,
    "embeddings_uploaded": 45,
    "processing_time_seconds": 61.2,
    "frame_reduction_percent": 62.5,
}


def _status(status: str, **extra) -> httpx.Response:
    return json_response({"job_id": "job-1", "status": status, **extra})


class TestStart:
    """Tests for JobPoller.start."""

    @pytest.mark.asyncio
    async def test_submits_request(self, session, backend) -> None:
        backend.add("POST", "/api/process", json_response({"job_id": "job-1"}))

        job_id = await session.jobs.start(
            "clip_abc.mp4",
            ProcessOptions(video_name="Lobby", video_date="2024-05-01", use_object_detection=True),
        )

        assert job_id == "job-1"
        sent = backend.calls[0]
        assert sent.url.params["video_filename"] == "clip_abc.mp4"
        body = json.loads(sent.content)
        assert body["video_name"] == "Lobby"
        assert body["use_object_detection"] is True
        assert body["upload_to_pinecone"] is True
        assert "cloudinary_url" not in body

    @pytest.mark.asyncio
    async def test_rejection_is_submission_error(self, session, backend) -> None:
        backend.add("POST", "/api/process", json_response({"detail": "Video file not found"}, 404))
        with pytest.raises(SubmissionError, match="Video file not found"):
            await session.jobs.start("missing.mp4")

    @pytest.mark.asyncio
    async def test_unconfigured_is_submission_error(self, session, backend) -> None:
        session.registry.clear()
        with pytest.raises(SubmissionError):
            await session.jobs.start("clip.mp4")
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_missing_job_id(self, session, backend) -> None:
        backend.add("POST", "/api/process", json_response({"message": "ok"}))
        with pytest.raises(SubmissionError):
            await session.jobs.start("clip.mp4")

    @pytest.mark.asyncio
    async def test_transport_failure_propagates(self, session, backend) -> None:
        backend.add("POST", "/api/process", httpx.ConnectError("refused"))
        with pytest.raises(TransportError):
            await session.jobs.start("clip.mp4")


class TestWait:
    """Tests for JobPoller.wait."""

    @pytest.mark.asyncio
    async def test_every_transition_delivered_in_order(self, session, backend) -> None:
        backend.add(
            "GET",
            JOB_PATH,
            _status("queued", progress="Waiting for GPU"),
            _status("processing", progress="Captioning frames"),
            _status("completed", result=RESULT),
        )
        updates: list[ProcessingJob] = []

        result = await session.jobs.wait("job-1", updates.append, poll_interval=0)

        assert [u.state for u in updates] == [
            JobState.QUEUED,
            JobState.PROCESSING,
            JobState.COMPLETED,
        ]
        assert updates[1].progress_message == "Captioning frames"
        assert result.frames_extracted == 120
        assert len(backend.calls_to(JOB_PATH)) == 3

    @pytest.mark.asyncio
    async def test_failed_job_raises_verbatim_message(self, session, backend) -> None:
        backend.add(
            "GET",
            JOB_PATH,
            _status("processing"),
            _status("failed", error="CUDA out of memory: tried to allocate 2.00 GiB"),
        )
        updates: list[ProcessingJob] = []

        with pytest.raises(JobFailed) as exc_info:
            await session.jobs.wait("job-1", updates.append, poll_interval=0)

        assert str(exc_info.value) == "CUDA out of memory: tried to allocate 2.00 GiB"
        assert updates[-1].state is JobState.FAILED
        assert len(backend.calls_to(JOB_PATH)) == 2

    @pytest.mark.asyncio
    async def test_transport_failure_stops_polling(self, session, backend) -> None:
        backend.add(
            "GET",
            JOB_PATH,
            _status("processing"),
            httpx.ConnectError("tunnel closed"),
            _status("completed", result=RESULT),
        )

        with pytest.raises(TransportError):
            await session.jobs.wait("job-1", poll_interval=0)

        assert len(backend.calls_to(JOB_PATH)) == 2

    @pytest.mark.asyncio
    async def test_interstitial_mid_job_is_protocol_error(self, session, backend) -> None:
        backend.add("GET", JOB_PATH, _status("processing"), html_response(200))
        with pytest.raises(ProtocolError):
            await session.jobs.wait("job-1", poll_interval=0)

    @pytest.mark.asyncio
    async def test_unknown_job(self, session, backend) -> None:
        backend.add("GET", JOB_PATH, json_response({"detail": "Job not found"}, 404))
        with pytest.raises(JobLookupError, match="Job not found"):
            await session.jobs.wait("job-1", poll_interval=0)

    @pytest.mark.asyncio
    async def test_unknown_state(self, session, backend) -> None:
        backend.add("GET", JOB_PATH, _status("exploded"))
        with pytest.raises(ProtocolError):
            await session.jobs.wait("job-1", poll_interval=0)

    @pytest.mark.asyncio
    async def test_cancel_stops_polling(self, session, backend) -> None:
        backend.add("GET", JOB_PATH, _status("processing"))

        handle = session.jobs.track("job-1", poll_interval=0.01)
        await asyncio.sleep(0.05)
        handle.cancel()
        with pytest.raises(asyncio.CancelledError):
            await handle
        polls_at_cancel = len(backend.calls_to(JOB_PATH))

        await asyncio.sleep(0.05)

        assert polls_at_cancel >= 1
        assert len(backend.calls_to(JOB_PATH)) == polls_at_cancel
        assert handle.cancelled

    @pytest.mark.asyncio
    async def test_track_returns_result(self, session, backend) -> None:
        backend.add("GET", JOB_PATH, _status("queued"), _status("completed", result=RESULT))
        handle = session.jobs.track("job-1", poll_interval=0)
        result = await handle.result()
        assert result.frames_captioned == 45
        assert handle.done

    @pytest.mark.asyncio
    async def test_iter_states_stops_at_terminal(self, session, backend) -> None:
        backend.add("GET", JOB_PATH, _status("queued"), _status("failed", error="bad codec"))
        states = [job async for job in session.jobs.iter_states("job-1", poll_interval=0)]
        assert [s.state for s in states] == [JobState.QUEUED, JobState.FAILED]
        assert states[-1].error_message == "bad codec"

    @pytest.mark.asyncio
    async def test_explicit_zero_interval_overrides_settings(self, session, backend) -> None:
        slow = session.settings.model_copy(update={"poll_interval_seconds": 30.0})
        transport = BackendTransport(session.registry, slow, client=backend.client())
        poller = JobPoller(transport, poll_interval=0)
        backend.add("GET", JOB_PATH, _status("queued"), _status("completed", result=RESULT))

        result = await asyncio.wait_for(poller.wait("job-1"), timeout=5)

        assert result.frames_extracted == 120
        assert len(backend.calls_to(JOB_PATH)) == 2


class TestJobAdmin:
    """Tests for list_jobs and delete_job."""

    @pytest.mark.asyncio
    async def test_list_jobs(self, session, backend) -> None:
        backend.add("GET", "/api/jobs", json_response({"jobs": [{"job_id": "a"}, {"job_id": "b"}]}))
        jobs = await session.jobs.list_jobs()
        assert [j["job_id"] for j in jobs] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_delete_job(self, session, backend) -> None:
        backend.add("DELETE", JOB_PATH, json_response({"message": "Job deleted"}))
        assert await session.jobs.delete_job("job-1") == {"message": "Job deleted"}

    @pytest.mark.asyncio
    async def test_delete_unknown_job(self, session, backend) -> None:
        backend.add("DELETE", JOB_PATH, json_response({"detail": "Job not found"}, 404))
        with pytest.raises(JobLookupError):
            await session.jobs.delete_job("job-1")
