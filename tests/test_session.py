"""End-to-end tests for a video search session."""

import json

import pytest

from conftest import DURABLE_UPLOAD_PATH, TUNNEL_URL, json_response
from video_search_client.errors import JobFailed, NotConfigured
from video_search_client.models import (
    Connected,
    Disconnected,
    JobState,
    ProcessOptions,
    Unconfigured,
)

CDN_URL = "https://cdn.example/video/upload/v1/clip123.mp4"
RESULT = {
    "total_frames_extracted": 120,
    "frames_with_captions": 40,
    "embeddings_generated": 40,
    "embeddings_uploaded": 40,
    "processing_time_seconds": 95.0,
}


def _hit(score: float, timestamp: float) -> dict:
    return {
        "video_name": "lobby",
        "caption": "a person walking past the front desk",
        "timestamp": timestamp,
        "similarity_score": score,
        "frame_id": f"clip123_{int(timestamp)}",
        "cloudinary_url": CDN_URL,
    }


class TestConnect:
    """Tests for VideoSearchSession.connect and disconnect."""

    @pytest.mark.asyncio
    async def test_connect_healthy(self, session, backend) -> None:
        backend.add(
            "GET",
            "/api/health",
            json_response({"status": "healthy", "engine_initialized": True, "gpu_available": True}),
        )

        state = await session.connect(f"  {TUNNEL_URL}/ ")

        assert isinstance(state, Connected)
        assert state.health.engine_ready is True
        assert session.registry.get().base_url == TUNNEL_URL
        assert str(backend.calls[0].url) == f"{TUNNEL_URL}/api/health"

    @pytest.mark.asyncio
    async def test_connect_unhealthy_keeps_endpoint(self, session, backend) -> None:
        backend.add("GET", "/api/health", json_response({"status": "degraded"}))

        state = await session.connect(TUNNEL_URL)

        assert isinstance(state, Disconnected)
        assert session.registry.is_configured()

    @pytest.mark.asyncio
    async def test_disconnect(self, session, backend) -> None:
        session.disconnect()

        assert isinstance(session.state, Unconfigured)
        with pytest.raises(NotConfigured):
            await session.search.get_index_stats()
        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_context_manager_closes_clients(self, settings, backend) -> None:
        from video_search_client.session import VideoSearchSession

        async with VideoSearchSession(settings) as s:
            assert not s.registry.is_configured()
        assert s.transport._client is None


class TestProcessVideo:
    """Full workflow: upload, process, search."""

    @pytest.mark.asyncio
    async def test_upload_process_search(self, session, backend, make_video) -> None:
        video = make_video("lobby.mp4", size=10 * 1024 * 1024)
        backend.add(
            "POST",
            DURABLE_UPLOAD_PATH,
            json_response({"secure_url": CDN_URL, "public_id": "video-search/clip123"}),
        )
        backend.add("POST", "/api/upload", json_response({"filename": "clip123_abc"}))
        backend.add("POST", "/api/process", json_response({"job_id": "job-42"}))
        backend.add(
            "GET",
            "/api/job/job-42",
            json_response({"job_id": "job-42", "status": "queued"}),
            json_response({"job_id": "job-42", "status": "processing", "progress": "Captioning"}),
            json_response({"job_id": "job-42", "status": "completed", "result": RESULT}),
        )
        backend.add(
            "POST",
            "/api/search",
            json_response({"results": [_hit(0.82, 7.9), _hit(0.64, 31.2)], "count": 2}),
        )
        progress = []
        states = []

        uploaded, result = await session.process_video(
            video,
            ProcessOptions(video_date="2024-05-01", use_object_detection=False),
            on_progress=progress.append,
            on_update=lambda job: states.append(job.state),
        )

        assert uploaded.storage_handle == "clip123_abc"
        assert uploaded.external_url == CDN_URL
        assert result.frames_extracted == 120

        process_call = backend.calls_to("/api/process")[0]
        assert process_call.url.params["video_filename"] == "clip123_abc"
        body = json.loads(process_call.content)
        assert body["cloudinary_url"] == CDN_URL
        assert body["use_object_detection"] is False
        assert body["video_name"] == "lobby.mp4"

        overall = [p.overall_percent for p in progress]
        assert overall == sorted(overall)
        assert overall[-1] == 100.0
        assert states == [JobState.QUEUED, JobState.PROCESSING, JobState.COMPLETED]

        response = await session.search.search("person walking", top_k=5, similarity_threshold=0.5)

        assert 0 < response.count <= 5
        assert all(r.similarity_score >= 0.5 for r in response.results)
        assert response.results[0].seek_url == "https://cdn.example/video/upload/so_7/v1/clip123.mp4"

    @pytest.mark.asyncio
    async def test_failed_job(self, session, backend, make_video) -> None:
        backend.add("POST", DURABLE_UPLOAD_PATH, json_response({"error": {"message": "quota"}}, 420))
        backend.add("POST", "/api/upload", json_response({"filename": "clip_x.mp4"}))
        backend.add("POST", "/api/process", json_response({"job_id": "job-7"}))
        backend.add(
            "GET",
            "/api/job/job-7",
            json_response({"job_id": "job-7", "status": "failed", "error": "CUDA out of memory"}),
        )

        with pytest.raises(JobFailed, match="CUDA out of memory"):
            await session.process_video(make_video())

        body = json.loads(backend.calls_to("/api/process")[0].content)
        assert "cloudinary_url" not in body
