"""Operator command line for the video search backend."""

import argparse
import asyncio
import json
import sys
from datetime import date
from pathlib import Path
from typing import Any

import structlog

from video_search_client.config import get_settings
from video_search_client.errors import VideoSearchClientError
from video_search_client.models import (
    Connected,
    ProcessingJob,
    ProcessOptions,
    UploadOptions,
    UploadProgress,
)
from video_search_client.observability import configure_logging
from video_search_client.session import VideoSearchSession

logger = structlog.get_logger()


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _print_progress(progress: UploadProgress) -> None:
    print(
        f"\rupload [{progress.stage}] {progress.overall_percent:5.1f}%",
        end="",
        file=sys.stderr,
        flush=True,
    )


def _print_job(job: ProcessingJob) -> None:
    print(f"\njob {job.id}: {job.state.value} {job.progress_message}".rstrip(), file=sys.stderr)


async def _run(args: argparse.Namespace) -> int:
    endpoint = args.endpoint or get_settings().backend_url
    if not endpoint:
        print("No backend URL. Pass --endpoint or set BACKEND_URL.", file=sys.stderr)
        return 2

    async with VideoSearchSession() as session:
        state = await session.connect(endpoint)
        if args.command == "health":
            _print_json(state.model_dump())
            return 0 if isinstance(state, Connected) else 1
        if not isinstance(state, Connected):
            print(f"Backend is not healthy ({state.reason}).", file=sys.stderr)
            return 1

        if args.command == "stats":
            _print_json((await session.search.get_index_stats()).model_dump())
        elif args.command == "dates":
            _print_json(await session.search.list_available_dates())
        elif args.command == "upload":
            options = ProcessOptions(
                video_name=args.name,
                video_date=args.date,
                save_frames=args.save_frames,
                upload_to_pinecone=not args.no_index,
                use_object_detection=args.object_detection,
            )
            upload_options = UploadOptions(
                video_name=args.name,
                use_durable_storage=not args.no_durable,
                concurrent_legs=args.concurrent or None,
            )
            uploaded, result = await session.process_video(
                args.file,
                options,
                on_progress=_print_progress,
                on_update=_print_job,
                upload_options=upload_options,
            )
            _print_json({"upload": uploaded.model_dump(), "result": result.model_dump()})
        elif args.command == "search":
            response = await session.search.search(
                args.query,
                top_k=args.top_k,
                similarity_threshold=args.threshold,
                date_filter=args.date,
                category_filter=args.category,
            )
            _print_json(response.model_dump())
        elif args.command == "jobs":
            _print_json(await session.jobs.list_jobs())
        elif args.command == "delete-job":
            _print_json(await session.jobs.delete_job(args.job_id))
        elif args.command == "clear-index":
            if not args.yes:
                print("Refusing to clear the index without --yes.", file=sys.stderr)
                return 2
            _print_json(await session.search.clear_index())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="video-search",
        description="Upload, process and search videos on a remote inference backend",
    )
    parser.add_argument(
        "--endpoint",
        help="Backend tunnel URL (default: BACKEND_URL environment variable)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: LOG_LEVEL or INFO)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("health", help="Probe the backend")
    sub.add_parser("stats", help="Show vector index statistics")
    sub.add_parser("dates", help="List dates with indexed videos")

    upload = sub.add_parser("upload", help="Upload and process a video")
    upload.add_argument("file", type=Path, help="Video file (mp4, avi, mov, mkv, webm)")
    upload.add_argument("--name", help="Video name (default: file name)")
    upload.add_argument(
        "--date",
        default=date.today().isoformat(),
        help="Recording date, YYYY-MM-DD (default: today)",
    )
    upload.add_argument("--object-detection", action="store_true", help="Enable object detection")
    upload.add_argument("--save-frames", action="store_true", help="Keep extracted frames")
    upload.add_argument("--no-index", action="store_true", help="Do not index embeddings")
    upload.add_argument("--no-durable", action="store_true", help="Skip durable storage upload")
    upload.add_argument("--concurrent", action="store_true", help="Run both upload legs at once")

    search = sub.add_parser("search", help="Semantic search")
    search.add_argument("query", help="Natural language query")
    search.add_argument("--top-k", type=int, default=10, help="Maximum results (1-100)")
    search.add_argument("--threshold", type=float, default=0.5, help="Minimum similarity (0-1)")
    search.add_argument("--date", help="Only videos recorded on this date")
    search.add_argument("--category", help="Only this category/namespace")

    sub.add_parser("jobs", help="List processing jobs")
    delete = sub.add_parser("delete-job", help="Delete a processing job")
    delete.add_argument("job_id")

    clear = sub.add_parser("clear-index", help="Delete every vector from the index")
    clear.add_argument("--yes", action="store_true", help="Confirm")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, json_logs=not settings.is_development)

    try:
        return asyncio.run(_run(args))
    except VideoSearchClientError as e:
        logger.debug("Command failed", command=args.command, error_type=type(e).__name__)
        print(f"\nError: {e.describe()}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
