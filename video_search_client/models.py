"""Pydantic models for backend requests, responses and client state."""

import math
import mimetypes
from enum import Enum
from pathlib import Path
from typing import Annotated, Literal, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

# =============================================================================
# Endpoint & Connection Models
# =============================================================================


class Endpoint(BaseModel):
    """The active backend base address."""

    model_config = ConfigDict(frozen=True)

    base_url: str = Field(..., description="Base URL without trailing slash")


class HealthStatus(BaseModel):
    """Health payload reported by GET /api/health."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="allow")

    status: str = Field(default="unknown", description="Backend status string")
    engine_ready: bool = Field(
        default=False,
        validation_alias=AliasChoices("engine_initialized", "engine_ready"),
    )
    gpu_available: bool = Field(default=False)
    gpu_name: str | None = Field(default=None)


class Unconfigured(BaseModel):
    """No endpoint set, or the endpoint changed since the last probe."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["unconfigured"] = "unconfigured"


class Probing(BaseModel):
    """A health probe is in flight."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["probing"] = "probing"


class Connected(BaseModel):
    """Last probe reported a healthy backend."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["connected"] = "connected"
    health: HealthStatus


class Disconnected(BaseModel):
    """Last probe failed or reported an unhealthy backend."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["disconnected"] = "disconnected"
    reason: str


ConnectionState = Annotated[
    Union[Unconfigured, Probing, Connected, Disconnected],
    Field(discriminator="kind"),
]


# =============================================================================
# Upload Models
# =============================================================================


class VideoFile(BaseModel):
    """A local video file selected for upload."""

    model_config = ConfigDict(frozen=True)

    path: Path
    name: str
    size_bytes: int = Field(..., ge=0)
    content_type: str | None = None

    @property
    def extension(self) -> str:
        """Lower-case extension without the dot."""
        return Path(self.name).suffix.lower().lstrip(".")

    @classmethod
    def from_path(cls, path: str | Path, content_type: str | None = None) -> "VideoFile":
        """Build from a path on disk, guessing the MIME type from the name."""
        p = Path(path)
        guessed, _ = mimetypes.guess_type(p.name)
        return cls(
            path=p,
            name=p.name,
            size_bytes=p.stat().st_size,
            content_type=content_type or guessed,
        )


class UploadProgress(BaseModel):
    """One progress snapshot delivered to an upload observer."""

    model_config = ConfigDict(frozen=True)

    stage: Literal["durable", "processing"]
    leg_percent: float = Field(..., ge=0.0, le=100.0)
    overall_percent: float = Field(..., ge=0.0, le=100.0)


class UploadOptions(BaseModel):
    """Per-upload options."""

    video_name: str | None = None
    use_durable_storage: bool = True
    concurrent_legs: bool | None = None  # None -> settings.upload_concurrent_legs


class DurableUpload(BaseModel):
    """Result of the durable-storage leg."""

    model_config = ConfigDict(frozen=True)

    secure_url: str
    public_id: str
    thumbnail_url: str | None = None
    duration: float | None = None
    format: str | None = None
    bytes: int | None = None


class BackendUpload(BaseModel):
    """Response from POST /api/upload."""

    filename: str
    original_filename: str | None = None


class UploadResult(BaseModel):
    """Outcome of the two-leg upload pipeline."""

    model_config = ConfigDict(frozen=True)

    storage_handle: str = Field(..., description="Backend-local filename")
    external_url: str | None = Field(None, description="Durable URL, None if that leg failed")
    original_name: str
    size_bytes: int
    public_id: str | None = None


# =============================================================================
# Processing Job Models
# =============================================================================


class ProcessOptions(BaseModel):
    """Body of POST /api/process."""

    video_name: str | None = None
    video_date: str | None = None
    video_id: str | None = None
    cloudinary_url: str | None = None
    save_frames: bool = False
    upload_to_pinecone: bool = True
    use_object_detection: bool = False

    def to_wire(self) -> dict:
        """Serialize for the backend, omitting unset optional fields."""
        return self.model_dump(exclude_none=True)


class JobState(str, Enum):
    """Lifecycle of a processing job."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED)


class ProcessingResult(BaseModel):
    """Statistics reported by a completed job."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    frames_extracted: int = Field(
        0, ge=0, validation_alias=AliasChoices("total_frames_extracted", "frames_extracted")
    )
    frames_captioned: int = Field(
        0, ge=0, validation_alias=AliasChoices("frames_with_captions", "frames_captioned")
    )
    embeddings_generated: int = Field(0, ge=0)
    embeddings_indexed: int = Field(
        0, ge=0, validation_alias=AliasChoices("embeddings_uploaded", "embeddings_indexed")
    )
    processing_seconds: float = Field(
        0.0, validation_alias=AliasChoices("processing_time_seconds", "processing_seconds")
    )
    frame_reduction_percent: float = 0.0


class ProcessingJob(BaseModel):
    """A snapshot of one job as reported by GET /api/job/{id}."""

    model_config = ConfigDict(frozen=True)

    id: str
    state: JobState
    progress_message: str = ""
    result: ProcessingResult | None = None
    error_message: str | None = None


# =============================================================================
# Search Models
# =============================================================================


class SearchRequest(BaseModel):
    """A filtered similarity search."""

    model_config = ConfigDict(extra="forbid")

    query: str = Field(..., min_length=1)
    top_k: int = Field(default=10, ge=1, le=100)
    similarity_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    date_filter: str | None = None
    category_filter: str | None = None
    video_filter: str | None = None

    @field_validator("query")
    @classmethod
    def query_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("query must not be blank")
        return v.strip()

    @field_validator("date_filter", "category_filter", "video_filter")
    @classmethod
    def blank_filter_is_unset(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v

    def to_wire(self) -> dict:
        """Backend body; unset filters are omitted entirely."""
        body: dict = {
            "query": self.query,
            "top_k": self.top_k,
            "similarity_threshold": self.similarity_threshold,
        }
        if self.date_filter is not None:
            body["date_filter"] = self.date_filter
        if self.category_filter is not None:
            body["namespace_filter"] = self.category_filter
        if self.video_filter is not None:
            body["video_filter"] = self.video_filter
        return body


def format_timestamp(seconds: float) -> str:
    """Format seconds as M:SS (or H:MM:SS past an hour)."""
    total = int(math.floor(max(seconds, 0.0)))
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


class SearchResult(BaseModel):
    """A single normalized search hit."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    video_name: str = ""
    caption_text: str = Field("", validation_alias=AliasChoices("caption", "caption_text"))
    timestamp_seconds: float = Field(
        0.0, ge=0.0, validation_alias=AliasChoices("timestamp", "timestamp_seconds")
    )
    time_formatted: str = ""
    similarity_score: float = Field(0.0, ge=0.0, le=1.0)
    frame_id: str = ""
    video_date: str | None = None
    playback_url: str | None = Field(
        None, validation_alias=AliasChoices("cloudinary_url", "playback_url")
    )
    seek_url: str | None = None

    @model_validator(mode="before")
    @classmethod
    def fill_time_formatted(cls, data: object) -> object:
        if isinstance(data, dict) and not data.get("time_formatted"):
            seconds = data.get("timestamp", data.get("timestamp_seconds")) or 0.0
            if isinstance(seconds, (int, float)):
                data = {**data, "time_formatted": format_timestamp(float(seconds))}
        return data

    @field_validator("similarity_score", mode="before")
    @classmethod
    def clamp_score(cls, v: object) -> float:
        if v is None:
            return 0.0
        if not isinstance(v, (int, float)):
            raise ValueError("similarity_score must be a number")
        return min(max(float(v), 0.0), 1.0)

    @field_validator("frame_id", mode="before")
    @classmethod
    def frame_id_as_str(cls, v: object) -> str:
        return "" if v is None else str(v)


class SearchResponse(BaseModel):
    """Normalized response from POST /api/search."""

    results: list[SearchResult] = Field(default_factory=list)
    count: int = Field(0, ge=0)


class BatchSearchResponse(BaseModel):
    """Normalized response from POST /api/search/batch."""

    results: dict[str, list[SearchResult]] = Field(default_factory=dict)


class IndexStats(BaseModel):
    """Vector index statistics from GET /api/stats."""

    model_config = ConfigDict(frozen=True)

    total_vectors: int = 0
    index_name: str = "N/A"
    dimension: int | None = None
