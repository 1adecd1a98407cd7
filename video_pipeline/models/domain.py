from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class Background(str, Enum):
    GRADIENT = "gradient"
    SOLID = "solid"
    PARTICLES = "particles"
    WAVES = "waves"


class TextStyle(str, Enum):
    FADE_IN = "fade-in"
    TYPEWRITER = "typewriter"
    SLIDE_UP = "slide-up"
    ZOOM = "zoom"


class Resolution(str, Enum):
    HD = "720p"
    FULL_HD = "1080p"
    UHD = "4k"


RESOLUTION_DIMENSIONS: dict[Resolution, tuple[int, int]] = {
    Resolution.HD: (1280, 720),
    Resolution.FULL_HD: (1920, 1080),
    Resolution.UHD: (3840, 2160),
}


class OutputFormat(str, Enum):
    MP4 = "mp4"
    WEBM = "webm"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


class StageState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ArtifactKind(str, Enum):
    SCENE_AUDIO = "scene_audio"
    SCENE_VIDEO = "scene_video"
    CONCATENATED_VIDEO = "concatenated_video"
    MUSIC_TRACK = "music_track"
    MIXED_VIDEO = "mixed_video"
    THUMBNAIL = "thumbnail"
    AUDIO_TRACK = "audio_track"


class Scene(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    index: int
    text: str
    duration_seconds: float
    background: Background = Background.GRADIENT
    text_style: TextStyle = TextStyle.FADE_IN
    voice_ref: str
    audio_enabled: bool = True


class TargetFormat(BaseModel):
    model_config = ConfigDict(frozen=True)

    resolution: Resolution = Resolution.HD
    frame_rate: int = Field(default=30, ge=1, le=60)
    output_format: OutputFormat = OutputFormat.MP4

    @property
    def dimensions(self) -> tuple[int, int]:
        return RESOLUTION_DIMENSIONS[self.resolution]


class AudioOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    background_music: Optional[str] = None
    background_music_volume: int = Field(default=30, ge=0, le=100)


class Artifact(BaseModel):
    kind: ArtifactKind
    path: str
    scene_id: Optional[str] = None
    key: Optional[str] = None
    url: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class StageRecord(BaseModel):
    name: str
    state: StageState = StageState.PENDING
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    detail: Optional[str] = None


class JobResult(BaseModel):
    video_url: str
    thumbnail_url: str
    duration_seconds: float
    audio_url: Optional[str] = None


class JobError(BaseModel):
    stage: str
    message: str
    kind: str = "internal"


class Job(BaseModel):
    id: UUID
    status: JobStatus = JobStatus.PENDING
    progress: int = Field(default=0, ge=0, le=100)
    current_step: str = "Queued"
    scenes: List[Scene] = Field(default_factory=list)
    target_format: TargetFormat = Field(default_factory=TargetFormat)
    audio_options: AudioOptions = Field(default_factory=AudioOptions)
    stages: List[StageRecord] = Field(default_factory=list)
    result: Optional[JobResult] = None
    error: Optional[JobError] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    finished_at: Optional[datetime] = None

    def stage(self, name: str) -> StageRecord | None:
        for record in self.stages:
            if record.name == name:
                return record
        return None
