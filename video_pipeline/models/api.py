from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .domain import (
    AudioOptions,
    Background,
    Job,
    JobError,
    JobResult,
    JobStatus,
    Scene,
    StageRecord,
    TargetFormat,
    TextStyle,
)


class ScenePayload(BaseModel):
    text: str
    duration_seconds: Optional[float] = Field(default=None, gt=0)
    background: Optional[Background] = None
    text_style: Optional[TextStyle] = None
    voice_ref: Optional[str] = None
    audio_enabled: bool = True


class VideoGenerationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    script: Optional[str] = Field(default=None, validation_alias="script")
    template_id: Optional[str] = Field(default=None, validation_alias="template_id")
    scenes: Optional[List[ScenePayload]] = Field(default=None, validation_alias="scenes")
    voice_ref: Optional[str] = Field(default=None, validation_alias="voice_ref")
    background: Optional[Background] = Field(default=None, validation_alias="background")
    text_style: Optional[TextStyle] = Field(default=None, validation_alias="text_style")
    target_format: TargetFormat = Field(default_factory=TargetFormat, validation_alias="target_format")
    audio_options: AudioOptions = Field(default_factory=AudioOptions, validation_alias="audio_options")

    @model_validator(mode="after")
    def validate_source(self) -> "VideoGenerationRequest":
        sources = [value for value in (self.script, self.template_id, self.scenes) if value is not None]
        if len(sources) > 1:
            raise ValueError("provide only one of script, template_id or scenes")
        return self


class JobSubmittedResponse(BaseModel):
    job_id: UUID
    status: JobStatus


class JobStatusResponse(BaseModel):
    job_id: UUID
    status: JobStatus
    progress: int
    current_step: str
    result: Optional[JobResult] = None
    error: Optional[JobError] = None
    stages: List[StageRecord] = Field(default_factory=list)
    scenes: List[Scene] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        return cls(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            current_step=job.current_step,
            result=job.result,
            error=job.error,
            stages=job.stages,
            scenes=job.scenes,
        )


class JobListResponse(BaseModel):
    items: List[JobStatusResponse]


class CancelResponse(BaseModel):
    cancelled: bool


class TemplateInfo(BaseModel):
    template_id: str
    name: str
    scenes: int
    duration_seconds: float


class TemplateListResponse(BaseModel):
    items: List[TemplateInfo]


class MusicInfo(BaseModel):
    name: str
    description: Optional[str] = None
    author: Optional[str] = None
    url: str


class MusicListResponse(BaseModel):
    items: List[MusicInfo]
