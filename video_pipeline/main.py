from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.staticfiles import StaticFiles

from video_pipeline.clients.ffmpeg import FFmpegRenderer
from video_pipeline.clients.music import MusicLibrary
from video_pipeline.clients.s3_storage import S3ArtifactStorage
from video_pipeline.clients.tts import ElevenLabsSynthesizer, EspeakSynthesizer
from video_pipeline.config import Settings, get_settings
from video_pipeline.errors import JobActiveError, JobNotFoundError, ValidationError
from video_pipeline.events.publisher import JobEventPublisher
from video_pipeline.models.api import (
    CancelResponse,
    JobListResponse,
    JobStatusResponse,
    JobSubmittedResponse,
    MusicInfo,
    MusicListResponse,
    TemplateInfo,
    TemplateListResponse,
    VideoGenerationRequest,
)
from video_pipeline.services.interfaces import SpeechSynthesizer
from video_pipeline.services.pipeline import PipelineExecutor
from video_pipeline.services.scenes import list_templates
from video_pipeline.services.synthesis import FallbackSynthesizer
from video_pipeline.storage.repository import JobStore

log = logging.getLogger(__name__)


def build_synthesizer(settings: Settings) -> SpeechSynthesizer:
    available: dict[str, SpeechSynthesizer] = {
        "elevenlabs": ElevenLabsSynthesizer(
            api_key=settings.elevenlabs_api_key,
            model_id=settings.elevenlabs_model_id,
            base_url=settings.elevenlabs_base_url,
            voices=settings.elevenlabs_voices,
        ),
        "espeak": EspeakSynthesizer(
            binary=settings.espeak_binary,
            voices={
                **{voice_id: language for language, voice_id in settings.elevenlabs_voices.items()},
                **settings.espeak_voices,
            },
            default_voice=settings.espeak_default_voice,
        ),
    }
    chain = [available[name] for name in settings.tts_providers if name in available]
    if not chain:
        raise ValueError(f"no known TTS providers in {settings.tts_providers}")
    return FallbackSynthesizer(chain)


def build_executor(settings: Settings) -> PipelineExecutor:
    storage = S3ArtifactStorage(
        bucket=settings.s3_bucket,
        access_key=settings.s3_access_key,
        secret_key=settings.s3_secret_key,
        endpoint_url=settings.s3_endpoint_url,
        region_name=settings.s3_region,
        public_url=settings.s3_public_url,
        addressing_style=settings.s3_addressing_style,
        local_root=settings.publish_dir,
        local_url_prefix=settings.public_media_path,
    )
    events: JobEventPublisher | None = None
    if settings.kafka_enabled and settings.kafka_updates_topic:
        try:
            events = JobEventPublisher(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                topic=settings.kafka_updates_topic,
            )
        except Exception:  # pragma: no cover - best effort logging
            log.warning(
                "job event publisher unavailable",
                extra={"topic": settings.kafka_updates_topic},
                exc_info=True,
            )
    return PipelineExecutor(
        store=JobStore(),
        synthesizer=build_synthesizer(settings),
        renderer=FFmpegRenderer(
            binary=settings.ffmpeg_binary,
            font_file=settings.font_file,
            preset=settings.ffmpeg_preset,
            crf=settings.ffmpeg_crf,
        ),
        publisher=storage,
        settings=settings,
        music=MusicLibrary(
            catalog=settings.music_catalog,
            storage=storage,
            timeout=settings.asset_download_timeout,
        ),
        events=events,
    )


def create_app(settings: Settings | None = None, executor: PipelineExecutor | None = None) -> FastAPI:
    settings = settings or (executor.settings if executor else get_settings())
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        pipeline = executor or build_executor(settings)
        app.state.pipeline = pipeline
        reaper = asyncio.create_task(pipeline.reap_forever(), name="video-job-reaper")
        try:
            yield
        finally:
            reaper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reaper
            await pipeline.shutdown()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.dependency_overrides[get_settings] = lambda: settings
    uses_local_media = not (settings.s3_bucket and settings.s3_access_key and settings.s3_secret_key)
    if uses_local_media:
        settings.publish_dir.mkdir(parents=True, exist_ok=True)
        app.mount(settings.public_media_path, StaticFiles(directory=settings.publish_dir), name="media")
    _register_routes(app)
    return app


def get_pipeline(request: Request) -> PipelineExecutor:
    return request.app.state.pipeline


def _register_routes(app: FastAPI) -> None:
    @app.post("/videos", response_model=JobSubmittedResponse, status_code=status.HTTP_202_ACCEPTED)
    async def create_video(
        payload: VideoGenerationRequest,
        pipeline: PipelineExecutor = Depends(get_pipeline),
    ) -> JobSubmittedResponse:
        try:
            job_id = pipeline.submit(payload)
        except ValidationError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        job = pipeline.get_status(job_id)
        return JobSubmittedResponse(job_id=job.id, status=job.status)

    @app.get("/videos", response_model=JobListResponse)
    def list_videos(pipeline: PipelineExecutor = Depends(get_pipeline)) -> JobListResponse:
        return JobListResponse(items=[JobStatusResponse.from_job(job) for job in pipeline.list_jobs()])

    @app.get("/videos/{job_id}", response_model=JobStatusResponse)
    def get_video(job_id: UUID, pipeline: PipelineExecutor = Depends(get_pipeline)) -> JobStatusResponse:
        try:
            job = pipeline.get_status(job_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return JobStatusResponse.from_job(job)

    @app.post("/videos/{job_id}:cancel", response_model=CancelResponse)
    def cancel_video(job_id: UUID, pipeline: PipelineExecutor = Depends(get_pipeline)) -> CancelResponse:
        try:
            cancelled = pipeline.cancel(job_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        return CancelResponse(cancelled=cancelled)

    @app.delete("/videos/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
    def delete_video(job_id: UUID, pipeline: PipelineExecutor = Depends(get_pipeline)) -> Response:
        try:
            pipeline.delete(job_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
        except JobActiveError as exc:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/templates", response_model=TemplateListResponse)
    def templates(settings: Settings = Depends(get_settings)) -> TemplateListResponse:
        return TemplateListResponse(items=[TemplateInfo(**item) for item in list_templates(settings)])

    @app.get("/music", response_model=MusicListResponse)
    def music(pipeline: PipelineExecutor = Depends(get_pipeline)) -> MusicListResponse:
        tracks = pipeline.music.list_tracks() if pipeline.music else []
        return MusicListResponse(items=[MusicInfo(**track) for track in tracks])


app = create_app()
