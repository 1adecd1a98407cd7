from __future__ import annotations

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar
from uuid import UUID, uuid4

from video_pipeline.clients.music import MusicLibrary
from video_pipeline.config import Settings
from video_pipeline.errors import (
    PipelineTimeoutError,
    RenderError,
    StageError,
    SynthesisError,
)
from video_pipeline.events.publisher import JobEventPublisher
from video_pipeline.models.api import VideoGenerationRequest
from video_pipeline.models.domain import (
    Artifact,
    AudioOptions,
    Job,
    JobError,
    JobResult,
    JobStatus,
    Scene,
    StageRecord,
    StageState,
    TargetFormat,
)
from video_pipeline.services.interfaces import ArtifactPublisher, Renderer, SpeechSynthesizer
from video_pipeline.services.scenes import build_scenes, decompose_script, decompose_template
from video_pipeline.services.stages import STAGE_LABELS, STAGE_ORDER, STAGE_WEIGHTS, StageName, stage_progress
from video_pipeline.storage.repository import JobStore

T = TypeVar("T")

CANCELLED_BY_CALLER = "Cancelled by caller"
CANCELLED_BY_SHUTDOWN = "Cancelled by shutdown"


class _JobCancelled(Exception):
    """Raised at a checkpoint once the job record is no longer processing."""


@dataclass
class _JobRun:
    job_id: UUID
    workdir: Path
    scenes: List[Scene]
    target_format: TargetFormat
    audio_options: AudioOptions
    stage: Optional[StageName] = None
    artifacts: List[Artifact] = field(default_factory=list)
    published: List[Artifact] = field(default_factory=list)
    uploads: List[asyncio.Future] = field(default_factory=list)
    audio: dict[str, Artifact] = field(default_factory=dict)
    segments: List[Artifact] = field(default_factory=list)
    video: Optional[Artifact] = None
    thumbnail: Optional[Artifact] = None
    duration: float = 0.0
    has_music: bool = False

    def track(self, artifact: Artifact) -> Artifact:
        self.artifacts.append(artifact)
        return artifact

    def path(self, name: str) -> Path:
        return self.workdir / name


class PipelineExecutor:
    """Runs video jobs through the fixed stage list.

    Every job is one asyncio task tracked by the executor. The job store is
    the only state shared between tasks and the only thing status readers
    touch. Stage failures are recorded on the job and never escape the task.
    """

    def __init__(
        self,
        store: JobStore,
        synthesizer: SpeechSynthesizer,
        renderer: Renderer,
        publisher: ArtifactPublisher,
        settings: Settings,
        music: MusicLibrary | None = None,
        events: JobEventPublisher | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.synthesizer = synthesizer
        self.renderer = renderer
        self.publisher = publisher
        self.settings = settings
        self.music = music
        self.events = events
        self.log = logger or logging.getLogger(__name__)
        self._tasks: dict[UUID, asyncio.Task] = {}
        self._slots: asyncio.Semaphore | None = None
        self._closed = False

    # Caller surface

    def submit(self, request: VideoGenerationRequest) -> UUID:
        """Validate and decompose the request, create the job and start it.

        Validation errors are raised here, before any job record exists.
        Must be called from a running event loop.
        """
        if self._closed:
            raise RuntimeError("pipeline executor is shut down")
        scenes = self.decompose(request)
        loop = asyncio.get_running_loop()
        job = Job(
            id=uuid4(),
            scenes=scenes,
            target_format=request.target_format,
            audio_options=request.audio_options,
            stages=[StageRecord(name=stage.value) for stage in STAGE_ORDER],
        )
        self.store.create(job)
        self._emit(job)
        task = loop.create_task(self._run_job(job.id), name=f"video-job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _task, job_id=job.id: self._tasks.pop(job_id, None))
        self.log.info(
            "video job submitted",
            extra={"job_id": str(job.id), "scenes": len(scenes), "resolution": job.target_format.resolution.value},
        )
        return job.id

    def decompose(self, request: VideoGenerationRequest) -> list[Scene]:
        options = {
            "voice_ref": request.voice_ref,
            "background": request.background,
            "text_style": request.text_style,
        }
        if request.scenes is not None:
            return build_scenes(request.scenes, self.settings, **options)
        if request.template_id is not None:
            return decompose_template(request.template_id, self.settings, **options)
        return decompose_script(request.script, self.settings, **options)

    def get_status(self, job_id: UUID) -> Job:
        return self.store.get(job_id)

    def list_jobs(self) -> list[Job]:
        return self.store.list()

    def cancel(self, job_id: UUID) -> bool:
        """Record a cancellation; the running task stops at its next checkpoint.

        Accepted while the job is processing and also while it is still
        pending, in which case it never starts. Returns False when the job
        had already reached a terminal state.
        """
        accepted = False

        def _cancel(job: Job) -> None:
            nonlocal accepted
            if job.status.terminal:
                return
            accepted = True
            self._apply_cancelled(job, CANCELLED_BY_CALLER)

        snapshot = self.store.update(job_id, _cancel)
        if accepted:
            self.log.info("video job cancellation recorded", extra={"job_id": str(job_id)})
            self._emit(snapshot)
        return accepted

    def delete(self, job_id: UUID) -> None:
        self.store.delete(job_id)

    def reap(self, ttl_seconds: float | None = None) -> list[UUID]:
        ttl = self.settings.job_ttl_seconds if ttl_seconds is None else ttl_seconds
        expired = self.store.reap(ttl)
        if expired:
            self.log.info("reaped finished video jobs", extra={"count": len(expired)})
        return expired

    async def reap_forever(self, interval_seconds: float | None = None) -> None:
        interval = interval_seconds or self.settings.reap_interval_seconds
        while True:
            await asyncio.sleep(interval)
            self.reap()

    async def wait(self, job_id: UUID) -> Job:
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait([task])
        return self.store.get(job_id)

    async def shutdown(self) -> None:
        """Cancel every in-flight job and wait until their cleanup has run."""
        self._closed = True
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self.events is not None:
            self.events.close()

    # Job task

    async def _run_job(self, job_id: UUID) -> None:
        run: _JobRun | None = None
        try:
            if self._slots is None:
                self._slots = asyncio.Semaphore(max(1, self.settings.max_concurrent_jobs))
            async with self._slots:
                job = self._update(job_id, self._start_processing)
                run = _JobRun(
                    job_id=job_id,
                    workdir=self.settings.work_dir / str(job_id),
                    scenes=list(job.scenes),
                    target_format=job.target_format,
                    audio_options=job.audio_options,
                )
                run.workdir.mkdir(parents=True, exist_ok=True)
                try:
                    await asyncio.wait_for(self._execute(run), timeout=self.settings.job_timeout_seconds)
                except asyncio.TimeoutError:
                    raise PipelineTimeoutError(
                        f"job exceeded its {self.settings.job_timeout_seconds:g}s time budget",
                        stage=run.stage.value if run.stage else None,
                    ) from None
        except _JobCancelled:
            self.log.info("video job stopped after cancellation", extra={"job_id": str(job_id)})
            await self._cleanup(run)
        except StageError as exc:
            self._fail(job_id, exc, run)
            await self._cleanup(run)
        except asyncio.CancelledError:
            self._mark_cancelled(job_id, CANCELLED_BY_SHUTDOWN)
            await self._cleanup(run)
            raise
        except Exception as exc:
            self.log.exception("video job crashed", extra={"job_id": str(job_id)})
            self._fail(job_id, StageError(str(exc) or type(exc).__name__), run)
            await self._cleanup(run)
        finally:
            if run is not None:
                shutil.rmtree(run.workdir, ignore_errors=True)

    async def _execute(self, run: _JobRun) -> None:
        handlers: Sequence[tuple[StageName, Callable[[_JobRun], Awaitable[bool | None]]]] = (
            (StageName.AUDIO_SYNTHESIS, self._synthesize_audio),
            (StageName.SCENE_RENDERING, self._render_scenes),
            (StageName.CONCATENATION, self._concatenate),
            (StageName.AUDIO_MIXING, self._mix_audio),
            (StageName.THUMBNAIL, self._extract_thumbnail),
            (StageName.FINALIZATION, self._finalize),
        )
        for stage, handler in handlers:
            self._begin_stage(run, stage)
            outcome = await handler(run)
            if stage is not StageName.FINALIZATION:
                self._finish_stage(run, stage, skipped=outcome is False)

    # Stages

    async def _synthesize_audio(self, run: _JobRun) -> bool:
        stage = StageName.AUDIO_SYNTHESIS
        narrated = [scene for scene in run.scenes if scene.audio_enabled]

        async def _synthesize(scene: Scene) -> Artifact:
            artifact = await self._call(
                stage,
                self.synthesizer.synthesize(scene.text, scene.voice_ref, run.path(f"audio-{scene.index:03d}")),
            )
            artifact.scene_id = scene.id
            return run.track(artifact)

        clips = await self._map_scenes(run, stage, narrated, _synthesize, "Synthesizing narration for scene")
        run.audio = {clip.scene_id: clip for clip in clips if clip.scene_id}
        return bool(narrated)

    async def _render_scenes(self, run: _JobRun) -> None:
        stage = StageName.SCENE_RENDERING

        async def _render(scene: Scene) -> Artifact:
            artifact = await self._call(
                stage,
                self.renderer.render_scene(
                    scene,
                    run.target_format,
                    run.audio.get(scene.id),
                    run.path(f"scene-{scene.index:03d}"),
                ),
            )
            artifact.scene_id = artifact.scene_id or scene.id
            return run.track(artifact)

        run.segments = await self._map_scenes(run, stage, run.scenes, _render, "Rendering scene")

    async def _concatenate(self, run: _JobRun) -> None:
        video = await self._call(
            StageName.CONCATENATION,
            self.renderer.concatenate(run.segments, run.target_format, run.path("combined")),
        )
        run.video = run.track(video)

    async def _mix_audio(self, run: _JobRun) -> bool:
        stage = StageName.AUDIO_MIXING
        reference = (run.audio_options.background_music or "").strip()
        if not reference:
            return False
        if self.music is None:
            raise RenderError("background music is not available", stage=stage.value)
        music = run.track(await self._call(stage, self.music.fetch(reference, run.path("music"))))
        self._checkpoint(run)
        mixed = await self._call(
            stage,
            self.renderer.mix_audio(run.video, music, run.audio_options.background_music_volume, run.path("mixed")),
        )
        run.video = run.track(mixed)
        run.has_music = True
        return True

    async def _extract_thumbnail(self, run: _JobRun) -> None:
        stage = StageName.THUMBNAIL
        run.duration = await self._call(stage, self.renderer.probe_duration(run.video))
        offset = self.settings.thumbnail_offset_seconds
        if run.duration < offset:
            offset = run.duration / 2
        thumbnail = await self._call(stage, self.renderer.extract_thumbnail(run.video, offset, run.path("thumbnail")))
        run.thumbnail = run.track(thumbnail)

    async def _finalize(self, run: _JobRun) -> None:
        stage = StageName.FINALIZATION
        audio_track: Artifact | None = None
        if run.audio or run.has_music:
            audio_track = await self._call(stage, self.renderer.extract_audio(run.video, run.path("soundtrack")))
            if audio_track is not None:
                run.track(audio_track)
        self._checkpoint(run)
        prefix = "/".join(part for part in (self.settings.storage_folder_prefix.strip("/"), str(run.job_id)) if part)
        video_url = await self._publish(run, run.video, f"{prefix}/video{Path(run.video.path).suffix}")
        thumbnail_url = await self._publish(run, run.thumbnail, f"{prefix}/thumbnail{Path(run.thumbnail.path).suffix}")
        audio_url = None
        if audio_track is not None:
            audio_url = await self._publish(run, audio_track, f"{prefix}/audio{Path(audio_track.path).suffix}")
        result = JobResult(
            video_url=video_url,
            thumbnail_url=thumbnail_url,
            duration_seconds=round(run.duration, 3),
            audio_url=audio_url,
        )

        def _complete(job: Job) -> None:
            self._ensure_processing(job)
            now = datetime.utcnow()
            record = job.stage(stage.value)
            if record is not None:
                record.state = StageState.COMPLETED
                record.finished_at = now
            job.status = JobStatus.COMPLETED
            job.progress = 100
            job.current_step = "Completed"
            job.result = result
            job.error = None
            job.finished_at = now

        self._update(run.job_id, _complete)
        # Published copies belong to the result now; only scratch files go away.
        run.published.clear()
        run.uploads.clear()
        self.log.info(
            "video job completed",
            extra={"job_id": str(run.job_id), "duration": result.duration_seconds, "video_url": video_url},
        )

    # Helpers

    async def _map_scenes(
        self,
        run: _JobRun,
        stage: StageName,
        scenes: Sequence[Scene],
        worker: Callable[[Scene], Awaitable[T]],
        label: str,
    ) -> list[T]:
        """Run ``worker`` over scenes with a bounded pool, keeping scene order in the result."""
        total = len(scenes)
        if not total:
            return []
        limit = asyncio.Semaphore(max(1, self.settings.scene_concurrency))
        done = 0

        async def _one(scene: Scene) -> T:
            nonlocal done
            async with limit:
                self._checkpoint(run, step=f"{label} {scene.index + 1} of {len(run.scenes)}")
                result = await worker(scene)
            done += 1
            self._advance(run, stage, done, total)
            return result

        tasks = [asyncio.ensure_future(_one(scene)) for scene in scenes]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _call(self, stage: StageName, awaitable: Awaitable[T]) -> T:
        timeout = self.settings.call_timeout_seconds
        try:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        except asyncio.TimeoutError:
            raise PipelineTimeoutError(f"{stage.value} call exceeded {timeout:g}s", stage=stage.value) from None
        except StageError as exc:
            if exc.stage is None:
                exc.stage = stage.value
            raise
        except Exception as exc:
            error_cls = SynthesisError if stage is StageName.AUDIO_SYNTHESIS else RenderError
            raise error_cls(str(exc) or type(exc).__name__, stage=stage.value) from exc

    async def _publish(self, run: _JobRun, artifact: Artifact, key: str) -> str:
        # Registered before the upload starts; a timed-out upload keeps running in its thread.
        artifact.key = key
        run.published.append(artifact)
        upload = asyncio.ensure_future(asyncio.to_thread(self.publisher.publish, artifact, key))
        run.uploads.append(upload)
        return await self._call(StageName.FINALIZATION, asyncio.shield(upload))

    def _checkpoint(self, run: _JobRun, step: str | None = None) -> None:
        if step is None:
            if self.store.get(run.job_id).status != JobStatus.PROCESSING:
                raise _JobCancelled()
            return

        def _mutate(job: Job) -> None:
            self._ensure_processing(job)
            job.current_step = step

        self._update(run.job_id, _mutate)

    def _begin_stage(self, run: _JobRun, stage: StageName) -> None:
        run.stage = stage
        start, _ = STAGE_WEIGHTS[stage]

        def _mutate(job: Job) -> None:
            self._ensure_processing(job)
            record = job.stage(stage.value)
            if record is not None:
                record.state = StageState.RUNNING
                record.started_at = datetime.utcnow()
            job.current_step = STAGE_LABELS[stage]
            job.progress = max(job.progress, start)

        self._update(run.job_id, _mutate)
        self.log.debug("stage started", extra={"job_id": str(run.job_id), "stage": stage.value})

    def _advance(self, run: _JobRun, stage: StageName, done: int, total: int) -> None:
        progress = stage_progress(stage, done, total)

        def _mutate(job: Job) -> None:
            self._ensure_processing(job)
            job.progress = max(job.progress, progress)

        self._update(run.job_id, _mutate)

    def _finish_stage(self, run: _JobRun, stage: StageName, skipped: bool = False) -> None:
        _, end = STAGE_WEIGHTS[stage]

        def _mutate(job: Job) -> None:
            self._ensure_processing(job)
            record = job.stage(stage.value)
            if record is not None:
                record.state = StageState.SKIPPED if skipped else StageState.COMPLETED
                record.finished_at = datetime.utcnow()
            job.progress = max(job.progress, end)

        self._update(run.job_id, _mutate)
        self.log.debug(
            "stage finished",
            extra={"job_id": str(run.job_id), "stage": stage.value, "skipped": skipped},
        )

    def _start_processing(self, job: Job) -> None:
        if job.status != JobStatus.PENDING:
            raise _JobCancelled()
        job.status = JobStatus.PROCESSING
        job.current_step = "Starting"

    def _fail(self, job_id: UUID, exc: StageError, run: _JobRun | None) -> None:
        stage = exc.stage or (run.stage.value if run and run.stage else "startup")
        error = JobError(stage=stage, message=exc.message or str(exc), kind=exc.kind)

        def _mutate(job: Job) -> None:
            if job.status.terminal:
                return
            now = datetime.utcnow()
            record = job.stage(stage)
            if record is not None:
                record.state = StageState.FAILED
                record.finished_at = now
                record.detail = error.message
            job.status = JobStatus.FAILED
            job.error = error
            job.result = None
            job.current_step = f"Failed during {stage}"
            job.finished_at = now

        snapshot = self._update(job_id, _mutate)
        if snapshot.status == JobStatus.FAILED:
            self.log.warning(
                "video job failed",
                extra={"job_id": str(job_id), "stage": stage, "kind": error.kind, "error": error.message},
            )

    def _mark_cancelled(self, job_id: UUID, reason: str) -> None:
        def _mutate(job: Job) -> None:
            if not job.status.terminal:
                self._apply_cancelled(job, reason)

        self._update(job_id, _mutate)

    def _apply_cancelled(self, job: Job, reason: str) -> None:
        now = datetime.utcnow()
        for record in job.stages:
            if record.state == StageState.RUNNING:
                record.state = StageState.CANCELLED
                record.finished_at = now
        job.status = JobStatus.CANCELLED
        job.current_step = reason
        job.result = None
        job.error = None
        job.finished_at = now

    def _ensure_processing(self, job: Job) -> None:
        if job.status != JobStatus.PROCESSING:
            raise _JobCancelled()

    async def _cleanup(self, run: _JobRun | None) -> None:
        """Remove everything the job produced: published copies and scratch files."""
        if run is None:
            return
        if run.uploads:
            await asyncio.gather(*run.uploads, return_exceptions=True)
            run.uploads.clear()
        for artifact in reversed(run.published):
            try:
                await asyncio.to_thread(self.publisher.delete, artifact)
            except Exception:
                self.log.warning(
                    "published artifact cleanup failed",
                    extra={"job_id": str(run.job_id), "key": artifact.key},
                    exc_info=True,
                )
        run.published.clear()
        for artifact in run.artifacts:
            Path(artifact.path).unlink(missing_ok=True)
        run.artifacts.clear()
        shutil.rmtree(run.workdir, ignore_errors=True)

    def _update(self, job_id: UUID, mutator: Callable[[Job], None]) -> Job:
        snapshot = self.store.update(job_id, mutator)
        self._emit(snapshot)
        return snapshot

    def _emit(self, job: Job) -> None:
        if not self.events:
            return
        try:
            self.events.publish_job(job)
        except Exception:  # pragma: no cover
            self.log.warning("job event emission failed", extra={"job_id": str(job.id)}, exc_info=True)
