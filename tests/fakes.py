from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Sequence

from video_pipeline.errors import PublishError, RenderError, SynthesisError
from video_pipeline.models.domain import Artifact, ArtifactKind, Scene, TargetFormat
from video_pipeline.services.interfaces import ArtifactPublisher, Renderer, SpeechSynthesizer


class FakeSynthesizer(SpeechSynthesizer):
    def __init__(
        self,
        name: str = "fake-tts",
        fail: bool = False,
        delay: float = 0.0,
        enabled: bool = True,
        voices: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self.fail = fail
        self.delay = delay
        self._enabled = enabled
        self.voices = voices
        self.calls: list[tuple[str, str]] = []

    def enabled(self) -> bool:
        return self._enabled

    def resolve_voice(self, voice_ref: str) -> str | None:
        if self.voices is None:
            return voice_ref
        return self.voices.get(voice_ref)

    async def synthesize(self, text: str, voice_ref: str, destination: Path) -> Artifact:
        self.calls.append((text, voice_ref))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise SynthesisError(f"{self.name} is down")
        path = destination.with_suffix(".wav")
        path.write_bytes(b"RIFF" + text.encode("utf-8"))
        return Artifact(kind=ArtifactKind.SCENE_AUDIO, path=str(path))


class FakeRenderer(Renderer):
    """Writes tiny marker files and records what it was asked to do."""

    def __init__(self) -> None:
        self.fail_on_index: int | None = None
        self.delays: dict[int, float] = {}
        self.block_at: int | None = None
        self.reached: asyncio.Event | None = None
        self.release: asyncio.Event | None = None
        self.started: list[int] = []
        self.rendered_paths: list[str] = []
        self.rendered_audio: dict[str, str | None] = {}
        self.concat_orders: list[list[int]] = []
        self.mixed: list[tuple[str, int]] = []
        self.thumbnail_offsets: list[float] = []

    async def render_scene(
        self,
        scene: Scene,
        target_format: TargetFormat,
        audio: Artifact | None,
        destination: Path,
    ) -> Artifact:
        self.started.append(scene.index)
        if self.block_at == scene.index and self.reached is not None and self.release is not None:
            self.reached.set()
            await self.release.wait()
        delay = self.delays.get(scene.index)
        if delay:
            await asyncio.sleep(delay)
        if self.fail_on_index == scene.index:
            raise RenderError(f"encoder crashed on scene {scene.index + 1}")
        path = destination.with_suffix(f".{target_format.output_format.value}")
        path.write_text(f"{scene.index}:{scene.text}", encoding="utf-8")
        self.rendered_paths.append(str(path))
        self.rendered_audio[scene.id] = audio.path if audio else None
        return Artifact(
            kind=ArtifactKind.SCENE_VIDEO,
            path=str(path),
            scene_id=scene.id,
            metadata={"index": scene.index, "duration": scene.duration_seconds},
        )

    async def concatenate(
        self,
        segments: Sequence[Artifact],
        target_format: TargetFormat,
        destination: Path,
    ) -> Artifact:
        self.concat_orders.append([segment.metadata["index"] for segment in segments])
        path = destination.with_suffix(f".{target_format.output_format.value}")
        path.write_text("|".join(Path(segment.path).read_text() for segment in segments), encoding="utf-8")
        duration = sum(segment.metadata["duration"] for segment in segments)
        return Artifact(kind=ArtifactKind.CONCATENATED_VIDEO, path=str(path), metadata={"duration": duration})

    async def mix_audio(self, video: Artifact, music: Artifact, volume_percent: int, destination: Path) -> Artifact:
        self.mixed.append((Path(music.path).read_text(), volume_percent))
        path = destination.with_suffix(Path(video.path).suffix)
        path.write_text(Path(video.path).read_text() + "+music", encoding="utf-8")
        return Artifact(kind=ArtifactKind.MIXED_VIDEO, path=str(path), metadata=dict(video.metadata))

    async def extract_thumbnail(self, video: Artifact, offset_seconds: float, destination: Path) -> Artifact:
        self.thumbnail_offsets.append(offset_seconds)
        path = destination.with_suffix(".jpg")
        path.write_bytes(b"\xff\xd8thumb")
        return Artifact(kind=ArtifactKind.THUMBNAIL, path=str(path))

    async def probe_duration(self, video: Artifact) -> float:
        return float(video.metadata.get("duration", 0.0))

    async def extract_audio(self, video: Artifact, destination: Path) -> Artifact | None:
        path = destination.with_suffix(".mp3")
        path.write_bytes(b"ID3audio")
        return Artifact(kind=ArtifactKind.AUDIO_TRACK, path=str(path))


class FakePublisher(ArtifactPublisher):
    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self.fail_on: str | None = None
        self.delay: float = 0.0

    def publish(self, artifact: Artifact, key: str) -> str:
        if self.fail_on and self.fail_on in key:
            raise PublishError(f"bucket rejected {key}")
        content = Path(artifact.path).read_bytes()
        if self.delay:
            time.sleep(self.delay)
        self.objects[key] = content
        artifact.key = key
        artifact.url = f"https://cdn.test/{key}"
        return artifact.url

    def delete(self, artifact: Artifact) -> None:
        if artifact.key:
            self.objects.pop(artifact.key, None)
            self.deleted.append(artifact.key)

    def download_to(self, key: str, path: Path) -> Path:
        if key not in self.objects:
            raise PublishError(f"object not found: {key}")
        path.write_bytes(self.objects[key])
        return path
