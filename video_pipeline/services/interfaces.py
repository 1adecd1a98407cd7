"""Collaborators the pipeline drives. Implementations live in ``video_pipeline.clients``."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Sequence

from video_pipeline.models.domain import Artifact, Scene, TargetFormat


class SpeechSynthesizer(ABC):
    name: str = "synthesizer"

    def enabled(self) -> bool:
        return True

    def resolve_voice(self, voice_ref: str) -> str | None:
        """Translate a scene's voice reference into this provider's voice, or None if it has none."""
        return voice_ref

    @abstractmethod
    async def synthesize(self, text: str, voice_ref: str, destination: Path) -> Artifact:
        """Write narration for ``text`` next to ``destination``.

        ``destination`` carries no suffix; implementations add the extension of
        the audio they produce. Raises ``SynthesisError``.
        """
        ...


class Renderer(ABC):
    """Produces and transforms video artifacts. Every method raises ``RenderError``."""

    @abstractmethod
    async def render_scene(
        self,
        scene: Scene,
        target_format: TargetFormat,
        audio: Artifact | None,
        destination: Path,
    ) -> Artifact:
        ...

    @abstractmethod
    async def concatenate(
        self,
        segments: Sequence[Artifact],
        target_format: TargetFormat,
        destination: Path,
    ) -> Artifact:
        ...

    @abstractmethod
    async def mix_audio(
        self,
        video: Artifact,
        music: Artifact,
        volume_percent: int,
        destination: Path,
    ) -> Artifact:
        ...

    @abstractmethod
    async def extract_thumbnail(self, video: Artifact, offset_seconds: float, destination: Path) -> Artifact:
        ...

    @abstractmethod
    async def probe_duration(self, video: Artifact) -> float:
        ...

    @abstractmethod
    async def extract_audio(self, video: Artifact, destination: Path) -> Artifact | None:
        """Return the video's audio track, or None when it has none."""
        ...


class ArtifactPublisher(ABC):
    @abstractmethod
    def publish(self, artifact: Artifact, key: str) -> str:
        """Store the artifact under ``key`` and return its public URL. Raises ``PublishError``."""
        ...

    @abstractmethod
    def delete(self, artifact: Artifact) -> None:
        ...
