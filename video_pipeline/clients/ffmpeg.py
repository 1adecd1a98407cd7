from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional, Sequence

import numpy as np
from moviepy import VideoFileClip
from PIL import Image

from video_pipeline.errors import RenderError
from video_pipeline.models.domain import (
    Artifact,
    ArtifactKind,
    Background,
    OutputFormat,
    Scene,
    TargetFormat,
    TextStyle,
)
from video_pipeline.services.interfaces import Renderer

BACKGROUND_COLORS: dict[Background, str] = {
    Background.GRADIENT: "0x1a1a2e",
    Background.SOLID: "0x2d1b69",
    Background.PARTICLES: "0x0f0f23",
    Background.WAVES: "0x1e1e3f",
}

BACKGROUND_EXPRESSIONS: dict[Background, str | None] = {
    Background.GRADIENT: "r='128+127*sin(2*PI*T/10)':g='64+63*sin(2*PI*T/8+PI/3)':b='192+63*sin(2*PI*T/12+2*PI/3)'",
    Background.SOLID: None,
    Background.PARTICLES: "r='255*random(0)*0.3':g='255*random(1)*0.6':b='255*random(2)'",
    Background.WAVES: "r='128+127*sin(X/50+2*PI*T/5)':g='64+63*sin(Y/30+2*PI*T/7)':b='255'",
}

AUDIO_SAMPLE_RATES: dict[OutputFormat, int] = {
    OutputFormat.MP4: 44100,
    OutputFormat.WEBM: 48000,
}


def escape_filter_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace(":", "\\:").replace("'", "\\'")


def background_source(background: Background, width: int, height: int, duration: float, frame_rate: int) -> str:
    """lavfi source graph for an animated scene background."""
    color = BACKGROUND_COLORS.get(background, "0x000000")
    source = f"color=c={color}:s={width}x{height}:d={duration:.3f}:r={frame_rate}"
    expression = BACKGROUND_EXPRESSIONS.get(background)
    if expression:
        source += f",format=rgb24,geq={expression}"
    return source


def text_filter(text_file: Path, style: TextStyle, width: int, duration: float, font_file: str | None) -> str:
    font_size = max(width // 25, 16)
    x = "(w-text_w)/2"
    y = "(h-text_h)/2"
    parts = [f"textfile='{escape_filter_value(str(text_file))}'", "fontcolor=white", "shadowcolor=black@0.6", "shadowx=2", "shadowy=2"]
    if font_file:
        parts.append(f"fontfile='{escape_filter_value(font_file)}'")
    if style == TextStyle.FADE_IN:
        parts += [f"fontsize={font_size}", f"x={x}", f"y={y}", "alpha='min(t,1)'"]
    elif style == TextStyle.TYPEWRITER:
        parts += [f"fontsize={font_size}", f"x={x}", f"y={y}", f"enable='between(t,0,{duration:.3f})'"]
    elif style == TextStyle.SLIDE_UP:
        parts += [f"fontsize={font_size}", f"x={x}", f"y='{y}+100*(1-min(t,1))'"]
    elif style == TextStyle.ZOOM:
        parts += [f"fontsize='{font_size}*min(t*2+0.05,1)'", f"x={x}", f"y={y}"]
    else:
        parts += [f"fontsize={font_size}", f"x={x}", f"y={y}"]
    return "drawtext=" + ":".join(parts)


def codec_args(target_format: TargetFormat, preset: str, crf: int) -> list[str]:
    if target_format.output_format == OutputFormat.WEBM:
        return ["-c:v", "libvpx-vp9", "-crf", str(crf), "-b:v", "0", "-pix_fmt", "yuv420p", "-c:a", "libopus"]
    return ["-c:v", "libx264", "-preset", preset, "-crf", str(crf), "-pix_fmt", "yuv420p", "-c:a", "aac"]


def music_mix_filter(volume_percent: int) -> str:
    """Music at ``volume_percent`` under the narration; narration keeps full level."""
    volume = max(0, min(volume_percent, 100)) / 100
    return (
        f"[1:a]volume={volume:.2f}[bg];"
        "[0:a][bg]amix=inputs=2:duration=first:dropout_transition=0:normalize=0[a]"
    )


def audio_codec(target_format: TargetFormat) -> str:
    return "libopus" if target_format.output_format == OutputFormat.WEBM else "aac"


class FFmpegRenderer(Renderer):
    """Renders scenes with FFmpeg filter graphs; inspection goes through moviepy."""

    def __init__(
        self,
        binary: str = "ffmpeg",
        font_file: str | None = None,
        preset: str = "fast",
        crf: int = 23,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.binary = binary
        self.font_file = font_file if font_file and Path(font_file).exists() else None
        self.preset = preset
        self.crf = crf
        self.log = logger or logging.getLogger(__name__)

    async def render_scene(
        self,
        scene: Scene,
        target_format: TargetFormat,
        audio: Artifact | None,
        destination: Path,
    ) -> Artifact:
        width, height = target_format.dimensions
        output = destination.with_suffix(f".{target_format.output_format.value}")
        text_file = destination.with_suffix(".txt")
        text_file.write_text(scene.text, encoding="utf-8")
        sample_rate = AUDIO_SAMPLE_RATES[target_format.output_format]
        args = [
            "-y",
            "-f",
            "lavfi",
            "-i",
            background_source(scene.background, width, height, scene.duration_seconds, target_format.frame_rate),
        ]
        if audio is not None:
            args += ["-i", audio.path]
        else:
            args += ["-f", "lavfi", "-i", f"anullsrc=channel_layout=stereo:sample_rate={sample_rate}"]
        graph = (
            f"[0:v]{text_filter(text_file, scene.text_style, width, scene.duration_seconds, self.font_file)}[v];"
            f"[1:a]aresample={sample_rate},aformat=channel_layouts=stereo,apad[a]"
        )
        args += [
            "-filter_complex",
            graph,
            "-map",
            "[v]",
            "-map",
            "[a]",
            "-t",
            f"{scene.duration_seconds:.3f}",
            "-r",
            str(target_format.frame_rate),
            *codec_args(target_format, self.preset, self.crf),
            "-ar",
            str(sample_rate),
            str(output),
        ]
        await self._run(args)
        return Artifact(
            kind=ArtifactKind.SCENE_VIDEO,
            path=str(output),
            scene_id=scene.id,
            metadata={"index": scene.index, "duration": scene.duration_seconds},
        )

    async def concatenate(
        self,
        segments: Sequence[Artifact],
        target_format: TargetFormat,
        destination: Path,
    ) -> Artifact:
        if not segments:
            raise RenderError("nothing to concatenate")
        output = destination.with_suffix(f".{target_format.output_format.value}")
        listing = destination.with_suffix(".txt")
        lines = []
        for segment in segments:
            escaped = str(Path(segment.path).resolve()).replace("'", "'\\''")
            lines.append(f"file '{escaped}'")
        listing.write_text("\n".join(lines) + "\n", encoding="utf-8")
        await self._run(["-y", "-f", "concat", "-safe", "0", "-i", str(listing), "-c", "copy", str(output)])
        return Artifact(
            kind=ArtifactKind.CONCATENATED_VIDEO,
            path=str(output),
            metadata={"segments": [segment.scene_id for segment in segments]},
        )

    async def mix_audio(
        self,
        video: Artifact,
        music: Artifact,
        volume_percent: int,
        destination: Path,
    ) -> Artifact:
        source = Path(video.path)
        output = destination.with_suffix(source.suffix)
        target = TargetFormat(output_format=OutputFormat(source.suffix.lstrip(".") or "mp4"))
        graph = music_mix_filter(volume_percent)
        await self._run(
            [
                "-y",
                "-i",
                video.path,
                "-stream_loop",
                "-1",
                "-i",
                music.path,
                "-filter_complex",
                graph,
                "-map",
                "0:v",
                "-map",
                "[a]",
                "-c:v",
                "copy",
                "-c:a",
                audio_codec(target),
                "-shortest",
                str(output),
            ]
        )
        return Artifact(kind=ArtifactKind.MIXED_VIDEO, path=str(output), metadata={"volume_percent": volume_percent})

    async def extract_thumbnail(self, video: Artifact, offset_seconds: float, destination: Path) -> Artifact:
        output = destination.with_suffix(".jpg")

        def _grab() -> None:
            with VideoFileClip(video.path, audio=False) as clip:
                offset = min(max(offset_seconds, 0.0), max(clip.duration - 0.05, 0.0))
                frame = clip.get_frame(offset)
            image = Image.fromarray(np.clip(frame, 0, 255).astype(np.uint8))
            image.convert("RGB").save(output, format="JPEG", quality=90)

        try:
            await asyncio.to_thread(_grab)
        except Exception as exc:
            raise RenderError(f"thumbnail extraction failed: {exc}") from exc
        return Artifact(kind=ArtifactKind.THUMBNAIL, path=str(output), metadata={"offset": offset_seconds})

    async def probe_duration(self, video: Artifact) -> float:
        def _probe() -> float:
            with VideoFileClip(video.path, audio=False) as clip:
                return float(clip.duration or 0.0)

        try:
            return await asyncio.to_thread(_probe)
        except Exception as exc:
            raise RenderError(f"could not read video duration: {exc}") from exc

    async def extract_audio(self, video: Artifact, destination: Path) -> Artifact | None:
        output = destination.with_suffix(".mp3")

        def _extract() -> bool:
            with VideoFileClip(video.path) as clip:
                if clip.audio is None:
                    return False
                clip.audio.write_audiofile(str(output), logger=None)
            return True

        try:
            extracted = await asyncio.to_thread(_extract)
        except Exception as exc:
            raise RenderError(f"audio track extraction failed: {exc}") from exc
        if not extracted:
            return None
        return Artifact(kind=ArtifactKind.AUDIO_TRACK, path=str(output))

    async def _run(self, args: list[str]) -> None:
        self.log.debug("running ffmpeg", extra={"args": args})
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                "-hide_banner",
                "-loglevel",
                "error",
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise RenderError(f"{self.binary} is not installed") from exc
        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-800:]
            raise RenderError(f"ffmpeg exited with code {proc.returncode}: {detail}")
