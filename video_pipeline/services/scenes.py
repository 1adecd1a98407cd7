"""Turns a script, a template or an explicit scene list into ordered scenes.

Everything here is a pure function of its inputs. Validation problems are
raised synchronously so that a bad request never produces a job record.
"""

from __future__ import annotations

from typing import Iterable, Sequence

from video_pipeline.config import Settings
from video_pipeline.errors import EmptyScriptError, UnknownTemplateError, ValidationError
from video_pipeline.models.api import ScenePayload
from video_pipeline.models.domain import Background, Scene, TextStyle

TEMPLATES: dict[str, dict[str, object]] = {
    "interview": {
        "name": "Interview Style",
        "scenes": [
            ("Welcome to our interview today", 3.0),
            ("Let me ask you about your experience", 4.0),
            ("That's a fascinating perspective", 3.0),
        ],
    },
    "story": {
        "name": "Storytelling",
        "scenes": [
            ("Once upon a time, in a world not so different from ours", 5.0),
            ("Our hero faced an incredible challenge", 4.0),
            ("But with determination and courage", 4.0),
            ("They discovered the power within themselves", 4.0),
            ("And changed everything forever", 3.0),
        ],
    },
    "marketing": {
        "name": "Marketing Video",
        "scenes": [
            ("Introducing the future of innovation", 4.0),
            ("Experience unprecedented quality and performance", 4.0),
            ("Join thousands of satisfied customers today", 4.0),
            ("Don't wait - transform your life now!", 3.0),
        ],
    },
}


def clamp_duration(value: float, settings: Settings) -> float:
    return max(settings.scene_min_seconds, min(settings.scene_max_seconds, float(value)))


def estimate_duration(text: str, settings: Settings) -> float:
    """Speaking-rate estimate of how long a line of narration takes."""
    words = max(len(text.split()), 1)
    wpm = max(settings.speaking_rate_wpm, 1)
    return round(clamp_duration(words / wpm * 60.0 + settings.scene_padding_seconds, settings), 2)


def decompose_script(
    script: str | None,
    settings: Settings,
    *,
    voice_ref: str | None = None,
    background: Background | None = None,
    text_style: TextStyle | None = None,
) -> list[Scene]:
    lines = [line.strip() for line in (script or "").splitlines()]
    payloads = [ScenePayload(text=line) for line in lines if line]
    if not payloads:
        raise EmptyScriptError()
    return build_scenes(payloads, settings, voice_ref=voice_ref, background=background, text_style=text_style)


def decompose_template(
    template_id: str,
    settings: Settings,
    *,
    voice_ref: str | None = None,
    background: Background | None = None,
    text_style: TextStyle | None = None,
) -> list[Scene]:
    template = TEMPLATES.get((template_id or "").strip().lower())
    if template is None:
        raise UnknownTemplateError(template_id)
    payloads = [
        ScenePayload(text=text, duration_seconds=duration)
        for text, duration in template["scenes"]  # type: ignore[union-attr]
    ]
    return build_scenes(payloads, settings, voice_ref=voice_ref, background=background, text_style=text_style)


def build_scenes(
    payloads: Sequence[ScenePayload],
    settings: Settings,
    *,
    voice_ref: str | None = None,
    background: Background | None = None,
    text_style: TextStyle | None = None,
) -> list[Scene]:
    scenes: list[Scene] = []
    for payload in payloads:
        text = (payload.text or "").strip()
        if not text:
            continue
        voice = (payload.voice_ref or voice_ref or settings.default_voice or "").strip()
        if not voice:
            raise ValidationError(f"scene {len(scenes) + 1} has no voice reference")
        if payload.duration_seconds:
            duration = clamp_duration(payload.duration_seconds, settings)
        else:
            duration = estimate_duration(text, settings)
        scenes.append(
            Scene(
                id=f"scene-{len(scenes) + 1}",
                index=len(scenes),
                text=text,
                duration_seconds=duration,
                background=payload.background or background or Background.GRADIENT,
                text_style=payload.text_style or text_style or TextStyle.FADE_IN,
                voice_ref=voice,
                audio_enabled=payload.audio_enabled,
            )
        )
    if not scenes:
        raise EmptyScriptError()
    return scenes


def list_templates(settings: Settings) -> Iterable[dict[str, object]]:
    for template_id, template in TEMPLATES.items():
        scenes = template["scenes"]
        yield {
            "template_id": template_id,
            "name": template["name"],
            "scenes": len(scenes),  # type: ignore[arg-type]
            "duration_seconds": sum(clamp_duration(duration, settings) for _, duration in scenes),  # type: ignore[union-attr]
        }
