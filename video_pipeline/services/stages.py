from __future__ import annotations

from enum import Enum


class StageName(str, Enum):
    AUDIO_SYNTHESIS = "audio synthesis"
    SCENE_RENDERING = "per-scene rendering"
    CONCATENATION = "concatenation"
    AUDIO_MIXING = "audio mixing"
    THUMBNAIL = "thumbnail extraction"
    FINALIZATION = "finalization"


# Execution order, progress band (start %, end %) and the label shown while running.
STAGE_WEIGHTS: dict[StageName, tuple[int, int]] = {
    StageName.AUDIO_SYNTHESIS: (0, 30),
    StageName.SCENE_RENDERING: (30, 70),
    StageName.CONCATENATION: (70, 80),
    StageName.AUDIO_MIXING: (80, 85),
    StageName.THUMBNAIL: (85, 95),
    StageName.FINALIZATION: (95, 100),
}

STAGE_LABELS: dict[StageName, str] = {
    StageName.AUDIO_SYNTHESIS: "Synthesizing narration",
    StageName.SCENE_RENDERING: "Rendering scenes",
    StageName.CONCATENATION: "Combining scenes",
    StageName.AUDIO_MIXING: "Mixing background music",
    StageName.THUMBNAIL: "Generating thumbnail",
    StageName.FINALIZATION: "Finalizing",
}

STAGE_ORDER: tuple[StageName, ...] = tuple(STAGE_WEIGHTS)


def stage_progress(stage: StageName, done: int = 0, total: int = 1) -> int:
    """Percentage reached after ``done`` of ``total`` items of ``stage``."""
    start, end = STAGE_WEIGHTS[stage]
    if total <= 0:
        return end
    fraction = min(max(done, 0), total) / total
    return start + int((end - start) * fraction)
