from __future__ import annotations

import logging
from pathlib import Path
from typing import Sequence

from video_pipeline.errors import SynthesisError
from video_pipeline.models.domain import Artifact
from video_pipeline.services.interfaces import SpeechSynthesizer


class FallbackSynthesizer(SpeechSynthesizer):
    """Tries each synthesizer in order and returns the first success.

    Every provider gets the voice it resolves from the scene's reference;
    a provider without a matching voice is skipped.

    The name of the synthesizer that produced the audio is stored in the
    artifact's ``metadata["provider"]`` and kept in ``last_provider``.
    """

    name = "fallback"

    def __init__(self, synthesizers: Sequence[SpeechSynthesizer], logger: logging.Logger | None = None) -> None:
        if not synthesizers:
            raise ValueError("at least one synthesizer is required")
        self.synthesizers = list(synthesizers)
        self.last_provider: str | None = None
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return any(synth.enabled() for synth in self.synthesizers)

    async def synthesize(self, text: str, voice_ref: str, destination: Path) -> Artifact:
        failures: list[str] = []
        for synth in self.synthesizers:
            if not synth.enabled():
                failures.append(f"{synth.name}: not configured")
                continue
            voice = synth.resolve_voice(voice_ref)
            if not voice:
                failures.append(f"{synth.name}: no voice for {voice_ref!r}")
                continue
            try:
                artifact = await synth.synthesize(text, voice, destination)
            except SynthesisError as exc:
                failures.append(f"{synth.name}: {exc}")
                self.log.warning(
                    "synthesizer failed, trying next",
                    extra={"provider": synth.name, "voice_ref": voice_ref, "error": str(exc)},
                )
                continue
            artifact.metadata["provider"] = synth.name
            self.last_provider = synth.name
            return artifact
        raise SynthesisError("all synthesizers failed: " + "; ".join(failures))
