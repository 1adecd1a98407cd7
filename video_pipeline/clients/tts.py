from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path
from typing import Mapping, Optional

import httpx

from video_pipeline.errors import SynthesisError
from video_pipeline.models.domain import Artifact, ArtifactKind
from video_pipeline.services.interfaces import SpeechSynthesizer

ELEVENLABS_VOICE_ID = re.compile(r"[A-Za-z0-9]{20}")
LANGUAGE_TAG = re.compile(r"[a-z]{2,3}([-_][a-z0-9]+)*", re.IGNORECASE)


def language_of(voice_ref: str) -> str:
    return voice_ref.replace("_", "-").split("-", 1)[0].lower()


class ElevenLabsSynthesizer(SpeechSynthesizer):
    """ElevenLabs text-to-speech.

    ``voices`` maps voice references (usually language tags) to ElevenLabs
    voice ids. A reference that already is a voice id is used as is.
    """

    name = "elevenlabs"

    def __init__(
        self,
        api_key: str | None,
        model_id: str = "eleven_multilingual_v2",
        base_url: str = "https://api.elevenlabs.io",
        voices: Mapping[str, str] | None = None,
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model_id = model_id
        self.base_url = base_url.rstrip("/")
        self.voices = dict(voices or {})
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def resolve_voice(self, voice_ref: str) -> str | None:
        ref = (voice_ref or "").strip()
        if ref in self.voices:
            return self.voices[ref]
        if ELEVENLABS_VOICE_ID.fullmatch(ref):
            return ref
        return self.voices.get(language_of(ref))

    async def synthesize(self, text: str, voice_ref: str, destination: Path) -> Artifact:
        if not self.enabled():
            raise SynthesisError("ElevenLabs client is not configured")
        voice_id = self.resolve_voice(voice_ref)
        if not voice_id:
            raise SynthesisError(f"no ElevenLabs voice for {voice_ref!r}")
        url = f"{self.base_url}/v1/text-to-speech/{voice_id}"
        payload = {
            "text": text,
            "model_id": self.model_id,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
        }
        headers = {
            "xi-api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "audio/mpeg",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SynthesisError(f"ElevenLabs request failed: {exc}") from exc
        audio = response.content
        if not audio:
            raise SynthesisError("ElevenLabs returned an empty audio payload")
        path = destination.with_suffix(".mp3")
        path.write_bytes(audio)
        self.log.info(
            "elevenlabs synthesis completed",
            extra={"voice_id": voice_id, "model_id": self.model_id, "content_length": len(audio)},
        )
        return Artifact(kind=ArtifactKind.SCENE_AUDIO, path=str(path), metadata={"voice": voice_id})


class EspeakSynthesizer(SpeechSynthesizer):
    """Offline synthesis through the eSpeak NG command line tool.

    Voice references that are not eSpeak language tags go through ``voices``;
    anything still unknown is spoken with ``default_voice``.
    """

    name = "espeak"

    def __init__(
        self,
        binary: str = "espeak-ng",
        speed_wpm: int = 160,
        voices: Mapping[str, str] | None = None,
        default_voice: str = "en",
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.binary = binary
        self.speed_wpm = speed_wpm
        self.voices = dict(voices or {})
        self.default_voice = default_voice
        self.log = logger or logging.getLogger(__name__)

    def resolve_voice(self, voice_ref: str) -> str | None:
        ref = (voice_ref or "").strip()
        if ref in self.voices:
            return self.voices[ref]
        if LANGUAGE_TAG.fullmatch(ref):
            return ref
        return self.default_voice or None

    async def synthesize(self, text: str, voice_ref: str, destination: Path) -> Artifact:
        voice = self.resolve_voice(voice_ref)
        if not voice:
            raise SynthesisError(f"no eSpeak voice for {voice_ref!r}")
        path = destination.with_suffix(".wav")
        args = ["-v", voice, "-s", str(self.speed_wpm), "-w", str(path), text]
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise SynthesisError(f"{self.binary} is not installed") from exc
        try:
            _, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()[-500:]
            raise SynthesisError(f"{self.binary} exited with code {proc.returncode}: {detail}")
        if not path.exists() or path.stat().st_size == 0:
            raise SynthesisError(f"{self.binary} produced no audio")
        self.log.debug("espeak synthesis completed", extra={"voice": voice, "path": str(path)})
        return Artifact(kind=ArtifactKind.SCENE_AUDIO, path=str(path), metadata={"voice": voice})
