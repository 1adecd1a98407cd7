from uuid import uuid4

import pytest

import video_pipeline.events.publisher as publisher_module
from video_pipeline.clients.tts import ElevenLabsSynthesizer, EspeakSynthesizer
from video_pipeline.config import Settings
from video_pipeline.errors import SynthesisError
from video_pipeline.events.publisher import JobEventPublisher
from video_pipeline.main import build_synthesizer
from video_pipeline.models.domain import (
    Artifact,
    ArtifactKind,
    Job,
    JobError,
    JobStatus,
    Scene,
    StageRecord,
    StageState,
)
from video_pipeline.services.synthesis import FallbackSynthesizer


class _FakeProducer:
    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.sent = []
        self.closed = False

    def send(self, topic, value, key=None, headers=None):
        self.sent.append({"topic": topic, "value": value, "key": key, "headers": headers})

    def flush(self):
        pass

    def close(self):
        self.closed = True


def _processing_job(**fields) -> Job:
    scene = Scene(id="scene-1", index=0, text="Hello", duration_seconds=2.0, voice_ref="en")
    return Job(
        id=uuid4(),
        status=JobStatus.PROCESSING,
        scenes=[scene],
        stages=[StageRecord(name="per-scene rendering", state=StageState.RUNNING)],
        **fields,
    )


def test_job_events_describe_progress(monkeypatch):
    monkeypatch.setattr(publisher_module, "KafkaProducer", _FakeProducer)
    events = JobEventPublisher(bootstrap_servers="localhost:9092", topic="video_updates")
    job = _processing_job(progress=40, current_step="Rendering scene 1 of 1")

    assert events.publish_job(job) is True
    events.close()

    producer = events._producer
    message = producer.sent[0]
    assert message["topic"] == "video_updates"
    assert message["key"] == str(job.id)
    assert message["headers"] == [("event-type", b"video.job.updated")]
    assert message["value"]["progress"] == 40
    assert message["value"]["stage"] == "per-scene rendering"
    assert message["value"]["result"] is None
    assert "scenes" not in message["value"]
    assert producer.closed


def test_unchanged_snapshots_are_not_resent(monkeypatch):
    monkeypatch.setattr(publisher_module, "KafkaProducer", _FakeProducer)
    events = JobEventPublisher(bootstrap_servers="localhost:9092", topic="video_updates")
    job = _processing_job(progress=40)

    assert events.publish_job(job) is True
    assert events.publish_job(job) is False

    job.status = JobStatus.FAILED
    job.error = JobError(stage="per-scene rendering", message="encoder crashed", kind="render")
    assert events.publish_job(job) is True

    sent = events._producer.sent
    assert len(sent) == 2
    assert sent[1]["value"]["type"] == "video.job.failed"
    assert sent[1]["value"]["error"]["kind"] == "render"


def test_job_events_require_a_topic(monkeypatch):
    monkeypatch.setattr(publisher_module, "KafkaProducer", _FakeProducer)

    with pytest.raises(ValueError):
        JobEventPublisher(bootstrap_servers="localhost:9092", topic="")


@pytest.mark.asyncio
async def test_elevenlabs_without_key_is_disabled(tmp_path):
    synth = ElevenLabsSynthesizer(api_key="")

    assert synth.enabled() is False
    with pytest.raises(SynthesisError):
        await synth.synthesize("Hello", "voice", tmp_path / "audio-000")


@pytest.mark.asyncio
async def test_espeak_missing_binary(tmp_path):
    synth = EspeakSynthesizer(binary="espeak-binary-that-does-not-exist")

    with pytest.raises(SynthesisError, match="not installed"):
        await synth.synthesize("Hello", "en", tmp_path / "audio-000")


def test_synthesizer_chain_follows_configured_order(tmp_path):
    settings = Settings(work_dir=tmp_path, tts_providers=["espeak", "elevenlabs", "unknown"])

    chain = build_synthesizer(settings)

    assert isinstance(chain, FallbackSynthesizer)
    assert [synth.name for synth in chain.synthesizers] == ["espeak", "elevenlabs"]


def test_synthesizer_chain_needs_a_known_provider(tmp_path):
    with pytest.raises(ValueError):
        build_synthesizer(Settings(work_dir=tmp_path, tts_providers=["nope"]))


def test_elevenlabs_voice_resolution():
    synth = ElevenLabsSynthesizer(api_key="key", voices={"en": "21m00Tcm4TlvDq8ikWAM"})

    assert synth.resolve_voice("en") == "21m00Tcm4TlvDq8ikWAM"
    assert synth.resolve_voice("en-GB") == "21m00Tcm4TlvDq8ikWAM"
    assert synth.resolve_voice("EXAVITQu4vr4xnSDxMaL") == "EXAVITQu4vr4xnSDxMaL"
    assert synth.resolve_voice("fr") is None


def test_espeak_voice_resolution():
    synth = EspeakSynthesizer(voices={"21m00Tcm4TlvDq8ikWAM": "en"}, default_voice="en")

    assert synth.resolve_voice("21m00Tcm4TlvDq8ikWAM") == "en"
    assert synth.resolve_voice("de") == "de"
    assert synth.resolve_voice("en-US") == "en-US"
    assert synth.resolve_voice("EXAVITQu4vr4xnSDxMaL") == "en"


@pytest.mark.asyncio
async def test_configured_chain_falls_back_with_a_language_voice(tmp_path, monkeypatch):
    settings = Settings(
        work_dir=tmp_path,
        elevenlabs_api_key="key",
        elevenlabs_voices={"de": "pNInz6obpgDQGcFmaJgB"},
    )
    chain = build_synthesizer(settings)
    elevenlabs, espeak = chain.synthesizers
    seen = []

    async def _rejected(text, voice_ref, destination):
        seen.append(("elevenlabs", voice_ref))
        raise SynthesisError("quota exceeded")

    async def _spoken(text, voice_ref, destination):
        seen.append(("espeak", voice_ref))
        path = destination.with_suffix(".wav")
        path.write_bytes(b"RIFF")
        return Artifact(kind=ArtifactKind.SCENE_AUDIO, path=str(path))

    monkeypatch.setattr(elevenlabs, "synthesize", _rejected)
    monkeypatch.setattr(espeak, "synthesize", _spoken)

    artifact = await chain.synthesize("Guten Tag", "pNInz6obpgDQGcFmaJgB", tmp_path / "audio-000")

    assert seen == [("elevenlabs", "pNInz6obpgDQGcFmaJgB"), ("espeak", "de")]
    assert artifact.metadata["provider"] == "espeak"
