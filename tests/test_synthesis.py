import pytest

from tests.fakes import FakeSynthesizer
from video_pipeline.errors import SynthesisError
from video_pipeline.services.synthesis import FallbackSynthesizer


@pytest.mark.asyncio
async def test_falls_back_to_next_provider(tmp_path):
    primary = FakeSynthesizer(name="elevenlabs", fail=True)
    backup = FakeSynthesizer(name="espeak")
    chain = FallbackSynthesizer([primary, backup])

    artifact = await chain.synthesize("Hello there", "en", tmp_path / "audio-000")

    assert artifact.metadata["provider"] == "espeak"
    assert chain.last_provider == "espeak"
    assert primary.calls == [("Hello there", "en")]
    assert backup.calls == [("Hello there", "en")]
    assert (tmp_path / "audio-000.wav").exists()


@pytest.mark.asyncio
async def test_disabled_providers_are_skipped(tmp_path):
    unconfigured = FakeSynthesizer(name="elevenlabs", enabled=False)
    backup = FakeSynthesizer(name="espeak")
    chain = FallbackSynthesizer([unconfigured, backup])

    artifact = await chain.synthesize("Hi", "en", tmp_path / "audio-000")

    assert artifact.metadata["provider"] == "espeak"
    assert unconfigured.calls == []


@pytest.mark.asyncio
async def test_all_providers_failing_raises(tmp_path):
    chain = FallbackSynthesizer(
        [FakeSynthesizer(name="elevenlabs", fail=True), FakeSynthesizer(name="espeak", fail=True)]
    )

    with pytest.raises(SynthesisError) as exc_info:
        await chain.synthesize("Hi", "en", tmp_path / "audio-000")

    assert "elevenlabs" in str(exc_info.value)
    assert "espeak" in str(exc_info.value)
    assert chain.last_provider is None


def test_chain_requires_a_provider():
    with pytest.raises(ValueError):
        FallbackSynthesizer([])


@pytest.mark.asyncio
async def test_each_provider_gets_its_own_voice(tmp_path):
    primary = FakeSynthesizer(name="elevenlabs", fail=True, voices={"en": "21m00Tcm4TlvDq8ikWAM"})
    backup = FakeSynthesizer(name="espeak", voices={"en": "en-us"})
    chain = FallbackSynthesizer([primary, backup])

    artifact = await chain.synthesize("Hello there", "en", tmp_path / "audio-000")

    assert primary.calls == [("Hello there", "21m00Tcm4TlvDq8ikWAM")]
    assert backup.calls == [("Hello there", "en-us")]
    assert artifact.metadata["provider"] == "espeak"


@pytest.mark.asyncio
async def test_provider_without_a_voice_is_not_called(tmp_path):
    premium = FakeSynthesizer(name="elevenlabs", voices={})
    backup = FakeSynthesizer(name="espeak")
    chain = FallbackSynthesizer([premium, backup])

    await chain.synthesize("Bonjour", "fr", tmp_path / "audio-000")

    assert premium.calls == []
    assert backup.calls == [("Bonjour", "fr")]
