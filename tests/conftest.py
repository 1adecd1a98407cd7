from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Any, Callable

import pytest

from tests.fakes import FakePublisher, FakeRenderer, FakeSynthesizer
from video_pipeline.clients.music import MusicLibrary
from video_pipeline.config import Settings
from video_pipeline.services.pipeline import PipelineExecutor
from video_pipeline.storage.repository import JobStore


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        work_dir=tmp_path / "work",
        publish_dir=tmp_path / "media",
        scene_concurrency=2,
        max_concurrent_jobs=4,
        job_timeout_seconds=10.0,
        call_timeout_seconds=5.0,
        reap_interval_seconds=3600.0,
        default_voice="en",
        music_catalog=[{"name": "Calm Piano", "url": "https://music.test/calm.mp3", "author": "Studio"}],
        kafka_enabled=False,
    )


@pytest.fixture
def synthesizer() -> FakeSynthesizer:
    return FakeSynthesizer()


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()


@pytest.fixture
def publisher() -> FakePublisher:
    return FakePublisher()


@pytest.fixture
def make_executor(synthesizer, renderer, publisher, settings) -> Callable[..., PipelineExecutor]:
    def _make(**overrides: Any) -> PipelineExecutor:
        effective = settings.model_copy(update=overrides) if overrides else settings
        return PipelineExecutor(
            store=JobStore(),
            synthesizer=synthesizer,
            renderer=renderer,
            publisher=publisher,
            settings=effective,
            music=MusicLibrary(catalog=effective.music_catalog, storage=publisher),
        )

    return _make


@pytest.fixture
def executor(make_executor) -> PipelineExecutor:
    return make_executor()


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return _wait_until
