import pytest

from video_pipeline.clients.music import MusicLibrary
from video_pipeline.clients.s3_storage import S3ArtifactStorage
from video_pipeline.errors import PublishError, RenderError
from video_pipeline.models.domain import Artifact, ArtifactKind


def _local_storage(tmp_path):
    return S3ArtifactStorage(
        bucket="generated-videos",
        access_key="",
        secret_key="",
        local_root=tmp_path / "media",
        local_url_prefix="/media",
    )


def test_local_publish_and_delete(tmp_path):
    storage = _local_storage(tmp_path)
    source = tmp_path / "combined.mp4"
    source.write_bytes(b"video")
    artifact = Artifact(kind=ArtifactKind.CONCATENATED_VIDEO, path=str(source))

    url = storage.publish(artifact, "/jobs/abc/video.mp4")

    assert url == "/media/jobs/abc/video.mp4"
    assert artifact.key == "jobs/abc/video.mp4"
    assert (tmp_path / "media" / "jobs" / "abc" / "video.mp4").read_bytes() == b"video"

    storage.delete(artifact)
    assert not (tmp_path / "media" / "jobs" / "abc" / "video.mp4").exists()


def test_publishing_a_missing_file_fails(tmp_path):
    storage = _local_storage(tmp_path)
    artifact = Artifact(kind=ArtifactKind.THUMBNAIL, path=str(tmp_path / "nope.jpg"))

    with pytest.raises(PublishError):
        storage.publish(artifact, "jobs/abc/thumbnail.jpg")


def test_download_from_local_storage(tmp_path):
    storage = _local_storage(tmp_path)
    stored = tmp_path / "media" / "library" / "calm.mp3"
    stored.parent.mkdir(parents=True)
    stored.write_bytes(b"music")

    target = storage.download_to("library/calm.mp3", tmp_path / "music.mp3")

    assert target.read_bytes() == b"music"
    with pytest.raises(PublishError):
        storage.download_to("library/other.mp3", tmp_path / "other.mp3")


def test_music_references_resolve_by_catalog_url_or_key():
    library = MusicLibrary(catalog=[{"name": "Calm Piano", "url": "https://music.test/calm.mp3"}])

    assert library.resolve("calm piano") == ("https://music.test/calm.mp3", "catalog")
    assert library.resolve("https://cdn.test/x.mp3") == ("https://cdn.test/x.mp3", "url")
    assert library.resolve("library/x.ogg") == ("library/x.ogg", "storage_key")
    with pytest.raises(RenderError):
        library.resolve("  ")


def test_music_listing_skips_incomplete_entries():
    library = MusicLibrary(
        catalog=[
            {"name": "Calm Piano", "url": "https://music.test/calm.mp3", "author": "Studio"},
            {"name": "No url"},
        ]
    )

    assert library.list_tracks() == [
        {"name": "Calm Piano", "description": None, "author": "Studio", "url": "https://music.test/calm.mp3"}
    ]


@pytest.mark.asyncio
async def test_music_fetch_from_storage(tmp_path):
    storage = _local_storage(tmp_path)
    stored = tmp_path / "media" / "library" / "calm.ogg"
    stored.parent.mkdir(parents=True)
    stored.write_bytes(b"ogg")
    library = MusicLibrary(storage=storage)

    artifact = await library.fetch("library/calm.ogg", tmp_path / "music")

    assert artifact.kind == ArtifactKind.MUSIC_TRACK
    assert artifact.path.endswith("music.ogg")
    assert artifact.metadata["source"] == "storage_key"
