import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VIDEO_PIPELINE_", env_file=".env", env_file_encoding="utf-8")

    app_name: str = "video-pipeline"
    host: str = "0.0.0.0"
    port: int = 8100
    log_level: str = "INFO"

    # Local scratch space; every job gets its own subdirectory
    work_dir: Path = Path(tempfile.gettempdir()) / "video-pipeline" / "work"
    publish_dir: Path = Path(tempfile.gettempdir()) / "video-pipeline" / "media"
    public_media_path: str = "/media"

    # Object storage configuration
    s3_endpoint_url: str = ""
    s3_region: str | None = None
    s3_public_url: str = ""
    s3_bucket: str = "generated-videos"
    s3_access_key: str = ""
    s3_secret_key: str = ""
    s3_addressing_style: str | None = None
    storage_folder_prefix: str = "jobs"

    # Speech synthesis, tried in order
    tts_providers: list[str] = Field(default_factory=lambda: ["elevenlabs", "espeak"])
    default_voice: str = "en"
    elevenlabs_api_key: str = ""
    elevenlabs_model_id: str = "eleven_multilingual_v2"
    elevenlabs_base_url: str = "https://api.elevenlabs.io"
    # Voice references (language tags) to ElevenLabs voice ids
    elevenlabs_voices: dict[str, str] = Field(default_factory=lambda: {"en": "21m00Tcm4TlvDq8ikWAM"})
    espeak_binary: str = "espeak-ng"
    # Extra voice reference to eSpeak voice entries; ElevenLabs ids map back to their language
    espeak_voices: dict[str, str] = Field(default_factory=dict)
    espeak_default_voice: str = "en"

    # Rendering
    ffmpeg_binary: str = "ffmpeg"
    font_file: str = "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf"
    ffmpeg_preset: str = "fast"
    ffmpeg_crf: int = 23
    thumbnail_offset_seconds: float = 1.0

    # Scene duration policy
    scene_min_seconds: float = 1.0
    scene_max_seconds: float = 15.0
    speaking_rate_wpm: int = 150
    scene_padding_seconds: float = 0.5

    # Execution bounds
    max_concurrent_jobs: int = 4
    scene_concurrency: int = 2
    job_timeout_seconds: float = 900.0
    call_timeout_seconds: float = 300.0
    asset_download_timeout: float = 60.0

    # Reaping of finished jobs
    job_ttl_seconds: float = 3600.0
    reap_interval_seconds: float = 60.0

    music_catalog: list[dict[str, str]] = Field(default_factory=list)

    kafka_enabled: bool = False
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_updates_topic: str = "video_updates"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
