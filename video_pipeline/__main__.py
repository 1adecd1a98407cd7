import uvicorn

from video_pipeline.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run("video_pipeline.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
