from __future__ import annotations

import mimetypes
import shutil
from pathlib import Path

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from video_pipeline.errors import PublishError
from video_pipeline.models.domain import Artifact
from video_pipeline.services.interfaces import ArtifactPublisher


class S3ArtifactStorage(ArtifactPublisher):
    """Publishes artifacts to S3-compatible storage.

    Without credentials it falls back to copying files into ``local_root``,
    served by the API under ``local_url_prefix``.
    """

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
        local_root: Path | str | None = None,
        local_url_prefix: str = "/media",
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self.local_root = Path(local_root) if local_root else None
        self.local_url_prefix = "/" + local_url_prefix.strip("/")
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()}
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    def publish(self, artifact: Artifact, key: str) -> str:
        key = self._normalize_path(key)
        source = Path(artifact.path)
        if not source.is_file():
            raise PublishError(f"artifact file is missing: {source}")
        if self._client is None:
            target = self._local_path(key)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, target)
        else:
            content_type = mimetypes.guess_type(source.name)[0] or "application/octet-stream"
            try:
                self._client.upload_file(
                    str(source),
                    self.bucket,
                    key,
                    ExtraArgs={"ContentType": content_type},
                )
            except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
                raise PublishError(f"S3 upload failed: {exc}") from exc
        artifact.key = key
        artifact.url = self.public_url(key)
        return artifact.url

    def delete(self, artifact: Artifact) -> None:
        if not artifact.key:
            return
        key = self._normalize_path(artifact.key)
        if self._client is None:
            self._local_path(key).unlink(missing_ok=True)
            return
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise PublishError(f"S3 delete failed: {exc}") from exc

    def download_to(self, key: str, path: Path) -> Path:
        key = self._normalize_path(key)
        if self._client is None:
            source = self._local_path(key)
            if not source.is_file():
                raise PublishError(f"object not found in local storage: {key}")
            shutil.copyfile(source, path)
            return path
        try:
            self._client.download_file(self.bucket, key, str(path))
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise PublishError(f"S3 download failed: {exc}") from exc
        return path

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        if self._client is None:
            return f"{self.local_url_prefix}/{clean}"
        if self.public_url_base:
            return f"{self.public_url_base}/{clean}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{clean}"
        return f"/{self.bucket}/{clean}"

    def _local_path(self, key: str) -> Path:
        if self.local_root is None:
            raise PublishError("no local media directory configured")
        return self.local_root / key

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part and part not in (".", ".."))
