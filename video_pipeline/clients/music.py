from __future__ import annotations

import asyncio
import logging
import pathlib
from pathlib import Path
from typing import Any, Optional

import httpx

from video_pipeline.errors import RenderError
from video_pipeline.models.domain import Artifact, ArtifactKind


class MusicLibrary:
    """Resolves a background-music reference and fetches it into a job's work directory.

    A reference is a catalog name, an http(s) URL or a key in artifact storage.
    """

    def __init__(
        self,
        catalog: list[dict[str, str]] | None = None,
        storage: Any | None = None,
        timeout: float = 60.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.catalog = catalog or []
        self.storage = storage
        self.timeout = timeout
        self.log = logger or logging.getLogger(__name__)

    def list_tracks(self) -> list[dict[str, str]]:
        items: list[dict[str, str]] = []
        for entry in self.catalog:
            name = (entry.get("name") or "").strip()
            url = (entry.get("url") or "").strip()
            if not name or not url:
                continue
            items.append(
                {
                    "name": name,
                    "description": entry.get("description"),
                    "author": entry.get("author"),
                    "url": url,
                }
            )
        return items

    def match_catalog(self, name: str | None) -> dict[str, str] | None:
        target = (name or "").strip().lower()
        if not target:
            return None
        for entry in self.catalog:
            if (entry.get("name") or "").strip().lower() == target:
                return entry
        return None

    def resolve(self, reference: str) -> tuple[str, str]:
        """Return ``(location, source)`` where source is url, catalog or storage_key."""
        candidate = (reference or "").strip()
        if not candidate:
            raise RenderError("background music reference is empty")
        entry = self.match_catalog(candidate)
        if entry and (entry.get("url") or "").strip():
            return entry["url"].strip(), "catalog"
        if candidate.lower().startswith(("http://", "https://")):
            return candidate, "url"
        return candidate, "storage_key"

    async def fetch(self, reference: str, destination: Path) -> Artifact:
        location, source = self.resolve(reference)
        suffix = pathlib.PurePosixPath(location.split("?", 1)[0]).suffix or ".mp3"
        path = destination.with_suffix(suffix)
        if location.lower().startswith(("http://", "https://")):
            await self._download(location, path)
        else:
            if self.storage is None:
                raise RenderError(f"background music not found: {reference}")
            await asyncio.to_thread(self.storage.download_to, location, path)
        self.log.info("background music fetched", extra={"source": source, "location": location})
        return Artifact(kind=ArtifactKind.MUSIC_TRACK, path=str(path), metadata={"source": source, "location": location})

    async def _download(self, url: str, path: Path) -> None:
        timeout = httpx.Timeout(
            connect=min(10.0, self.timeout),
            read=self.timeout,
            write=min(10.0, self.timeout),
            pool=None,
        )
        try:
            async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                async with client.stream("GET", url) as resp:
                    resp.raise_for_status()
                    with open(path, "wb") as f:
                        async for chunk in resp.aiter_bytes():
                            if chunk:
                                f.write(chunk)
        except httpx.HTTPError as exc:
            raise RenderError(f"background music download failed: {exc}") from exc
