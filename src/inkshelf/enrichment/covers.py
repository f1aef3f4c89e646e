"""Cover image storage.

Covers live in ``<data_dir>/covers/<record id><ext>``; records store the path
relative to the data directory (``covers/12.jpg``).
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import httpx

from inkshelf.utils.retry import NETWORK_EXCEPTIONS, retry_with_backoff

logger = logging.getLogger(__name__)

COVERS_SUBDIR = "covers"
LOW_QUALITY_THRESHOLD = 50_000  # bytes
MIN_IMAGE_BYTES = 1000  # smaller responses are placeholders
DOWNLOAD_TIMEOUT = 30.0
DOWNLOAD_ATTEMPTS = 2


def extension_for_content_type(content_type: str | None) -> str:
    """``.png`` for PNG responses, ``.jpg`` otherwise."""
    if content_type and "png" in content_type.lower():
        return ".png"
    return ".jpg"


class CoverStore:
    """Download, save and inspect cover images.

    Args:
        data_dir: Data directory; covers go to ``data_dir / "covers"``
        client: HTTP client for downloads (created and owned if None)
    """

    def __init__(self, data_dir: Path, *, client: httpx.AsyncClient | None = None) -> None:
        self.data_dir = Path(data_dir)
        self.covers_dir = self.data_dir / COVERS_SUBDIR
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)
        self._get = retry_with_backoff(
            max_attempts=DOWNLOAD_ATTEMPTS,
            base_delay=0.5,
            max_delay=2.0,
            jitter=0.25,
            retry_exceptions=NETWORK_EXCEPTIONS,
            logger_instance=logger,
        )(self._client.get)

    def absolute(self, rel_path: str) -> Path:
        return self.data_dir / rel_path

    def _write(self, record_id: int, ext: str, data: bytes) -> str:
        self.covers_dir.mkdir(parents=True, exist_ok=True)
        for stale in self.covers_dir.glob(f"{record_id}.*"):
            stale.unlink(missing_ok=True)
        filename = f"{record_id}{ext}"
        (self.covers_dir / filename).write_bytes(data)
        return f"{COVERS_SUBDIR}/{filename}"

    async def save_bytes(self, record_id: int, data: bytes, ext: str) -> str:
        """Store image bytes (e.g. extracted from an archive) as the record's cover.

        Returns:
            Relative cover path

        Raises:
            OSError: Cover could not be written
        """
        ext = ext.lower() if ext.startswith(".") else f".{ext.lower()}"
        rel_path = await asyncio.to_thread(self._write, record_id, ext, data)
        logger.debug("Saved cover for record %d: %s", record_id, rel_path)
        return rel_path

    async def download(self, url: str, record_id: int) -> str | None:
        """Download a cover image. Best effort: failures return None.

        Responses that 404 or are smaller than a real image are ignored.
        """
        logger.info("Downloading cover for record %d", record_id)
        try:
            response = await self._get(url)
            if response.status_code == 404:
                logger.info("Cover not found: %s", url)
                return None
            response.raise_for_status()
            data = response.content
            if len(data) < MIN_IMAGE_BYTES:
                logger.info("Cover image too small (%d bytes), likely placeholder", len(data))
                return None
            ext = extension_for_content_type(response.headers.get("content-type"))
            rel_path = await asyncio.to_thread(self._write, record_id, ext, data)
        except (httpx.HTTPError, OSError) as e:
            logger.warning("Failed to download cover from %s: %s", url, e)
            return None
        logger.info("Cover downloaded: %s", rel_path)
        return rel_path

    def is_low_quality(self, rel_path: str | None) -> bool:
        """Missing or smaller than 50 KB counts as low quality."""
        if not rel_path:
            return True
        try:
            return self.absolute(rel_path).stat().st_size < LOW_QUALITY_THRESHOLD
        except OSError:
            return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
