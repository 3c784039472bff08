"""
Thumbnail cache.

Paperless-ngx serves document thumbnails (usually WebP). This cache stores
them on disk as ``<doc_id>.png`` so dashboards can serve them without
hitting Paperless again.
"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import structlog
from PIL import Image, UnidentifiedImageError

from .paperless import PaperlessClient

log = structlog.get_logger(__name__)


class ThumbnailCache:
    """Fetch-on-miss cache of document thumbnails."""

    def __init__(self, paperless_client: PaperlessClient, cache_dir: str | Path):
        self.paperless_client = paperless_client
        self.cache_dir = Path(cache_dir)

    def get_thumbnail_path(self, doc_id: int) -> Path | None:
        """
        Return the path of the cached thumbnail, fetching it when missing.

        Returns None if Paperless has no thumbnail for the document.
        """
        cache_path = self.cache_dir / f"{doc_id}.png"
        if cache_path.exists():
            log.debug("Thumbnail already cached", doc_id=doc_id)
            return cache_path

        log.info("Thumbnail not cached; fetching from Paperless", doc_id=doc_id)
        data = self.paperless_client.get_thumbnail_image(doc_id)
        if not data:
            log.warning("Thumbnail not found", doc_id=doc_id)
            return None

        cache_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with Image.open(BytesIO(data)) as image:
                image.save(cache_path, format="PNG")
        except UnidentifiedImageError:
            log.warning("Thumbnail is not a decodable image; caching raw bytes", doc_id=doc_id)
            cache_path.write_bytes(data)
        return cache_path
