"""
Paperless-ngx API Client
========================

This module provides a client for interacting with the Paperless-ngx API.
It encapsulates all the logic for making authenticated requests to a
Paperless-ngx instance, handling pagination, and performing the operations
the OCR engine needs: reading document metadata, downloading the original
file, writing extracted text back and fetching thumbnails.

Lookups for a single document return ``None`` when Paperless answers 404 so
callers can tell a missing document apart from a transport failure, which is
raised as a ``requests`` exception after retries are exhausted.
"""

from typing import Generator, Iterable

import requests
import structlog

from .config import Settings
from .utils import retry

log = structlog.get_logger(__name__)

DEFAULT_FILE_TYPE = "application/pdf"


class PaperlessClient:
    """A client for interacting with the Paperless-ngx API."""

    def __init__(self, settings: Settings):
        """Initializes the client with a session and authentication."""
        self.settings = settings
        self._session = requests.Session()
        self._session.headers.update(
            {"Authorization": f"Token {self.settings.PAPERLESS_TOKEN}"}
        )

    def close(self) -> None:
        """Release pooled HTTP connections."""
        self._session.close()

    @retry(retryable_exceptions=(requests.exceptions.RequestException,))
    def _get(self, *args, **kwargs) -> requests.Response:
        """A retriable version of session.get."""
        kwargs.setdefault("timeout", self.settings.REQUEST_TIMEOUT)
        return self._session.get(*args, **kwargs)

    @retry(retryable_exceptions=(requests.exceptions.RequestException,))
    def _patch(self, *args, **kwargs) -> requests.Response:
        """A retriable version of session.patch."""
        kwargs.setdefault("timeout", self.settings.REQUEST_TIMEOUT)
        return self._session.patch(*args, **kwargs)

    def _document_url(self, doc_id: int, suffix: str = "") -> str:
        return f"{self.settings.PAPERLESS_URL}/api/documents/{doc_id}/{suffix}"

    def _list_all(self, url: str) -> Generator[dict, None, None]:
        """
        Generator that follows Paperless-ngx paginated API and yields every result.
        """
        while url:
            response = self._get(url)
            response.raise_for_status()
            page = response.json()
            yield from page.get("results", [])
            url = page.get("next")

    def get_documents_by_tag(self, tag_id: int) -> Iterable[dict]:
        """Yield every document carrying ``tag_id``."""
        url = f"{self.settings.PAPERLESS_URL}/api/documents/?tags__id={tag_id}&page_size=100"
        yield from self._list_all(url)

    def get_document(self, doc_id: int) -> dict | None:
        """Return the document payload, or None when it does not exist."""
        response = self._get(self._document_url(doc_id))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    def get_document_for_ocr(self, doc_id: int) -> dict | None:
        """
        Return the fields the OCR engine needs about a document.

        The mime type of the original file lives on the metadata endpoint; when
        that endpoint is unavailable the file is assumed to be a PDF.
        """
        doc = self.get_document(doc_id)
        if doc is None:
            return None

        file_type = DEFAULT_FILE_TYPE
        response = self._get(self._document_url(doc_id, "metadata/"))
        if response.ok:
            file_type = response.json().get("original_mime_type") or DEFAULT_FILE_TYPE
        else:
            log.warning(
                "Document metadata unavailable; assuming PDF",
                doc_id=doc_id,
                status_code=response.status_code,
            )

        return {
            "id": doc_id,
            "title": doc.get("title") or f"Document {doc_id}",
            "file_type": file_type,
            "content": doc.get("content") or "",
            "original_file_name": doc.get("original_file_name"),
        }

    def download_original_document(self, doc_id: int) -> bytes | None:
        """
        Download the original (unarchived) file of a document.

        This method is a pure network operation and does not interact with the filesystem.
        """
        response = self._get(self._document_url(doc_id, "download/"), params={"original": "true"})
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.content

    def update_document_content(self, doc_id: int, content: str) -> None:
        """Replace the text content Paperless stores for a document."""
        response = self._patch(self._document_url(doc_id), json={"content": content})
        response.raise_for_status()

    def update_document_metadata(self, doc_id: int, *, tags: list[int] | None = None) -> None:
        """Patch document metadata fields; only provided fields are sent."""
        payload = {}
        if tags is not None:
            payload["tags"] = tags
        if not payload:
            return
        response = self._patch(self._document_url(doc_id), json=payload)
        response.raise_for_status()

    def get_thumbnail_image(self, doc_id: int) -> bytes | None:
        """Return the thumbnail bytes, or None when Paperless has none."""
        response = self._get(self._document_url(doc_id, "thumb/"))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.content or None
