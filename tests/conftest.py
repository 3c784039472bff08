"""
Pytest configuration.

The project uses a ``src/`` layout (package code lives in ``src/common`` and
``src/ocr``). Normally, developers run tests after installing the package
(e.g. ``pip install -e .``).

On some macOS/Python 3.13 setups, editable installs in dot-prefixed virtualenv
folders (like ``.venv``) can result in the generated ``.pth`` file being marked
as hidden, and Python's ``site`` module will skip hidden ``.pth`` files. When
that happens, ``import ocr`` fails even though the source tree is present.

This file adds ``src/`` to ``sys.path`` only when the packages cannot be
imported normally, and provides the fixtures shared across test modules.
"""

from __future__ import annotations

import os
import sys
import threading
from pathlib import Path

import pytest


def _ensure_src_on_path() -> None:
    try:
        import ocr  # noqa: F401
        return
    except ModuleNotFoundError:
        pass

    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    sys.path.insert(0, str(src_dir))


_ensure_src_on_path()

from common.config import Settings  # noqa: E402
from ocr.errors import OcrServiceError  # noqa: E402
from ocr.ledger import ProcessingLedger  # noqa: E402
from ocr.provider import OcrProvider  # noqa: E402


@pytest.fixture
def settings(mocker, tmp_path):
    """Settings with test-friendly timings and a temporary ledger."""
    mocker.patch.dict(
        os.environ,
        {
            "PAPERLESS_TOKEN": "test_token",
            "PRE_TAG_ID": "10",
            "POST_TAG_ID": "11",
            "MAX_RETRIES": "2",
            "OCR_INTER_DOCUMENT_DELAY": "0",
            "LEDGER_DATABASE_URL": f"sqlite:///{tmp_path / 'ledger.db'}",
            "THUMBNAIL_CACHE_DIR": str(tmp_path / "thumbs"),
        },
        clear=True,
    )
    return Settings()


@pytest.fixture
def ledger(settings):
    ledger = ProcessingLedger(settings.LEDGER_DATABASE_URL)
    yield ledger
    ledger.close()


class FakePaperlessClient:
    """In-memory stand-in for `PaperlessClient`."""

    def __init__(self, documents: dict[int, dict] | None = None):
        self.documents = documents or {}
        self.files: dict[int, bytes] = {}
        self.updated_content: dict[int, str] = {}
        self.updated_tags: dict[int, list[int]] = {}

    def add(self, doc_id: int, title: str, content: str = "", data: bytes = b"PDF"):
        self.documents[doc_id] = {
            "id": doc_id,
            "title": title,
            "file_type": "application/pdf",
            "content": content,
            "original_file_name": f"{doc_id}.pdf",
        }
        self.files[doc_id] = data

    def get_document_for_ocr(self, doc_id):
        return self.documents.get(doc_id)

    def download_original_document(self, doc_id):
        return self.files.get(doc_id)

    def update_document_content(self, doc_id, content):
        self.updated_content[doc_id] = content

    def update_document_metadata(self, doc_id, *, tags=None):
        self.updated_tags[doc_id] = tags

    def close(self):
        pass


class FakeOcrProvider(OcrProvider):
    """
    Provider returning canned responses keyed by file content.

    A response may be a dict (returned), an exception (raised), or a
    callable taking the cancellation context.
    """

    def __init__(self, responses: dict[bytes, object] | None = None, healthy: bool = True):
        self.responses = responses or {}
        self.healthy = healthy
        self.calls: list[dict] = []

    def extract(self, content, *, filename, content_type, cancel):
        cancel.raise_if_cancelled()
        self.calls.append(
            {"content": content, "filename": filename, "content_type": content_type}
        )
        response = self.responses.get(content, {"success": True, "full_text": "text"})
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(cancel)
        return response

    def check_health(self):
        return self.healthy


class BlockingResponse:
    """Response callable that blocks until released or cancelled."""

    def __init__(self, payload: dict):
        self.payload = payload
        self.entered = threading.Event()
        self.release = threading.Event()

    def __call__(self, cancel):
        self.entered.set()
        while not self.release.is_set():
            if cancel.wait(0.01):
                cancel.raise_if_cancelled()
        return self.payload


@pytest.fixture
def paperless():
    return FakePaperlessClient()


@pytest.fixture
def provider():
    return FakeOcrProvider()


@pytest.fixture
def service_error():
    return OcrServiceError("OCR processing failed: boom", status_code=500)
