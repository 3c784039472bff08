"""
OCR Service Client
==================

This module talks to the remote OCR service. It defines a common interface
for OCR providers and the HTTP implementation used in production.

The `OcrProvider` abstract base class keeps the engine independent of the
transport, so tests (or another backend) can plug in their own provider.
`RemoteOcrProvider` uploads the original document as multipart form data and
returns the decoded JSON response; turning that response into text is the
job of `ocr.extraction`.

Uploads can take minutes for large multi-page documents, so each upload runs
on a helper thread while the caller waits on the batch's cancellation
context. Stopping a batch shuts down the upload's socket through
`AbortableAdapter`, which ends the request on the helper thread and returns
control to the engine immediately.
"""

from __future__ import annotations

import socket
import threading
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import requests
import structlog
from requests.adapters import HTTPAdapter

from common.config import Settings
from .cancellation import CancellationContext
from .errors import InvalidOcrResponseError, OcrServiceError, OcrTransportError

log = structlog.get_logger(__name__)

FILE_EXTENSIONS = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/tiff": "tiff",
    "image/bmp": "bmp",
    "image/gif": "gif",
}


def file_extension_for(file_type: str | None) -> str:
    """Map a Paperless mime type to an upload file extension (PDF by default)."""
    return FILE_EXTENSIONS.get((file_type or "").lower(), "pdf")


def content_type_for(file_type: str | None) -> str:
    return file_type or "application/pdf"


def describe_http_error(status_code: int, message: str) -> str:
    """Prefix the backend's message with what the status code means for the user."""
    if status_code == 400:
        return f"Unsupported file format or invalid request: {message}"
    if status_code == 500:
        return f"OCR processing failed: {message}"
    return message


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        message = body.get("detail") or body.get("error")
        if message:
            return str(message)
    return f"HTTP {response.status_code} error from OCR service"


class AbortableAdapter(HTTPAdapter):
    """
    Transport adapter that can tear down the sockets it opened.

    Closing a `requests.Session` only drops idle pooled connections; a
    connection in the middle of a request stays checked out until the server
    answers. `abort` shuts down every socket this adapter created, so a
    blocked request fails right away with a connection error.
    """

    def __init__(self, **kwargs):
        self._sockets: list[socket.socket] = []
        self._lock = threading.Lock()
        self._aborted = False
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        super().init_poolmanager(*args, **kwargs)
        self.poolmanager.pool_classes_by_scheme = {
            scheme: self._tracking_pool(pool_cls)
            for scheme, pool_cls in self.poolmanager.pool_classes_by_scheme.items()
        }

    def _tracking_pool(self, pool_cls):
        adapter = self

        class TrackingConnection(pool_cls.ConnectionCls):
            def connect(self):
                super().connect()
                adapter._track(self.sock)

        return type(pool_cls.__name__, (pool_cls,), {"ConnectionCls": TrackingConnection})

    def _track(self, sock: socket.socket) -> None:
        with self._lock:
            if not self._aborted:
                self._sockets.append(sock)
                return
        # aborted while connecting
        _shutdown(sock)

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            sockets, self._sockets = self._sockets, []
        for sock in sockets:
            _shutdown(sock)
        log.debug("Aborted OCR upload connections", count=len(sockets))


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # already closed by the peer or by urllib3
        pass


class OcrProvider(ABC):
    """Abstract base class for OCR providers."""

    def __init__(self, settings: Settings):
        self.settings = settings

    @abstractmethod
    def extract(
        self,
        content: bytes,
        *,
        filename: str,
        content_type: str,
        cancel: CancellationContext,
    ) -> dict:
        """
        Run OCR on a document and return the raw response payload.

        Raises `OcrCancelledError` when ``cancel`` fires before the
        response arrives.
        """
        raise NotImplementedError

    @abstractmethod
    def check_health(self) -> bool:
        """Return True if the backend is ready; never raises."""
        raise NotImplementedError


class RemoteOcrProvider(OcrProvider):
    """OCR provider backed by the OCR HTTP service."""

    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], requests.Session] = requests.Session,
    ):
        super().__init__(settings)
        self._session_factory = session_factory

    def _url(self, path: str) -> str:
        return f"{self.settings.OCR_SERVICE_URL}{path}"

    def check_health(self) -> bool:
        session = self._session_factory()
        try:
            response = session.get(
                self._url("/health"), timeout=self.settings.OCR_HEALTH_TIMEOUT
            )
            if response.status_code != 200:
                log.warning("OCR service unhealthy", status_code=response.status_code)
                return False
            health = response.json()
            log.info(
                "OCR service health check",
                status=health.get("status"),
                predictors_loaded=health.get("predictors_loaded"),
                supported_formats=health.get("supported_formats"),
                version=health.get("version") or health.get("surya_version"),
            )
            return health.get("status") == "healthy"
        except Exception as e:
            log.warning("OCR service health check failed", error=str(e))
            return False
        finally:
            session.close()

    def _post_extract(
        self, session: requests.Session, content: bytes, filename: str, content_type: str
    ) -> requests.Response:
        return session.post(
            self._url("/ocr/extract"),
            files={"file": (filename, content, content_type)},
            data=self.settings.ocr_form_fields(),
            headers={"Accept": "application/json"},
            timeout=self.settings.OCR_REQUEST_TIMEOUT,
        )

    def extract(
        self,
        content: bytes,
        *,
        filename: str,
        content_type: str,
        cancel: CancellationContext,
    ) -> dict:
        cancel.raise_if_cancelled()

        session = self._session_factory()
        transport = AbortableAdapter()
        session.mount("http://", transport)
        session.mount("https://", transport)

        def abort() -> None:
            transport.abort()
            session.close()

        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ocr-upload")
        handle = cancel.add_callback(abort)
        try:
            log.info(
                "Sending document to OCR service",
                filename=filename,
                size_bytes=len(content),
            )
            future = executor.submit(
                self._post_extract, session, content, filename, content_type
            )
            try:
                response = cancel.wait_for(future)
            except requests.exceptions.RequestException as e:
                raise OcrTransportError(f"OCR service request failed: {e}") from e
        finally:
            cancel.remove_callback(handle)
            # the socket is gone after an abort, so the upload thread ends promptly
            executor.shutdown(wait=True)
            session.close()

        if response.status_code >= 400:
            message = describe_http_error(response.status_code, _error_message(response))
            raise OcrServiceError(message, status_code=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidOcrResponseError("OCR service returned a non-JSON response") from e
        if not isinstance(payload, dict):
            raise InvalidOcrResponseError("OCR service returned an unexpected payload")
        return payload
