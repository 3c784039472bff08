"""
Exceptions raised by the OCR engine.

Per-document errors (everything except the batch precondition errors) are
caught by the document worker and turned into failed results, so a single
bad document never stops a batch.
"""


class OcrError(Exception):
    """Base exception for all OCR processing errors."""


class DocumentNotFoundError(OcrError):
    """The document or its file does not exist in Paperless."""


class OcrTransportError(OcrError):
    """Network failure while talking to the OCR backend."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class OcrServiceError(OcrTransportError):
    """The OCR backend answered with an HTTP error status."""


class InvalidOcrResponseError(OcrError):
    """The OCR backend returned a malformed or unsuccessful payload."""


class EmptyExtractionError(OcrError):
    """The OCR payload contained no usable text."""


class OcrCancelledError(OcrError):
    """Processing was stopped by a user request."""


class BatchAlreadyRunningError(OcrError):
    """A batch is already active on this engine."""


class EmptyBatchError(OcrError, ValueError):
    """No document ids were supplied."""
