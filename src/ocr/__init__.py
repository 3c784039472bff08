"""
OCR domain package.

This package contains:

- the processing ledger and its ORM models
- the OCR service client and response extraction
- the worker that processes a single Paperless document
- the batch job engine and its events
- the long-running daemon and the administrative CLI
"""

from .engine import BatchSummary, OcrJobEngine
from .events import EventBus, EventKind, QueueListener
from .ledger import ProcessingLedger
from .provider import OcrProvider, RemoteOcrProvider
from .worker import DocumentProcessor, DocumentResult

__all__ = [
    "BatchSummary",
    "DocumentProcessor",
    "DocumentResult",
    "EventBus",
    "EventKind",
    "OcrJobEngine",
    "OcrProvider",
    "ProcessingLedger",
    "QueueListener",
    "RemoteOcrProvider",
]
