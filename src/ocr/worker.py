"""
Document Processing Worker
==========================

This module defines the `DocumentProcessor` class, which is responsible for
processing a single Paperless-ngx document through the OCR service. It
brings together the Paperless client, the OCR provider, the extractor and
the processing ledger.

The processor handles the whole lifecycle of one attempt: reading the
document's metadata, recording the start in the ledger, downloading the
original file, submitting it for OCR, normalizing the response, writing the
text back to Paperless and recording the outcome.

`DocumentProcessor.process` never raises. Every outcome, including
failures and cancellation, comes back as a `DocumentResult` so the batch
loop can move on to the next document.
"""

from __future__ import annotations

import dataclasses
import datetime as dt
import time
from dataclasses import dataclass, field

import structlog

from common.config import Settings
from common.paperless import PaperlessClient
from .cancellation import CANCELLED_MESSAGE, CancellationContext
from .errors import DocumentNotFoundError, OcrCancelledError
from .extraction import enrich_response, extract_text
from .ledger import ProcessingLedger
from .provider import OcrProvider, content_type_for, file_extension_for

log = structlog.get_logger(__name__)


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class DocumentResult:
    """Outcome of one processing attempt."""

    document_id: int
    success: bool
    document_title: str | None = None
    extracted_text: str | None = None
    markdown_text: str | None = None
    has_markdown: bool = False
    text_length: int = 0
    original_length: int = 0
    processing_time_ms: int = 0
    error: str | None = None
    http_status: int | None = None
    was_cancelled: bool = False
    timestamp: dt.datetime = field(default_factory=_now)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)


class DocumentProcessor:
    """
    Runs single documents through OCR and records the outcome.
    """

    def __init__(
        self,
        paperless_client: PaperlessClient,
        ocr_provider: OcrProvider,
        ledger: ProcessingLedger,
        settings: Settings,
    ):
        self.paperless_client = paperless_client
        self.ocr_provider = ocr_provider
        self.ledger = ledger
        self.settings = settings

    def process(self, document_id: int, cancel: CancellationContext) -> DocumentResult:
        """
        Execute the end-to-end processing of one document.
        """
        log.info("Processing document", doc_id=document_id)
        start = time.monotonic()
        title = f"Document {document_id}"
        try:
            details = self.paperless_client.get_document_for_ocr(document_id)
            if details is None:
                raise DocumentNotFoundError(
                    f"Document {document_id} not found in Paperless-ngx"
                )
            title = details.get("title") or title

            self.ledger.record_start(document_id, title)

            content = self.paperless_client.download_original_document(document_id)
            if content is None:
                raise DocumentNotFoundError(f"Failed to download document {document_id}")

            file_type = details.get("file_type")
            response = self.ocr_provider.extract(
                content,
                filename=f"document_{document_id}.{file_extension_for(file_type)}",
                content_type=content_type_for(file_type),
                cancel=cancel,
            )
            extraction = extract_text(response)
            log.info(
                "Extracted text from OCR response",
                doc_id=document_id,
                source=extraction.source,
                text_length=len(extraction.text),
            )

            self.paperless_client.update_document_content(document_id, extraction.text)

            elapsed_ms = self._elapsed_ms(start)
            original_length = len(details.get("content") or "")
            self.ledger.record_success(
                document_id,
                title,
                original_length,
                len(extraction.text),
                elapsed_ms,
                enrich_response(response, extraction),
            )
        except OcrCancelledError:
            log.info("Document processing cancelled", doc_id=document_id)
            return DocumentResult(
                document_id=document_id,
                success=False,
                document_title=title,
                error=CANCELLED_MESSAGE,
                processing_time_ms=self._elapsed_ms(start),
                was_cancelled=True,
            )
        except Exception as e:
            return self._record_failure(document_id, title, e, start)

        log.info(
            "Finished processing document",
            doc_id=document_id,
            text_length=len(extraction.text),
            elapsed_ms=elapsed_ms,
        )
        return DocumentResult(
            document_id=document_id,
            success=True,
            document_title=title,
            extracted_text=extraction.text,
            markdown_text=extraction.markdown,
            has_markdown=extraction.has_markdown,
            text_length=len(extraction.text),
            original_length=original_length,
            processing_time_ms=elapsed_ms,
        )

    def _record_failure(
        self, document_id: int, title: str, error: Exception, start: float
    ) -> DocumentResult:
        elapsed_ms = self._elapsed_ms(start)
        message = str(error) or error.__class__.__name__
        http_status = getattr(error, "status_code", None)
        log.warning(
            "Document processing failed",
            doc_id=document_id,
            error=message,
            error_type=error.__class__.__name__,
            http_status=http_status,
        )
        try:
            self.ledger.record_failure(document_id, title, message, elapsed_ms)
        except Exception:
            log.exception("Failed to record processing failure", doc_id=document_id)
        return DocumentResult(
            document_id=document_id,
            success=False,
            document_title=title,
            error=message,
            http_status=http_status,
            processing_time_ms=elapsed_ms,
        )

    @staticmethod
    def _elapsed_ms(start: float) -> int:
        return int((time.monotonic() - start) * 1000)
