"""
OCR Job Engine
==============

The engine runs batches of Paperless documents through the OCR service, one
document at a time, and keeps the processing ledger up to date.

Only one batch may run per engine at a time. `start_batch` runs the batch on
the calling thread; `start_batch_in_background` checks the same
preconditions synchronously and then runs the batch on a worker thread, so
`stop` and `get_status` can be called from anywhere while it runs.

Runtime state lives in a single `_BatchState` object that is replaced at the
start of every batch. All reads and writes of it happen under the engine
lock, so a status snapshot never mixes counters from two updates.

Events (see `ocr.events`) are emitted in this order for a batch:

    started -> (documentStarted -> documentCompleted)* -> completed | stopped | error

When every requested document has already been processed, the batch emits a
single ``completed`` event and no session is recorded.
"""

from __future__ import annotations

import datetime as dt
import threading
from dataclasses import dataclass, field
from typing import Iterable

import structlog

from common.config import Settings
from common.paperless import PaperlessClient
from common.utils import new_session_id
from .cancellation import CancellationContext
from .errors import BatchAlreadyRunningError, EmptyBatchError
from .events import (
    BatchCompleted,
    BatchEvent,
    BatchFailed,
    BatchStarted,
    BatchStopped,
    DocumentCompleted,
    DocumentStarted,
    EventBus,
)
from .extraction import replay_stored_response
from .ledger import ProcessingLedger
from .models import (
    SESSION_COMPLETED,
    SESSION_FAILED,
    SESSION_RUNNING,
    SESSION_STOPPED,
    STATUS_SUCCESS,
)
from .provider import OcrProvider
from .worker import DocumentProcessor, DocumentResult

log = structlog.get_logger(__name__)

NO_TEXT_AVAILABLE = "No text available"


def _now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass
class _BatchState:
    is_processing: bool = False
    session_id: str | None = None
    total: int = 0
    processed: int = 0
    successful: int = 0
    failed: int = 0
    cancelled: int = 0
    skipped: int = 0
    current_document: dict | None = None
    errors: list[dict] = field(default_factory=list)
    start_time: dt.datetime | None = None
    cancel: CancellationContext = field(default_factory=CancellationContext)


@dataclass(frozen=True)
class BatchSummary:
    """Final outcome of a batch, as returned by `start_batch`."""

    status: str
    session_id: str | None
    total_documents: int
    processed_documents: int
    successful_documents: int
    failed_documents: int
    skipped_documents: int
    errors: list[dict]
    start_time: dt.datetime
    end_time: dt.datetime

    @property
    def duration_ms(self) -> int:
        return int((self.end_time - self.start_time).total_seconds() * 1000)


class OcrJobEngine:
    """Single-flight OCR batch engine."""

    def __init__(
        self,
        settings: Settings,
        ledger: ProcessingLedger,
        paperless_client: PaperlessClient,
        ocr_provider: OcrProvider,
        event_bus: EventBus | None = None,
    ):
        self.settings = settings
        self.ledger = ledger
        self.paperless_client = paperless_client
        self.ocr_provider = ocr_provider
        self.events = event_bus or EventBus()
        self.processor = DocumentProcessor(paperless_client, ocr_provider, ledger, settings)
        self._lock = threading.RLock()
        self._state = _BatchState()

    # --- Batch lifecycle ---

    def start_batch(
        self, document_ids: Iterable[int], skip_processed: bool = True
    ) -> BatchSummary:
        """
        Process ``document_ids`` sequentially on the calling thread.

        Raises:
            BatchAlreadyRunningError: another batch is active on this engine.
            EmptyBatchError: ``document_ids`` is empty.
        """
        ids = self._claim(document_ids)
        return self._run(ids, skip_processed)

    def start_batch_in_background(
        self, document_ids: Iterable[int], skip_processed: bool = True
    ) -> threading.Thread:
        """Like `start_batch`, but the batch runs on a new thread which is returned."""
        ids = self._claim(document_ids)
        thread = threading.Thread(
            target=self._run, args=(ids, skip_processed), name="ocr-batch", daemon=True
        )
        thread.start()
        return thread

    def _claim(self, document_ids: Iterable[int] | None) -> list[int]:
        ids = list(document_ids or [])
        with self._lock:
            if self._state.is_processing:
                raise BatchAlreadyRunningError("Processing already in progress")
            if not ids:
                raise EmptyBatchError("No documents provided for processing")
            self._state = _BatchState(is_processing=True, start_time=_now())
        return ids

    def _run(self, requested: list[int], skip_processed: bool) -> BatchSummary:
        state = self._state
        try:
            return self._run_batch(state, requested, skip_processed)
        except Exception as e:
            log.exception("Batch processing failed", session_id=state.session_id)
            with self._lock:
                successful, failed = state.successful, state.failed
            if state.session_id is not None:
                try:
                    self.ledger.update_session(
                        state.session_id, successful, failed, SESSION_FAILED
                    )
                except Exception:
                    log.exception(
                        "Failed to mark session as failed", session_id=state.session_id
                    )
            self._emit(BatchFailed(session_id=state.session_id, error=str(e)))
            return self._summary(state, SESSION_FAILED)
        finally:
            with self._lock:
                state.is_processing = False
                state.current_document = None

    def _run_batch(
        self, state: _BatchState, requested: list[int], skip_processed: bool
    ) -> BatchSummary:
        if skip_processed:
            processed_ids = self.ledger.get_processed_ids()
            to_process = [doc_id for doc_id in requested if doc_id not in processed_ids]
        else:
            to_process = list(requested)
        skipped = len(requested) - len(to_process)
        if skipped:
            log.info("Filtered out already processed documents", skipped=skipped)

        with self._lock:
            state.skipped = skipped

        if not to_process:
            log.info("All documents have already been processed", requested=len(requested))
            summary = self._summary(state, SESSION_COMPLETED, total=len(requested))
            self._emit(self._summary_event(BatchCompleted, summary))
            return summary

        session_id = new_session_id()
        with self._lock:
            state.session_id = session_id
            state.total = len(to_process)
        self.ledger.start_session(session_id, len(to_process))

        log.info(
            "Starting batch OCR processing",
            session_id=session_id,
            documents=len(to_process),
            skipped=skipped,
        )
        self._emit(
            BatchStarted(
                session_id=session_id,
                total_documents=len(to_process),
                skipped_documents=skipped,
                timestamp=state.start_time,
            )
        )

        for index, document_id in enumerate(to_process, 1):
            if state.cancel.cancelled:
                log.info("Processing stopped by user request", session_id=session_id)
                break

            with self._lock:
                state.current_document = {
                    "document_id": document_id,
                    "index": index,
                    "total": len(to_process),
                }
            self._emit(
                DocumentStarted(
                    document_id=document_id,
                    document_index=index,
                    total_documents=len(to_process),
                )
            )

            result = self.processor.process(document_id, state.cancel)
            self._count(state, result)

            if result.was_cancelled:
                log.info("Document processing was cancelled; stopping batch", doc_id=document_id)
                break

            with self._lock:
                processed, successful, failed = state.processed, state.successful, state.failed
            self.ledger.update_session(session_id, successful, failed, SESSION_RUNNING)
            self._emit(
                DocumentCompleted(
                    result=result.to_dict(),
                    progress=(processed / len(to_process)) * 100,
                    processed_documents=processed,
                    total_documents=len(to_process),
                    successful_documents=successful,
                    failed_documents=failed,
                )
            )

            if index < len(to_process):
                # Give the OCR service a short breather between documents.
                state.cancel.wait(self.settings.OCR_INTER_DOCUMENT_DELAY)

        status = SESSION_STOPPED if state.cancel.cancelled else SESSION_COMPLETED
        with self._lock:
            successful, failed = state.successful, state.failed
        self.ledger.update_session(session_id, successful, failed, status)
        summary = self._summary(state, status)
        log.info(
            "Batch processing finished",
            session_id=session_id,
            status=status,
            successful=summary.successful_documents,
            processed=summary.processed_documents,
            duration_ms=summary.duration_ms,
        )
        event_type = BatchStopped if status == SESSION_STOPPED else BatchCompleted
        self._emit(self._summary_event(event_type, summary))
        return summary

    def _count(self, state: _BatchState, result: DocumentResult) -> None:
        with self._lock:
            state.processed += 1
            if result.success:
                state.successful += 1
            elif result.was_cancelled:
                state.cancelled += 1
            else:
                state.failed += 1
                state.errors.append(
                    {
                        "document_id": result.document_id,
                        "error": result.error,
                        "http_status": result.http_status,
                        "timestamp": result.timestamp,
                    }
                )

    def _summary(self, state: _BatchState, status: str, total: int | None = None) -> BatchSummary:
        with self._lock:
            return BatchSummary(
                status=status,
                session_id=state.session_id,
                total_documents=state.total if total is None else total,
                processed_documents=state.processed,
                successful_documents=state.successful,
                failed_documents=state.failed,
                skipped_documents=state.skipped,
                errors=list(state.errors),
                start_time=state.start_time or _now(),
                end_time=_now(),
            )

    @staticmethod
    def _summary_event(event_type, summary: BatchSummary) -> BatchEvent:
        return event_type(
            session_id=summary.session_id,
            total_documents=summary.total_documents,
            processed_documents=summary.processed_documents,
            successful_documents=summary.successful_documents,
            failed_documents=summary.failed_documents,
            skipped_documents=summary.skipped_documents,
            errors=summary.errors,
            start_time=summary.start_time,
            end_time=summary.end_time,
            duration_ms=summary.duration_ms,
        )

    def _emit(self, event: BatchEvent) -> None:
        self.events.emit(event)

    def stop(self) -> bool:
        """
        Ask the running batch to stop.

        The in-flight OCR request is aborted and no further documents are
        started. The batch then finishes with a ``stopped`` event. Returns
        False if no batch is running.

        A Paperless call that is already running (download or write-back)
        is not interrupted, so with a slow Paperless the ``stopped`` event
        can lag by up to ``MAX_RETRIES`` request timeouts plus backoff.
        `get_status` reports ``should_stop`` as soon as this returns.
        """
        with self._lock:
            if not self._state.is_processing:
                return False
            state = self._state
        log.info(
            "Stopping OCR processing",
            session_id=state.session_id,
            processed=state.processed,
            total=state.total,
        )
        state.cancel.cancel()
        return True

    # --- Single documents ---

    def process_document(self, document_id: int) -> DocumentResult:
        """Process one document outside of a batch."""
        return self.processor.process(document_id, CancellationContext())

    # --- Status and queries ---

    def get_status(self) -> dict:
        """Snapshot of the current (or last) batch with a linear ETA."""
        now = _now()
        with self._lock:
            state = self._state
            estimated_completion = None
            if state.is_processing and state.processed > 0 and state.start_time:
                elapsed = now - state.start_time
                remaining = max(state.total - state.processed, 0)
                estimated_completion = now + (elapsed / state.processed) * remaining
            return {
                "is_processing": state.is_processing,
                "session_id": state.session_id,
                "current_document": dict(state.current_document)
                if state.current_document
                else None,
                "total_documents": state.total,
                "processed_documents": state.processed,
                "successful_documents": state.successful,
                "failed_documents": state.failed,
                "skipped_documents": state.skipped,
                "progress": (state.processed / state.total) * 100 if state.total else 0.0,
                "errors": list(state.errors),
                "start_time": state.start_time,
                "estimated_completion": estimated_completion,
                "should_stop": state.cancel.cancelled,
            }

    def test_service_health(self) -> bool:
        try:
            return self.ocr_provider.check_health()
        except Exception:
            log.exception("OCR service health check raised")
            return False

    def get_statistics(self) -> dict:
        with self._lock:
            state = self._state
            processed, successful = state.processed, state.successful
            errors = [
                {"document_id": e["document_id"], "error": e["error"], "timestamp": e["timestamp"]}
                for e in state.errors
            ]
        return {
            "current_session": {
                "total_processed": processed,
                "successful": successful,
                "failed": len(errors),
                "success_rate": (successful / processed) * 100 if processed else 0.0,
                "errors": errors,
            },
            "overall": self.ledger.get_statistics(),
        }

    def get_processed_document_ids(self) -> set[int]:
        return self.ledger.get_processed_ids()

    def get_failed_document_ids(self) -> set[int]:
        return self.ledger.get_failed_ids()

    def is_document_processed(self, document_id: int) -> bool:
        return self.ledger.is_processed(document_id)

    def get_processed_document_text(self, document_id: int) -> dict | None:
        """
        Return the text stored by the most recent successful attempt.

        Returns None if the document was never processed successfully.
        """
        history = self.ledger.get_history(document_id)
        record = next((r for r in history if r["status"] == STATUS_SUCCESS), None)
        if record is None:
            return None

        extracted_text, markdown_text = NO_TEXT_AVAILABLE, None
        replayed = replay_stored_response(record["raw_service_response"])
        if replayed is not None:
            extracted_text, markdown_text = replayed
        elif record["extracted_content_length"]:
            extracted_text = (
                f"[Text available - {record['extracted_content_length']} characters extracted]\n\n"
                "This document was processed before extracted text was stored. "
                "Reprocess it to view the text."
            )

        return {
            "document_id": document_id,
            "document_title": record["document_title"],
            "extracted_text": extracted_text,
            "markdown_text": markdown_text,
            "processing_date": record["completed_at"],
            "processing_time_ms": record["processing_time_ms"],
            "original_content_length": record["original_content_length"],
            "extracted_content_length": record["extracted_content_length"],
        }

    def get_document_processing_history(self, document_id: int) -> list[dict]:
        return self.ledger.get_history(document_id)

    def get_recent_processing_history(self, limit: int = 50) -> list[dict]:
        return self.ledger.get_recent_history(limit)

    def reset_document_processing(self, document_id: int) -> None:
        self.ledger.reset_document(document_id)

    def reset_all_processing(self) -> None:
        self.ledger.reset_all()
