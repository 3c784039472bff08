"""
Paperless-ngx OCR Daemon
========================

This is the long-running entry point. It polls Paperless-ngx for documents
carrying the OCR queue tag (``PRE_TAG_ID``) and runs them through the OCR
job engine as one batch per poll.

Documents the ledger already records as processed are not sent to OCR
again. Their queue tag is swapped for ``POST_TAG_ID`` (when configured) so
they stop re-appearing in the queue.

Documents whose latest attempt failed are parked instead of being retried on
every poll: the queue tag is swapped for ``ERROR_TAG_ID`` when configured,
and they are skipped either way. ``paperless-ocr process`` or
``paperless-ocr reset`` sends them through OCR again.
"""

from __future__ import annotations

from typing import Iterable

import structlog

from common.config import Settings
from common.daemon_loop import run_polling_loop
from common.logging_config import configure_logging
from common.paperless import PaperlessClient
from .engine import OcrJobEngine
from .ledger import ProcessingLedger
from .provider import RemoteOcrProvider


def _swap_queue_tag(
    paperless_client: PaperlessClient,
    doc_id: int,
    tags: set[int],
    settings: Settings,
    new_tag_id: int | None,
) -> None:
    log = structlog.get_logger(__name__)
    tags.discard(settings.PRE_TAG_ID)
    if new_tag_id is not None:
        tags.add(new_tag_id)
    try:
        paperless_client.update_document_metadata(doc_id, tags=sorted(tags))
    except Exception:
        log.exception(
            "Failed to remove queue tag from document",
            doc_id=doc_id,
            pre_tag_id=settings.PRE_TAG_ID,
        )
    else:
        log.info(
            "Removed queue tag from document",
            doc_id=doc_id,
            pre_tag_id=settings.PRE_TAG_ID,
            new_tag_id=new_tag_id,
        )


def _iter_docs_to_process(
    paperless_client: PaperlessClient, engine: OcrJobEngine, settings: Settings
) -> Iterable[int]:
    """Yield ids of queued documents that still need OCR."""
    log = structlog.get_logger(__name__)
    processed_ids = engine.get_processed_document_ids()
    failed_ids = engine.get_failed_document_ids()
    for doc in paperless_client.get_documents_by_tag(settings.PRE_TAG_ID):
        doc_id = doc.get("id")
        if not isinstance(doc_id, int):
            log.warning("Skipping document without integer id", doc_id=doc_id)
            continue

        tags_raw = doc.get("tags", []) or []
        tags = set(tags_raw if isinstance(tags_raw, list) else [])

        if settings.ERROR_TAG_ID is not None and settings.ERROR_TAG_ID in tags:
            log.warning("Document has error tag; skipping OCR", doc_id=doc_id)
            continue

        if doc_id in processed_ids:
            _swap_queue_tag(paperless_client, doc_id, tags, settings, settings.POST_TAG_ID)
            continue

        if doc_id in failed_ids:
            if settings.ERROR_TAG_ID is not None:
                _swap_queue_tag(
                    paperless_client, doc_id, tags, settings, settings.ERROR_TAG_ID
                )
            else:
                log.debug("Skipping document whose last OCR attempt failed", doc_id=doc_id)
            continue

        yield doc_id


def main() -> None:
    """Main loop for the OCR daemon."""
    log = structlog.get_logger(__name__)

    try:
        settings = Settings()
        configure_logging(settings)
    except ValueError as e:
        log.error("Configuration error", error=e)
        return

    log.info(
        "Starting OCR daemon",
        pre_tag_id=settings.PRE_TAG_ID,
        post_tag_id=settings.POST_TAG_ID,
        error_tag_id=settings.ERROR_TAG_ID,
        poll_interval=settings.POLL_INTERVAL,
        ocr_service_url=settings.OCR_SERVICE_URL,
        ledger_database_url=settings.LEDGER_DATABASE_URL,
    )

    ledger = ProcessingLedger(settings.LEDGER_DATABASE_URL)
    paperless_client = PaperlessClient(settings)
    engine = OcrJobEngine(settings, ledger, paperless_client, RemoteOcrProvider(settings))

    if not engine.test_service_health():
        log.warning("OCR service is not healthy yet; batches may fail")

    open_attempts = ledger.get_open_attempts()
    if open_attempts:
        log.warning(
            "Found unfinished processing attempts from a previous run",
            doc_ids=[record["document_id"] for record in open_attempts],
        )

    def process_batch(doc_ids: list[int]) -> None:
        # failed documents are parked; hold the batch while the service is down
        if not engine.test_service_health():
            log.warning("OCR service unavailable; leaving documents queued", doc_ids=doc_ids)
            return
        summary = engine.start_batch(doc_ids)
        log.info(
            "Batch finished",
            status=summary.status,
            session_id=summary.session_id,
            successful=summary.successful_documents,
            failed=summary.failed_documents,
            skipped=summary.skipped_documents,
        )

    try:
        run_polling_loop(
            daemon_name="ocr",
            fetch_work=lambda: list(_iter_docs_to_process(paperless_client, engine, settings)),
            process_batch=process_batch,
            poll_interval_seconds=settings.POLL_INTERVAL,
        )
    finally:
        paperless_client.close()
        ledger.close()


if __name__ == "__main__":
    main()
