"""
Command line interface for the OCR batch engine.

Usage:
    paperless-ocr health
    paperless-ocr process 12 13 14 [--no-skip]
    paperless-ocr stats
    paperless-ocr history [--document 12] [--limit 20]
    paperless-ocr show 12
    paperless-ocr reset (12 | --all)
    paperless-ocr sessions [--limit 10]
    paperless-ocr thumbnail 12

Results are printed as JSON on stdout; log output goes to stderr.
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Any, Sequence

import structlog

from common.config import Settings
from common.logging_config import configure_logging
from common.paperless import PaperlessClient
from common.thumbnails import ThumbnailCache
from .engine import OcrJobEngine
from .events import BatchEvent, DocumentCompleted, EventKind
from .ledger import ProcessingLedger
from .provider import RemoteOcrProvider

log = structlog.get_logger(__name__)

TERMINAL_EVENTS = (EventKind.COMPLETED, EventKind.STOPPED, EventKind.ERROR)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, default=str, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="paperless-ocr",
        description="Run Paperless-ngx documents through the OCR service and inspect the ledger",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("health", help="Check that the OCR service is ready")

    process = commands.add_parser("process", help="Process documents as one batch")
    process.add_argument("document_ids", nargs="+", type=int, help="Paperless document ids")
    process.add_argument(
        "--no-skip",
        action="store_true",
        help="Process documents even if they were already processed",
    )

    commands.add_parser("stats", help="Show ledger statistics")

    history = commands.add_parser("history", help="Show processing attempts")
    history.add_argument("--document", type=int, default=None, help="Only this document")
    history.add_argument("--limit", type=int, default=50, help="Maximum records to show")

    show = commands.add_parser("show", help="Show the stored text of a processed document")
    show.add_argument("document_id", type=int)

    reset = commands.add_parser("reset", help="Forget processing records")
    target = reset.add_mutually_exclusive_group(required=True)
    target.add_argument("document_id", type=int, nargs="?", help="Document to reset")
    target.add_argument("--all", action="store_true", help="Reset every document")

    sessions = commands.add_parser("sessions", help="Show recent batch sessions")
    sessions.add_argument("--limit", type=int, default=20)

    thumbnail = commands.add_parser("thumbnail", help="Cache a document thumbnail as PNG")
    thumbnail.add_argument("document_id", type=int)

    return parser


def _run_process(engine: OcrJobEngine, document_ids: list[int], skip_processed: bool) -> int:
    outcome: dict[str, Any] = {}

    def on_event(event: BatchEvent) -> None:
        if isinstance(event, DocumentCompleted):
            log.info(
                "Document finished",
                doc_id=event.document_id,
                success=event.result["success"],
                progress=round(event.progress, 1),
            )
        elif event.kind in TERMINAL_EVENTS:
            outcome.update(event.to_dict())

    unsubscribe = engine.events.subscribe(on_event)
    try:
        thread = engine.start_batch_in_background(document_ids, skip_processed)
        try:
            while thread.is_alive():
                thread.join(timeout=0.5)
        except KeyboardInterrupt:
            log.info("Ctrl-C received; stopping batch")
            engine.stop()
            thread.join()
    finally:
        unsubscribe()

    _print_json(outcome)
    if outcome.get("kind") != EventKind.COMPLETED.value:
        return 1
    return 1 if outcome.get("failed_documents") else 0


def run(args: argparse.Namespace, settings: Settings) -> int:
    ledger = ProcessingLedger(settings.LEDGER_DATABASE_URL)
    paperless_client = PaperlessClient(settings)
    engine = OcrJobEngine(settings, ledger, paperless_client, RemoteOcrProvider(settings))
    try:
        if args.command == "health":
            healthy = engine.test_service_health()
            _print_json({"healthy": healthy, "ocr_service_url": settings.OCR_SERVICE_URL})
            return 0 if healthy else 1

        if args.command == "process":
            return _run_process(engine, args.document_ids, not args.no_skip)

        if args.command == "stats":
            _print_json(engine.get_statistics())
            return 0

        if args.command == "history":
            if args.document is not None:
                _print_json(engine.get_document_processing_history(args.document))
            else:
                _print_json(engine.get_recent_processing_history(args.limit))
            return 0

        if args.command == "show":
            text = engine.get_processed_document_text(args.document_id)
            if text is None:
                print(
                    f"Document {args.document_id} has not been processed successfully",
                    file=sys.stderr,
                )
                return 1
            _print_json(text)
            return 0

        if args.command == "reset":
            if args.all:
                engine.reset_all_processing()
                _print_json({"reset": "all"})
            else:
                engine.reset_document_processing(args.document_id)
                _print_json({"reset": args.document_id})
            return 0

        if args.command == "sessions":
            _print_json(ledger.get_recent_sessions(args.limit))
            return 0

        if args.command == "thumbnail":
            cache = ThumbnailCache(paperless_client, settings.THUMBNAIL_CACHE_DIR)
            path = cache.get_thumbnail_path(args.document_id)
            if path is None:
                print(f"No thumbnail for document {args.document_id}", file=sys.stderr)
                return 1
            _print_json({"document_id": args.document_id, "path": str(path)})
            return 0

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        paperless_client.close()
        ledger.close()


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
        configure_logging(settings, stream=sys.stderr)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    return run(args, settings)


if __name__ == "__main__":
    sys.exit(main())
