"""
Daemon Loop Utilities
=====================

The OCR daemon follows a simple control-flow pattern:

- Poll for work on an interval.
- If work is found, hand the whole batch to a processor.
- Keep running forever (until SIGINT / Ctrl-C).

Batches are processed by a single call rather than a thread pool because the
OCR backend handles one document at a time; the processor itself decides how
to sequence the items.
"""

from __future__ import annotations

import time
from typing import Callable, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


def run_polling_loop(
    *,
    daemon_name: str,
    fetch_work: Callable[[], list[T]],
    process_batch: Callable[[list[T]], None],
    poll_interval_seconds: int,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """
    Run an infinite polling loop and pass each non-empty batch to ``process_batch``.

    Exceptions raised while fetching or processing are logged and the loop
    carries on after the poll interval.

    Args:
        daemon_name:
            Name used in log messages.
        fetch_work:
            A function returning the next batch of work items.
        process_batch:
            Processes the whole batch.
        poll_interval_seconds:
            How long to sleep between polling iterations.
        sleep:
            Injectable sleep function (primarily for tests).
    """
    poll_interval_seconds = max(1, int(poll_interval_seconds))

    was_idle = False
    while True:
        try:
            items = fetch_work()
            if not items:
                if not was_idle:
                    log.info("No work found; waiting", daemon=daemon_name)
                was_idle = True
                sleep(poll_interval_seconds)
                continue

            was_idle = False
            log.info("Processing batch", daemon=daemon_name, item_count=len(items))
            process_batch(items)

            sleep(poll_interval_seconds)
        except KeyboardInterrupt:
            log.info("Ctrl-C received; exiting", daemon=daemon_name)
            break
        except Exception:
            log.exception(
                "Unexpected error in daemon loop; sleeping",
                daemon=daemon_name,
                poll_interval_seconds=poll_interval_seconds,
            )
            sleep(poll_interval_seconds)
