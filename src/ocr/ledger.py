"""
Processing Ledger
=================

Durable record of OCR attempts and batch sessions, stored with SQLAlchemy.

The ledger only persists and answers queries; the OCR engine decides when
records are written. An attempt starts as a ``started`` record and is closed
in place by ``success`` or ``failure``. The most recent terminal record of a
document decides whether it counts as processed.

Every public method returns plain dicts/sets so callers never hold on to ORM
objects after their session has closed. Calls are serialised with a lock so
the batch thread and administrative callers can share one ledger.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

import structlog
from sqlalchemy import create_engine, delete, func, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import (
    SESSION_RUNNING,
    SESSION_STATUSES,
    STATUS_FAILURE,
    STATUS_STARTED,
    STATUS_SUCCESS,
    TERMINAL_STATUSES,
    Base,
    ProcessingRecord,
    ProcessingSession,
    utcnow,
)

log = structlog.get_logger(__name__)


def create_ledger_engine(database_url: str) -> Engine:
    """
    Create the SQLAlchemy engine for ``database_url``.

    SQLite connections are shared across threads; an in-memory database
    keeps a single connection so every thread sees the same data.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        kwargs["poolclass"] = StaticPool
    elif url.database:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)
    return create_engine(url, **kwargs)


class ProcessingLedger:
    """Storage and query layer for processing records and sessions."""

    def __init__(self, database_url: str | None = None, *, engine: Engine | None = None):
        if engine is None:
            if database_url is None:
                raise ValueError("database_url or engine is required")
            engine = create_ledger_engine(database_url)
        self.engine = engine
        self._session_factory = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )
        self._lock = threading.RLock()
        Base.metadata.create_all(engine)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        """Session scoped to one ledger call; commits on success, rolls back on error."""
        with self._lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                session.close()

    def close(self) -> None:
        self.engine.dispose()

    # --- Processing records ---

    @staticmethod
    def _open_attempt(session: Session, document_id: int) -> ProcessingRecord | None:
        return session.scalars(
            select(ProcessingRecord)
            .where(
                ProcessingRecord.document_id == document_id,
                ProcessingRecord.status == STATUS_STARTED,
            )
            .order_by(ProcessingRecord.id.desc())
            .limit(1)
        ).first()

    def record_start(self, document_id: int, title: str) -> int:
        """
        Open an attempt for ``document_id`` and return its record id.

        A stale ``started`` record left behind by an interrupted run is reused
        so a document never has two open attempts.
        """
        with self._session() as session:
            record = self._open_attempt(session, document_id)
            if record is not None:
                log.warning(
                    "Reusing open processing attempt",
                    doc_id=document_id,
                    record_id=record.id,
                    previous_start=str(record.started_at),
                )
                record.document_title = title
                record.started_at = utcnow()
            else:
                record = ProcessingRecord(
                    document_id=document_id,
                    document_title=title,
                    status=STATUS_STARTED,
                    started_at=utcnow(),
                )
                session.add(record)
            session.flush()
            return record.id

    def _close_attempt(self, document_id: int, title: str, **fields: Any) -> int:
        with self._session() as session:
            record = self._open_attempt(session, document_id)
            if record is None:
                record = ProcessingRecord(document_id=document_id, started_at=utcnow())
                session.add(record)
            record.document_title = title
            record.completed_at = utcnow()
            for key, value in fields.items():
                setattr(record, key, value)
            session.flush()
            return record.id

    def record_success(
        self,
        document_id: int,
        title: str,
        original_length: int,
        extracted_length: int,
        elapsed_ms: int,
        raw_response: dict | None,
    ) -> int:
        """Close the open attempt as ``success``."""
        return self._close_attempt(
            document_id,
            title,
            status=STATUS_SUCCESS,
            original_content_length=original_length,
            extracted_content_length=extracted_length,
            processing_time_ms=elapsed_ms,
            error_message=None,
            raw_service_response=raw_response,
        )

    def record_failure(
        self, document_id: int, title: str, error_message: str, elapsed_ms: int
    ) -> int:
        """Close the open attempt as ``failure``."""
        return self._close_attempt(
            document_id,
            title,
            status=STATUS_FAILURE,
            processing_time_ms=elapsed_ms,
            error_message=error_message,
        )

    @staticmethod
    def _latest_terminal_ids():
        return (
            select(func.max(ProcessingRecord.id))
            .where(ProcessingRecord.status.in_(TERMINAL_STATUSES))
            .group_by(ProcessingRecord.document_id)
        )

    def is_processed(self, document_id: int) -> bool:
        with self._session() as session:
            status = session.scalars(
                select(ProcessingRecord.status)
                .where(
                    ProcessingRecord.document_id == document_id,
                    ProcessingRecord.status.in_(TERMINAL_STATUSES),
                )
                .order_by(ProcessingRecord.id.desc())
                .limit(1)
            ).first()
            return status == STATUS_SUCCESS

    def get_processed_ids(self) -> set[int]:
        with self._session() as session:
            ids = session.scalars(
                select(ProcessingRecord.document_id).where(
                    ProcessingRecord.id.in_(self._latest_terminal_ids()),
                    ProcessingRecord.status == STATUS_SUCCESS,
                )
            )
            return set(ids)

    def get_failed_ids(self) -> set[int]:
        """Documents whose latest finished attempt failed."""
        with self._session() as session:
            ids = session.scalars(
                select(ProcessingRecord.document_id).where(
                    ProcessingRecord.id.in_(self._latest_terminal_ids()),
                    ProcessingRecord.status == STATUS_FAILURE,
                )
            )
            return set(ids)

    def get_history(self, document_id: int) -> list[dict]:
        """All records of a document, newest first."""
        with self._session() as session:
            records = session.scalars(
                select(ProcessingRecord)
                .where(ProcessingRecord.document_id == document_id)
                .order_by(ProcessingRecord.id.desc())
            )
            return [record.to_dict() for record in records]

    def get_recent_history(self, limit: int = 50) -> list[dict]:
        with self._session() as session:
            records = session.scalars(
                select(ProcessingRecord).order_by(ProcessingRecord.id.desc()).limit(limit)
            )
            return [record.to_dict() for record in records]

    def get_open_attempts(self) -> list[dict]:
        """``started`` records that were never closed, oldest first."""
        with self._session() as session:
            records = session.scalars(
                select(ProcessingRecord)
                .where(ProcessingRecord.status == STATUS_STARTED)
                .order_by(ProcessingRecord.id)
            )
            return [record.to_dict() for record in records]

    def reset_document(self, document_id: int) -> int:
        """Delete every record of a document; returns the number deleted."""
        with self._session() as session:
            result = session.execute(
                delete(ProcessingRecord).where(ProcessingRecord.document_id == document_id)
            )
            log.info("Reset document processing", doc_id=document_id, deleted=result.rowcount)
            return result.rowcount

    def reset_all(self) -> int:
        with self._session() as session:
            result = session.execute(delete(ProcessingRecord))
            log.info("Reset all processing records", deleted=result.rowcount)
            return result.rowcount

    # --- Sessions ---

    def start_session(self, session_id: str, total_documents: int) -> None:
        with self._session() as session:
            now = utcnow()
            session.add(
                ProcessingSession(
                    session_id=session_id,
                    total_documents=total_documents,
                    success_count=0,
                    failure_count=0,
                    status=SESSION_RUNNING,
                    created_at=now,
                    updated_at=now,
                )
            )

    def update_session(
        self, session_id: str, success_count: int, failure_count: int, status: str
    ) -> None:
        if status not in SESSION_STATUSES:
            raise ValueError(f"Unknown session status: {status}")
        with self._session() as session:
            row = session.get(ProcessingSession, session_id)
            if row is None:
                raise KeyError(f"Unknown processing session: {session_id}")
            now = utcnow()
            row.success_count = success_count
            row.failure_count = failure_count
            row.status = status
            row.updated_at = now
            if status != SESSION_RUNNING:
                row.completed_at = now

    def get_session(self, session_id: str) -> dict | None:
        with self._session() as session:
            row = session.get(ProcessingSession, session_id)
            return row.to_dict() if row is not None else None

    def get_recent_sessions(self, limit: int = 20) -> list[dict]:
        with self._session() as session:
            rows = session.scalars(
                select(ProcessingSession)
                .order_by(ProcessingSession.created_at.desc())
                .limit(limit)
            )
            return [row.to_dict() for row in rows]

    # --- Statistics ---

    def get_statistics(self) -> dict:
        """Aggregate counts across the whole ledger."""
        with self._session() as session:
            by_status = dict(
                session.execute(
                    select(ProcessingRecord.status, func.count()).group_by(
                        ProcessingRecord.status
                    )
                ).all()
            )
            successes = by_status.get(STATUS_SUCCESS, 0)
            failures = by_status.get(STATUS_FAILURE, 0)
            unique_documents = session.scalar(
                select(func.count(func.distinct(ProcessingRecord.document_id)))
            )
            avg_time, total_chars, last_success = session.execute(
                select(
                    func.avg(ProcessingRecord.processing_time_ms),
                    func.sum(ProcessingRecord.extracted_content_length),
                    func.max(ProcessingRecord.completed_at),
                ).where(ProcessingRecord.status == STATUS_SUCCESS)
            ).one()
            sessions_by_status = dict(
                session.execute(
                    select(ProcessingSession.status, func.count()).group_by(
                        ProcessingSession.status
                    )
                ).all()
            )

        attempts = successes + failures
        return {
            "total_records": sum(by_status.values()),
            "successful_attempts": successes,
            "failed_attempts": failures,
            "in_progress": by_status.get(STATUS_STARTED, 0),
            "unique_documents": unique_documents or 0,
            "processed_documents": len(self.get_processed_ids()),
            "success_rate": (successes / attempts) * 100 if attempts else 0.0,
            "average_processing_time_ms": float(avg_time) if avg_time is not None else None,
            "total_extracted_characters": int(total_chars or 0),
            "last_success_at": last_success,
            "sessions": {
                "total": sum(sessions_by_status.values()),
                **{status: sessions_by_status.get(status, 0) for status in SESSION_STATUSES},
            },
        }
