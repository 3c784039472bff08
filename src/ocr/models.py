"""ORM models for the processing ledger: processing_records and processing_sessions."""

from __future__ import annotations

import datetime as dt
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

STATUS_STARTED = "started"
STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"
TERMINAL_STATUSES = (STATUS_SUCCESS, STATUS_FAILURE)

SESSION_RUNNING = "running"
SESSION_COMPLETED = "completed"
SESSION_STOPPED = "stopped"
SESSION_FAILED = "failed"
SESSION_STATUSES = (SESSION_RUNNING, SESSION_COMPLETED, SESSION_STOPPED, SESSION_FAILED)


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


class Base(DeclarativeBase):
    pass


class ProcessingRecord(Base):
    """One OCR attempt for a document. Attempts are ordered by ``id``."""

    __tablename__ = "processing_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    document_title: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    started_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    original_content_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    extracted_content_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_service_response: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_id": self.document_id,
            "document_title": self.document_title,
            "status": self.status,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "original_content_length": self.original_content_length,
            "extracted_content_length": self.extracted_content_length,
            "processing_time_ms": self.processing_time_ms,
            "error_message": self.error_message,
            "raw_service_response": self.raw_service_response,
        }


class ProcessingSession(Base):
    """Aggregate progress of one batch."""

    __tablename__ = "processing_sessions"

    session_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    total_documents: Mapped[int] = mapped_column(Integer, nullable=False)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SESSION_RUNNING, index=True
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[dt.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "total_documents": self.total_documents,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "status": self.status,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }
