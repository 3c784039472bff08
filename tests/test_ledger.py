import pytest

from ocr.ledger import ProcessingLedger


def test_latest_terminal_record_wins(ledger):
    ledger.record_start(7, "t")
    ledger.record_failure(7, "t", "err", 10)
    assert ledger.is_processed(7) is False
    assert 7 not in ledger.get_processed_ids()

    ledger.record_start(7, "t")
    ledger.record_success(7, "t", 100, 80, 5, {})
    assert ledger.is_processed(7) is True
    assert ledger.get_processed_ids() == {7}

    ledger.record_start(7, "t")
    ledger.record_failure(7, "t", "later failure", 3)
    assert ledger.is_processed(7) is False
    assert ledger.get_processed_ids() == set()


def test_failed_ids_follow_latest_terminal_record(ledger):
    ledger.record_start(3, "t")
    ledger.record_failure(3, "t", "bad file", 5)
    ledger.record_start(4, "t")
    ledger.record_success(4, "t", 1, 1, 1, {})
    ledger.record_start(5, "t")

    assert ledger.get_failed_ids() == {3}

    ledger.record_start(3, "t")
    ledger.record_success(3, "t", 1, 1, 1, {})
    assert ledger.get_failed_ids() == set()


def test_record_start_closes_in_place(ledger):
    record_id = ledger.record_start(1, "Doc")
    closed_id = ledger.record_success(1, "Doc", 10, 20, 30, {"success": True})

    assert closed_id == record_id
    (record,) = ledger.get_history(1)
    assert record["status"] == "success"
    assert record["extracted_content_length"] == 20
    assert record["processing_time_ms"] == 30
    assert record["raw_service_response"] == {"success": True}
    assert record["completed_at"] is not None


def test_stale_started_record_is_reused(ledger):
    first = ledger.record_start(3, "old title")
    second = ledger.record_start(3, "new title")

    assert first == second
    (open_attempt,) = ledger.get_open_attempts()
    assert open_attempt["document_title"] == "new title"
    assert ledger.is_processed(3) is False


def test_failure_without_open_attempt_still_recorded(ledger):
    ledger.record_failure(4, "Doc", "not found", 1)

    (record,) = ledger.get_history(4)
    assert record["status"] == "failure"
    assert record["error_message"] == "not found"


def test_history_is_newest_first(ledger):
    for doc_id in (1, 2, 1):
        ledger.record_start(doc_id, f"doc {doc_id}")
        ledger.record_failure(doc_id, f"doc {doc_id}", "boom", 1)

    history = ledger.get_history(1)
    assert len(history) == 2
    assert history[0]["id"] > history[1]["id"]

    recent = ledger.get_recent_history(limit=2)
    assert [r["document_id"] for r in recent] == [1, 2]


def test_reset_document_and_all(ledger):
    for doc_id in (1, 2):
        ledger.record_start(doc_id, "t")
        ledger.record_success(doc_id, "t", 1, 1, 1, {})

    assert ledger.reset_document(1) == 1
    assert ledger.get_processed_ids() == {2}

    ledger.reset_all()
    assert ledger.get_processed_ids() == set()
    assert ledger.get_recent_history() == []


def test_session_lifecycle(ledger):
    ledger.start_session("ocr_1_a", 3)
    ledger.update_session("ocr_1_a", 1, 0, "running")

    running = ledger.get_session("ocr_1_a")
    assert running["status"] == "running"
    assert running["success_count"] == 1
    assert running["completed_at"] is None

    ledger.update_session("ocr_1_a", 2, 1, "stopped")
    stopped = ledger.get_session("ocr_1_a")
    assert stopped["status"] == "stopped"
    assert stopped["failure_count"] == 1
    assert stopped["completed_at"] is not None

    assert [s["session_id"] for s in ledger.get_recent_sessions()] == ["ocr_1_a"]
    assert ledger.get_session("missing") is None


def test_update_session_validation(ledger):
    ledger.start_session("s", 1)

    with pytest.raises(ValueError, match="Unknown session status"):
        ledger.update_session("s", 0, 0, "paused")
    with pytest.raises(KeyError):
        ledger.update_session("other", 0, 0, "completed")


def test_statistics(ledger):
    ledger.record_start(1, "a")
    ledger.record_success(1, "a", 10, 100, 20, {})
    ledger.record_start(2, "b")
    ledger.record_failure(2, "b", "boom", 5)
    ledger.record_start(3, "c")
    ledger.start_session("s1", 2)
    ledger.update_session("s1", 1, 1, "completed")

    stats = ledger.get_statistics()

    assert stats["total_records"] == 3
    assert stats["successful_attempts"] == 1
    assert stats["failed_attempts"] == 1
    assert stats["in_progress"] == 1
    assert stats["unique_documents"] == 3
    assert stats["processed_documents"] == 1
    assert stats["success_rate"] == 50.0
    assert stats["average_processing_time_ms"] == 20.0
    assert stats["total_extracted_characters"] == 100
    assert stats["last_success_at"] is not None
    assert stats["sessions"] == {
        "total": 1,
        "running": 0,
        "completed": 1,
        "stopped": 0,
        "failed": 0,
    }


def test_empty_statistics(ledger):
    stats = ledger.get_statistics()

    assert stats["total_records"] == 0
    assert stats["success_rate"] == 0.0
    assert stats["average_processing_time_ms"] is None


def test_ledger_persists_across_instances(settings):
    first = ProcessingLedger(settings.LEDGER_DATABASE_URL)
    first.record_start(9, "t")
    first.record_success(9, "t", 1, 2, 3, {"full_text": "x"})
    first.close()

    second = ProcessingLedger(settings.LEDGER_DATABASE_URL)
    try:
        assert second.is_processed(9)
    finally:
        second.close()


def test_in_memory_ledger():
    ledger = ProcessingLedger("sqlite://")
    ledger.record_start(1, "t")

    assert len(ledger.get_open_attempts()) == 1


def test_ledger_requires_url_or_engine():
    with pytest.raises(ValueError):
        ProcessingLedger()
