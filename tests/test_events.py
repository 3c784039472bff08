import datetime as dt

from ocr.events import (
    BatchCompleted,
    BatchFailed,
    BatchStarted,
    DocumentCompleted,
    EventBus,
    EventKind,
    QueueListener,
)


def _started():
    return BatchStarted(session_id="ocr_1_a", total_documents=2, skipped_documents=0)


def test_emit_without_listeners_is_safe():
    EventBus().emit(_started())


def test_subscribe_and_unsubscribe():
    bus = EventBus()
    received = []
    unsubscribe = bus.subscribe(received.append)

    bus.emit(_started())
    unsubscribe()
    unsubscribe()
    bus.emit(_started())

    assert len(received) == 1
    assert received[0].kind is EventKind.STARTED


def test_failing_listener_does_not_block_others():
    bus = EventBus()
    received = []

    def broken(_event):
        raise RuntimeError("listener bug")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    bus.emit(BatchFailed(session_id=None, error="boom"))

    assert [event.kind for event in received] == [EventKind.ERROR]


def test_event_to_dict_carries_kind():
    now = dt.datetime.now(dt.timezone.utc)
    event = BatchCompleted(
        session_id=None,
        total_documents=1,
        processed_documents=0,
        successful_documents=0,
        failed_documents=0,
        skipped_documents=1,
        errors=[],
        start_time=now,
        end_time=now,
        duration_ms=0,
    )

    payload = event.to_dict()

    assert payload["kind"] == "completed"
    assert payload["skipped_documents"] == 1


def test_document_completed_exposes_document_id():
    event = DocumentCompleted(
        result={"document_id": 42, "success": True},
        progress=100.0,
        processed_documents=1,
        total_documents=1,
        successful_documents=1,
        failed_documents=0,
    )

    assert event.document_id == 42
    assert event.kind.value == "documentCompleted"


def test_queue_listener_drops_when_full():
    listener = QueueListener(maxsize=1)
    bus = EventBus()
    bus.subscribe(listener)

    bus.emit(_started())
    bus.emit(_started())

    assert len(listener.drain()) == 1
    assert listener.drain() == []
