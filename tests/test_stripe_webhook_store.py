import json
import threading
from pathlib import Path

from services.billing import webhook_store


def test_records_and_detects_processed_events(_isolate_webhook_state: Path) -> None:
    assert webhook_store.has_processed_webhook("evt_1") is False

    webhook_store.record_webhook_event(
        event_id="evt_1",
        event_type="customer.subscription.updated",
        result="entitlement_written",
    )

    assert webhook_store.has_processed_webhook("evt_1") is True
    payload = json.loads((_isolate_webhook_state / "stripe_webhook_events.json").read_text(encoding="utf-8"))
    [entry] = payload["events"]
    assert entry["event_id"] == "evt_1"
    assert entry["result"] == "entitlement_written"
    assert entry["processed_at"]


def test_missing_event_id_is_never_recorded(_isolate_webhook_state: Path) -> None:
    webhook_store.record_webhook_event(event_id=None, event_type="customer.subscription.updated", result="ignored")

    assert webhook_store.has_processed_webhook(None) is False
    assert not (_isolate_webhook_state / "stripe_webhook_events.json").exists()


def test_only_newest_events_are_kept(_isolate_webhook_state: Path) -> None:
    webhook_store.reset_state_for_tests(max_items=3)
    try:
        for idx in range(5):
            webhook_store.record_webhook_event(event_id=f"evt_{idx}", event_type=None, result="ignored")

        assert webhook_store.has_processed_webhook("evt_0") is False
        assert webhook_store.has_processed_webhook("evt_1") is False
        assert all(webhook_store.has_processed_webhook(f"evt_{idx}") for idx in range(2, 5))
    finally:
        webhook_store.reset_state_for_tests(max_items=500)


def test_state_survives_cache_reset(_isolate_webhook_state: Path) -> None:
    webhook_store.record_webhook_event(event_id="evt_1", event_type=None, result="ignored")

    webhook_store.reset_state_for_tests()

    assert webhook_store.has_processed_webhook("evt_1") is True


def test_corrupted_state_file_is_treated_as_empty(_isolate_webhook_state: Path) -> None:
    (_isolate_webhook_state / "stripe_webhook_events.json").write_text("{not json", encoding="utf-8")
    webhook_store.reset_state_for_tests()

    assert webhook_store.has_processed_webhook("evt_1") is False


def test_concurrent_records_are_all_kept(_isolate_webhook_state: Path) -> None:
    workers = 60
    barrier = threading.Barrier(workers)

    def _record(idx: int) -> None:
        barrier.wait()
        webhook_store.record_webhook_event(
            event_id=f"evt_{idx}",
            event_type="customer.subscription.updated",
            result="trial_extended",
        )

    threads = [threading.Thread(target=_record, args=(idx,)) for idx in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    webhook_store.reset_state_for_tests()

    missing = [idx for idx in range(workers) if not webhook_store.has_processed_webhook(f"evt_{idx}")]
    assert missing == []
    payload = json.loads((_isolate_webhook_state / "stripe_webhook_events.json").read_text(encoding="utf-8"))
    assert len(payload["events"]) == workers
