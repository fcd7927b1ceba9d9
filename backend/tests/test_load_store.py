"""Unit tests for the SQLite load store and its change feed."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from load_coordinator.core.errors import NotFoundError, StaleWriteError  # noqa: E402
from load_coordinator.services.load_store import LoadStore, RowQuery  # noqa: E402


def _load(load_id: str, **fields):
    row = {
        "load_id": load_id,
        "ship_from_loc": "WSI",
        "carrier_code": "Jordan",
        "status": "Open",
        "created_at": "2024-01-01T00:00:00+00:00",
        "updated_at": "2024-01-01T00:00:00+00:00",
    }
    row.update(fields)
    return row


def test_upsert_get_and_update_round_trip(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    store.upsert("loads", [_load("L-1")], conflict_key=["load_id"])
    assert store.get("loads", "L-1")["status"] == "Open"

    updated = store.update("loads", "L-1", {"driver_name": "Pat"})
    assert updated["driver_name"] == "Pat"
    assert updated["updated_at"] != "2024-01-01T00:00:00+00:00"
    assert store.get("loads", "L-1")["driver_name"] == "Pat"
    assert store.get("loads", "missing") is None


def test_update_missing_row_raises_not_found(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    with pytest.raises(NotFoundError):
        store.update("loads", "nope", {"status": "Ready"})


def test_conditional_update_detects_concurrent_writer(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    store.upsert("loads", [_load("L-1")])
    store.update("loads", "L-1", {"trailer_no": "42"})

    with pytest.raises(StaleWriteError):
        store.update("loads", "L-1", {"status": "Assigned"}, expected_updated_at="2024-01-01T00:00:00+00:00")
    assert store.get("loads", "L-1")["status"] == "Open"


def test_conflict_key_must_match_table_key(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    with pytest.raises(ValueError):
        store.upsert("loads", [_load("L-1")], conflict_key=["ship_from_loc"])


def test_query_filtered_orders_missing_values_last(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    store.upsert(
        "loads",
        [
            _load("L-1", ship_req_date="2024-02-01T00:00:00+00:00"),
            _load("L-2", ship_req_date=None, status="Ready"),
            _load("L-3", ship_req_date="2024-03-01T00:00:00+00:00", ship_from_loc="ATL"),
        ],
    )
    rows = store.query_filtered("loads", RowQuery(order_by=[("ship_req_date", True)]))
    assert [row["load_id"] for row in rows] == ["L-3", "L-1", "L-2"]

    wsi = store.query_filtered("loads", RowQuery(equals={"ship_from_loc": "WSI"}, any_of={"status": {"Ready"}}))
    assert [row["load_id"] for row in wsi] == ["L-2"]


def test_child_rows_keyed_by_load_and_line(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    store.upsert(
        "load_details",
        [
            {"load_id": "L-1", "line": 1, "status_code": "Open"},
            {"load_id": "L-1", "line": 2, "status_code": "Open"},
            {"load_id": "L-2", "line": 1, "status_code": "Open"},
        ],
    )
    assert store.get("load_details", ("L-1", 2))["line"] == 2
    assert store.delete_for_loads("load_details", ["L-1"]) == 2
    remaining = store.query_filtered("load_details")
    assert [(row["load_id"], row["line"]) for row in remaining] == [("L-2", 1)]

    with pytest.raises(ValueError):
        store.delete_for_loads("loads", ["L-2"])


def test_subscribers_receive_change_notices_until_unsubscribed(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    events = []
    subscription = store.subscribe_changes("loads", events.append)

    store.upsert("loads", [_load("L-1")])
    store.update("loads", "L-1", {"status": "Ready"})
    assert [event["event"] for event in events] == ["upsert", "update"]
    assert events[0]["keys"] == [("L-1",)]

    subscription.unsubscribe()
    store.update("loads", "L-1", {"status": "Open"})
    assert len(events) == 2
    assert store.changes.subscriber_count("loads") == 0


def test_failing_subscriber_does_not_break_writes(tmp_path):
    store = LoadStore(tmp_path / "loads.db")

    def _boom(_payload):
        raise RuntimeError("listener crashed")

    store.subscribe_changes("loads", _boom)
    store.upsert("loads", [_load("L-1")])
    assert store.get("loads", "L-1") is not None


def test_audit_and_status_history_listed_newest_first(tmp_path):
    store = LoadStore(tmp_path / "loads.db")
    first = store.append_audit({"record_id": "L-1", "action": "UPDATE", "field_name": "driver_name", "new_value": "A"})
    second = store.append_audit({"record_id": "L-1", "action": "UPDATE", "field_name": "driver_name", "new_value": "B"})
    store.append_audit({"record_id": "L-2", "action": "CREATE", "field_name": "record_created"})
    assert second["event_id"] > first["event_id"]
    assert [row["new_value"] for row in store.list_audit("L-1")] == ["B", "A"]

    store.append_status_history({"load_id": "L-1", "old_status": "Open", "new_status": "Ready"})
    store.append_status_history({"load_id": "L-1", "old_status": "Ready", "new_status": "Assigned"})
    assert [row["new_status"] for row in store.list_status_history("L-1")] == ["Assigned", "Ready"]
