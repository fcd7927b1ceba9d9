"""Tests for organization scoped listings and the live load board."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from load_coordinator.models.loads import Organization, Role, UserProfile  # noqa: E402
from load_coordinator.services.load_store import LoadStore  # noqa: E402
from load_coordinator.services.visibility import LoadBoard, visible_loads  # noqa: E402


WILLBANKS = UserProfile(email="ops@willbanks.example", role=Role.ADMIN, organization=Organization.WILLBANKS)
WSI = UserProfile(email="dock@wsi.example", role=Role.OPERATOR, organization=Organization.WSI, location_filter="WSI")
JORDAN = UserProfile(
    email="dispatch@jordan.example",
    role=Role.OPERATOR,
    organization=Organization.JORDAN,
    carrier_filter="Jordan",
)


def _store(tmp_path) -> LoadStore:
    store = LoadStore(tmp_path / "board.db")
    store.upsert(
        "loads",
        [
            {"load_id": "A", "ship_from_loc": "WSI", "carrier_code": "Jordan", "status": "Open",
             "ship_req_date": "2024-04-01T00:00:00+00:00", "created_at": "2024-01-01T00:00:00+00:00"},
            {"load_id": "B", "ship_from_loc": "WSI", "carrier_code": "Jordan", "status": "Ready",
             "ship_req_date": "2024-05-01T00:00:00+00:00", "created_at": "2024-01-02T00:00:00+00:00"},
            {"load_id": "C", "ship_from_loc": "ATL", "carrier_code": "Jordan", "status": "Shipped",
             "ship_req_date": None, "created_at": "2024-01-03T00:00:00+00:00"},
            {"load_id": "D", "ship_from_loc": "ATL", "carrier_code": "Other", "status": "Assigned",
             "ship_req_date": "2024-05-01T00:00:00+00:00", "created_at": "2024-01-04T00:00:00+00:00"},
            {"load_id": "E", "ship_from_loc": "WSI", "carrier_code": "Jordan", "status": "Closed",
             "ship_req_date": None, "created_at": "2024-01-05T00:00:00+00:00"},
        ],
    )
    return store


def _ids(store: LoadStore, profile: UserProfile):
    return [row["load_id"] for row in store.query_filtered("loads", visible_loads(profile))]


def test_willbanks_sees_everything_newest_ship_date_first(tmp_path):
    store = _store(tmp_path)
    # D and B share a ship date, so the later created D comes first; undated loads trail.
    assert _ids(store, WILLBANKS) == ["D", "B", "A", "E", "C"]


def test_wsi_sees_only_its_ship_from_location(tmp_path):
    assert _ids(_store(tmp_path), WSI) == ["B", "A", "E"]


def test_jordan_sees_only_its_carrier_once_released(tmp_path):
    assert _ids(_store(tmp_path), JORDAN) == ["B", "C"]


def test_profiles_without_filters_are_unrestricted(tmp_path):
    store = _store(tmp_path)
    unfiltered_wsi = UserProfile(email="x@wsi.example", role=Role.OPERATOR, organization=Organization.WSI)
    assert len(_ids(store, unfiltered_wsi)) == 5


def test_board_listing_counts_by_status(tmp_path):
    board = LoadBoard(_store(tmp_path))
    listing = board.list_loads(JORDAN)
    assert listing.count == 2
    assert listing.counts_by_status["Ready"] == 1
    assert listing.counts_by_status["Shipped"] == 1
    assert listing.counts_by_status["Open"] == 0


def test_board_reloads_watched_snapshots_on_change(tmp_path):
    store = _store(tmp_path)
    board = LoadBoard(store)
    board.list_loads(JORDAN)
    start = board.revision

    store.update("loads", "A", {"status": "Ready"})

    assert board.revision == start + 1
    snapshot = board.snapshot(JORDAN.email)
    assert [load.load_id for load in snapshot.loads] == ["B", "A", "C"]
    assert snapshot.revision == board.revision

    board.unwatch(JORDAN.email)
    assert board.snapshot(JORDAN.email) is None


def test_board_listing_is_served_from_the_watched_snapshot(tmp_path, monkeypatch):
    store = _store(tmp_path)
    board = LoadBoard(store)
    board.list_loads(WSI)

    queries = []
    original = store.query_filtered

    def counting_query(table, query=None):
        queries.append(table)
        return original(table, query)

    monkeypatch.setattr(store, "query_filtered", counting_query)

    assert board.list_loads(WSI).count == 3
    assert queries == []

    store.update("loads", "C", {"ship_from_loc": "WSI"})
    assert len(queries) == 1
    assert board.list_loads(WSI).count == 4
    assert len(queries) == 1


def test_board_close_drops_its_subscription(tmp_path):
    store = _store(tmp_path)
    board = LoadBoard(store)
    assert store.changes.subscriber_count("loads") == 1
    board.close()
    assert store.changes.subscriber_count("loads") == 0
