"""Organization scoped load listing and the live board that keeps it fresh."""
from __future__ import annotations

from collections import Counter
from threading import RLock
from typing import Any, Dict, List, Optional

from load_coordinator.core.logging import logger
from load_coordinator.models.loads import LoadListResponse, LoadRecord, LoadStatus, Organization, UserProfile
from load_coordinator.services.change_feed import Subscription
from load_coordinator.services.load_store import LoadStore, RowQuery


CARRIER_VISIBLE_STATUSES = {
    LoadStatus.READY.value,
    LoadStatus.ASSIGNED.value,
    LoadStatus.SHIPPED.value,
}

LISTING_ORDER = [("ship_req_date", True), ("created_at", True)]


def visible_loads(profile: UserProfile, limit: Optional[int] = None) -> RowQuery:
    """Build the read filter for what ``profile`` may see.

    WSI users with a location filter only see their ship-from location.
    Jordan users with a carrier filter only see their carrier's loads once
    they are Ready, Assigned or Shipped. Everyone else sees every load.
    """
    query = RowQuery(order_by=list(LISTING_ORDER), limit=limit)
    if profile.organization == Organization.WSI and profile.location_filter:
        query.equals["ship_from_loc"] = profile.location_filter
    elif profile.organization == Organization.JORDAN and profile.carrier_filter:
        query.equals["carrier_code"] = profile.carrier_filter
        query.any_of["status"] = set(CARRIER_VISIBLE_STATUSES)
    return query


def counts_by_status(loads: List[LoadRecord]) -> Dict[str, int]:
    counts = Counter(load.status.value for load in loads)
    return {status.value: counts.get(status.value, 0) for status in LoadStatus}


class LoadBoard:
    """Per-profile load snapshots reloaded on every change to the loads table.

    A profile is watched from its first listing on. Any change notification
    triggers a full re-query for each watched profile; the feed payload is
    never merged incrementally.
    """

    def __init__(self, store: LoadStore, limit: Optional[int] = None) -> None:
        self._store = store
        self._limit = limit
        self._lock = RLock()
        self._revision = 0
        self._profiles: Dict[str, UserProfile] = {}
        self._snapshots: Dict[str, List[LoadRecord]] = {}
        self._subscription: Optional[Subscription] = store.subscribe_changes("loads", self._on_change)

    @property
    def revision(self) -> int:
        return self._revision

    def _query(self, profile: UserProfile) -> List[LoadRecord]:
        rows = self._store.query_filtered("loads", visible_loads(profile, limit=self._limit))
        return [LoadRecord(**row) for row in rows]

    def _response(self, loads: List[LoadRecord]) -> LoadListResponse:
        return LoadListResponse(
            loads=loads,
            count=len(loads),
            counts_by_status=counts_by_status(loads),
            revision=self._revision,
        )

    def list_loads(self, profile: UserProfile) -> LoadListResponse:
        """Current listing for ``profile``, served from its watched snapshot."""
        with self._lock:
            loads = self._snapshots.get(profile.email)
            if loads is not None and self._profiles[profile.email] == profile:
                return self._response(loads)
        return self.watch(profile)

    def watch(self, profile: UserProfile) -> LoadListResponse:
        loads = self._query(profile)
        with self._lock:
            self._profiles[profile.email] = profile
            self._snapshots[profile.email] = loads
            return self._response(loads)

    def unwatch(self, email: str) -> None:
        with self._lock:
            self._profiles.pop(email, None)
            self._snapshots.pop(email, None)

    def snapshot(self, email: str) -> Optional[LoadListResponse]:
        with self._lock:
            loads = self._snapshots.get(email)
            if loads is None:
                return None
            return self._response(loads)

    def _on_change(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            self._revision += 1
            profiles = list(self._profiles.values())
        for profile in profiles:
            loads = self._query(profile)
            with self._lock:
                if profile.email in self._profiles:
                    self._snapshots[profile.email] = loads
        logger.debug("Load board refreshed", change_event=payload.get("event"), revision=self._revision, watchers=len(profiles))

    def close(self) -> None:
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        with self._lock:
            self._profiles.clear()
            self._snapshots.clear()
