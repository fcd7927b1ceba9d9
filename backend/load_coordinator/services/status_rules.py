"""Automatic load status transitions driven by driver assignment."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from load_coordinator.models.loads import LoadStatus


@dataclass(frozen=True)
class StatusDecision:
    final_status: LoadStatus
    auto_transitioned: bool


def _has_driver(value: Optional[str]) -> bool:
    return bool(str(value or "").strip())


def compute_final_status(
    current_status: LoadStatus | str,
    current_driver: Optional[str],
    changes: Mapping[str, Any],
) -> StatusDecision:
    """Decide the status a load should be stored with after ``changes``.

    An explicit ``status`` in ``changes`` always wins. Otherwise a Ready load
    that ends up with a driver becomes Assigned, an Assigned load that ends up
    without one falls back to Ready, and any other status is left alone.
    A field cleared in ``changes`` is present with a ``None`` value; fields
    absent from ``changes`` keep their current value.
    """
    if changes.get("status") is not None:
        return StatusDecision(LoadStatus(changes["status"]), auto_transitioned=False)

    status = LoadStatus(current_status)
    driver = changes["driver_name"] if "driver_name" in changes else current_driver

    if _has_driver(driver) and status == LoadStatus.READY:
        return StatusDecision(LoadStatus.ASSIGNED, auto_transitioned=True)
    if not _has_driver(driver) and status == LoadStatus.ASSIGNED:
        return StatusDecision(LoadStatus.READY, auto_transitioned=True)
    return StatusDecision(status, auto_transitioned=False)
