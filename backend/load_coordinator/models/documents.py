"""Value objects handed to the document renderer."""
from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field


class LoadingLine(BaseModel):
    line: int
    item_desc: str = ""
    heat_number: str = ""
    qty_ordered: Optional[float] = None
    qty_shipped: Optional[float] = None
    status_code: str
    markoff_reason: str = ""


class LoadingDocument(BaseModel):
    """Loading sheet for the warehouse floor."""

    load_id: str
    trailer_no: str = ""
    lines: List[LoadingLine] = Field(default_factory=list)


class BillOfLadingStop(BaseModel):
    seq_no: int
    customer_name: str = ""
    address: str = ""
    miles: Optional[float] = None
    weight: Optional[float] = None


class BillOfLadingDocument(BaseModel):
    """Bill of lading with per-stop routing and billing data."""

    load_id: str
    driver_name: str = ""
    trailer_no: str = ""
    stops: List[BillOfLadingStop] = Field(default_factory=list)

    @property
    def total_miles(self) -> float:
        return sum(stop.miles or 0.0 for stop in self.stops)

    @property
    def total_weight(self) -> float:
        return sum(stop.weight or 0.0 for stop in self.stops)
