"""Unit tests for the confirmation preconditions."""
from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from load_coordinator.models.loads import LoadDetailRecord  # noqa: E402
from load_coordinator.services.validation import validate_confirmation  # noqa: E402


def _line(line: int, status: str, reason: str | None = None) -> LoadDetailRecord:
    return LoadDetailRecord(load_id="L-1", line=line, qty_ordered=10, status_code=status, markoff_reason=reason)


def test_valid_when_trailer_numeric_and_all_lines_resolved():
    result = validate_confirmation("12345", [_line(1, "Loaded"), _line(2, "Marked_Off", "Damaged")])
    assert result.is_valid is True
    assert result.errors == []


def test_missing_trailer_is_reported():
    result = validate_confirmation("  ", [_line(1, "Loaded")])
    assert result.is_valid is False
    assert result.errors == ["Trailer number is required"]


def test_non_numeric_trailer_is_reported():
    result = validate_confirmation("TR-12", [_line(1, "Loaded")])
    assert result.errors == ["Trailer number must be numeric"]


def test_errors_accumulate_in_fixed_order():
    result = validate_confirmation(
        None,
        [
            _line(1, "Open"),
            _line(2, "Open"),
            _line(3, "Marked_Off"),
            {"load_id": "L-1", "line": 4, "status_code": "Marked_Off", "markoff_reason": "  "},
        ],
    )
    assert result.is_valid is False
    assert result.errors == [
        "Trailer number is required",
        '2 line(s) still marked as "Open"',
        "2 marked-off line(s) missing reason",
    ]


def test_load_without_line_items_only_needs_a_trailer():
    assert validate_confirmation("987", []).is_valid is True
