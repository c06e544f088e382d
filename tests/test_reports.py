"""
Unit tests for report summaries.

Run with: pytest tests/test_reports.py -v
"""

import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from intake.models.transaction import TransactionRecord
from intake.reports import summarize


def make_record(record_type, quantity, price):
    return TransactionRecord.create(
        type=record_type,
        product_name="Carrots",
        quantity=quantity,
        unit="kg",
        location="Metro",
        price_per_unit=price,
    )


class TestSummarize:
    """Tests for summarize()."""

    def test_empty(self):
        """Test that no records give zero totals."""
        summary = summarize([])
        assert summary.total_records == 0
        assert summary.total_amount == 0.0
        assert summary.count_by_type == {}

    def test_totals_by_type(self):
        """Test that amounts and counts are grouped by record type."""
        records = [
            make_record("Purchase", 3, 0.1),
            make_record("Purchase", 2, 1.25),
            make_record("Unloading", 4, 9.0),
            make_record("Delivery", 1, 5.0),
        ]
        summary = summarize(records)

        assert summary.total_records == 4
        assert summary.total_amount == 2.8
        assert summary.amount_by_type == {"Purchase": 2.8, "Unloading": 0.0, "Delivery": 0.0}
        assert summary.count_by_type == {"Purchase": 2, "Unloading": 1, "Delivery": 1}

    def test_rounding_to_cents(self):
        """Test that float sums are rounded to two decimals."""
        records = [make_record("Purchase", 1, 0.1) for _ in range(3)]
        assert summarize(records).total_amount == 0.3
