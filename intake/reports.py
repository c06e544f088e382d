"""
Summary figures over pending records.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable

from intake.models.transaction import TransactionRecord


@dataclass
class RecordSummary:
    """
    Totals across a set of records.

    Attributes:
        total_records: Number of records
        total_amount: Sum of totalAmount, rounded to cents
        amount_by_type: Sum of totalAmount per record type
        count_by_type: Number of records per type
    """
    total_records: int = 0
    total_amount: float = 0.0
    amount_by_type: Dict[str, float] = field(default_factory=dict)
    count_by_type: Dict[str, int] = field(default_factory=dict)


def summarize(records: Iterable[TransactionRecord]) -> RecordSummary:
    """Compute totals for the given records."""
    summary = RecordSummary()
    for record in records:
        summary.total_records += 1
        summary.total_amount += record.total_amount
        summary.amount_by_type[record.type] = (
            summary.amount_by_type.get(record.type, 0.0) + record.total_amount
        )
        summary.count_by_type[record.type] = summary.count_by_type.get(record.type, 0) + 1

    summary.total_amount = round(summary.total_amount, 2)
    summary.amount_by_type = {k: round(v, 2) for k, v in summary.amount_by_type.items()}
    return summary
