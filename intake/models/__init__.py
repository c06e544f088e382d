"""
Data models for the intake pipeline.

This module exports the record types and the transient result types
used while sending.
"""

from .transaction import (
    Attachment,
    TransactionRecord,
    TransactionType,
    TRANSACTION_TYPES,
    CATEGORY_TYPES,
    category_of,
    section_key,
    is_priced,
    compute_total,
)
from .outcome import AttemptResult, DeliveryOutcome, BatchReport

__all__ = [
    'Attachment',
    'TransactionRecord',
    'TransactionType',
    'TRANSACTION_TYPES',
    'CATEGORY_TYPES',
    'category_of',
    'section_key',
    'is_priced',
    'compute_total',
    'AttemptResult',
    'DeliveryOutcome',
    'BatchReport',
]
