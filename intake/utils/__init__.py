"""
Utility modules for the intake pipeline.

This module exports reusable helpers that can be used
across the codebase.
"""

from .http import (
    is_success_status,
    truncate,
    describe_error,
    OPAQUE_STATUS,
)

__all__ = [
    'is_success_status',
    'truncate',
    'describe_error',
    'OPAQUE_STATUS',
]
