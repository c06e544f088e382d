"""
Result types for delivery attempts and batch runs.

None of these are persisted. They exist for the length of one batch
and end up as log lines and the summary shown to the user.
"""

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class AttemptResult:
    """
    One POST against one candidate URL.

    Attributes:
        url: Candidate URL that was tried
        ok: True if the attempt counted as delivered
        status: HTTP status, None when no response arrived
        error: Short description of the failure, if any
        elapsed: Seconds spent on the attempt
    """
    url: str
    ok: bool
    status: Optional[int] = None
    error: Optional[str] = None
    elapsed: float = 0.0


@dataclass
class DeliveryOutcome:
    """
    Result of delivering one record across the candidate list.

    Attributes:
        record_id: Id of the record that was sent
        delivered: True as soon as one candidate accepted it
        attempts: Every attempt made, in order
        last_error: The last failure observed, if not delivered
    """
    record_id: str
    delivered: bool = False
    attempts: List[AttemptResult] = field(default_factory=list)
    last_error: Optional[Exception] = None

    @property
    def attempted_urls(self) -> List[str]:
        return [attempt.url for attempt in self.attempts]


@dataclass
class BatchReport:
    """
    Aggregate result of one batch send.

    Attributes:
        category: Batch category ("purchases" or "unloadings")
        total: Number of records attempted
        succeeded: Records confirmed delivered
        failed: Records still pending after the batch
        outcomes: Per-record outcomes, in send order
        nothing_to_send: True if the category had no pending records
        configuration_error: Message when the batch was refused for
            lack of a usable endpoint
    """
    category: str
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    outcomes: List[DeliveryOutcome] = field(default_factory=list)
    nothing_to_send: bool = False
    configuration_error: Optional[str] = None

    @property
    def delivered_ids(self) -> List[str]:
        return [o.record_id for o in self.outcomes if o.delivered]

    @property
    def ok(self) -> bool:
        return self.configuration_error is None and self.failed == 0

    def summary_message(self) -> str:
        """
        User-facing one-line summary of the batch.

        Example:
            >>> BatchReport(category="purchases", total=3, succeeded=2, failed=1).summary_message()
            'Sent: 2. Failed: 1'
        """
        if self.configuration_error:
            return f"No delivery endpoint configured: {self.configuration_error}"
        if self.nothing_to_send:
            return "Nothing to send"
        if self.failed > 0:
            return f"Sent: {self.succeeded}. Failed: {self.failed}"
        return f"All {self.succeeded} records sent successfully"
