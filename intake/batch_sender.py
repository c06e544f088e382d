"""
Batch sender: delivers every pending record of one category.

This module coordinates the send pipeline for a user-triggered batch:
1. Snapshot the pending records of the category
2. Resolve the candidate URLs once for the whole batch
3. Build and deliver each record in order, one at a time
4. Remove the delivered records from the store

Records are never sent concurrently. A failure on one record (unreadable
photo, every candidate down) is counted and the batch carries on. Only
a missing endpoint configuration stops a batch, and it does so before
any request is made.
"""

import logging
import time
from typing import Callable, List, Optional

import requests

from intake.delivery_client import DeliveryClient
from intake.endpoint_resolver import EndpointResolver
from intake.errors import ConfigurationError, ReadError
from intake.models.outcome import BatchReport, DeliveryOutcome
from intake.models.transaction import TransactionRecord
from intake.payload_builder import build_payload, choose_encoding
from intake.storage import RecordStore

logger = logging.getLogger(__name__)

DEFAULT_PACING_DELAY = 0.15  # seconds


class BatchSender:
    """
    Sends pending records sequentially and reconciles the store.

    Args:
        store: Record store holding the pending records
        client: Delivery client used for each record
        resolver: Endpoint resolver for the candidate URLs
        attachment_encoding: "auto", "json" or "multipart"
        pacing_delay: Seconds to wait after each record
        sleep: Sleep function, injectable for tests
    """

    def __init__(
        self,
        store: RecordStore,
        client: DeliveryClient,
        resolver: EndpointResolver,
        attachment_encoding: str = "auto",
        pacing_delay: float = DEFAULT_PACING_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.client = client
        self.resolver = resolver
        self.attachment_encoding = attachment_encoding
        self.pacing_delay = pacing_delay
        self.sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings,
        store: RecordStore,
        session: Optional[requests.Session] = None,
    ) -> "BatchSender":
        """Wire a sender, client and resolver from one Settings value."""
        client = DeliveryClient(
            session=session,
            timeout=settings.request_timeout,
            origin=settings.origin,
        )
        return cls(
            store=store,
            client=client,
            resolver=EndpointResolver.from_settings(settings),
            attachment_encoding=settings.attachment_encoding,
            pacing_delay=settings.pacing_delay,
        )

    def _send_one(
        self,
        record: TransactionRecord,
        candidates: List[str],
        encoding: str,
    ) -> DeliveryOutcome:
        """Build and deliver a single record; never raises."""
        try:
            payload = build_payload(record, encoding)
        except ReadError as e:
            logger.error(f"  Attachment unreadable, skipping record: {e}")
            return DeliveryOutcome(record_id=record.id, last_error=e)

        try:
            return self.client.deliver(payload, candidates)
        except Exception as e:
            logger.error(f"  Unexpected error sending {record.id}: {type(e).__name__}: {e}")
            return DeliveryOutcome(record_id=record.id, last_error=e)

    def send_pending(
        self,
        category: str,
        pacing_delay: Optional[float] = None,
        raise_on_config_error: bool = False,
    ) -> BatchReport:
        """
        Send all pending records of one category.

        Args:
            category: "purchases" or "unloadings"
            pacing_delay: Override for the delay between records
            raise_on_config_error: Raise ConfigurationError instead of
                reporting it when no candidate URL exists

        Returns:
            BatchReport with succeeded/failed counts and per-record outcomes

        Raises:
            StoreBusyError: If another batch is already running
            ConfigurationError: Only with raise_on_config_error
        """
        delay = self.pacing_delay if pacing_delay is None else pacing_delay
        report = BatchReport(category=category)

        with self.store.exclusive():
            records = self.store.list_category(category)
            if not records:
                logger.info(f"No pending {category} to send")
                report.nothing_to_send = True
                return report

            candidates = self.resolver.candidates()
            if not candidates:
                error = ConfigurationError("No delivery URL is configured")
                logger.error(f"Refusing to send {len(records)} {category}: {error}")
                if raise_on_config_error:
                    raise error
                report.configuration_error = str(error)
                return report

            encoding = choose_encoding(self.attachment_encoding, self.resolver.is_proxy)
            report.total = len(records)
            logger.info(
                f"Sending {len(records)} {category} to {len(candidates)} candidate URL(s) "
                f"as {encoding}"
            )

            for i, record in enumerate(records, start=1):
                logger.info(f"[{i}/{len(records)}] {record.type}: {record.product_name}")
                outcome = self._send_one(record, candidates, encoding)
                report.outcomes.append(outcome)
                if outcome.delivered:
                    report.succeeded += 1
                else:
                    report.failed += 1

                self.sleep(delay)

            removed = self.store.remove_many(report.delivered_ids)
            logger.debug(f"Removed {removed} delivered record(s) from the store")

        logger.info(f"Batch complete: {report.summary_message()}")
        return report
