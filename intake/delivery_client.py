"""
Delivery client: POSTs one payload to the first candidate that accepts it.

Candidates are tried strictly in order. Each attempt has its own timeout.
A timeout, a network failure or a non-success status only moves on to
the next candidate; the record fails when the list runs out. There are
no retries of the same URL here. A record that failed stays pending and
is tried again on the next batch the user starts.
"""

import logging
import time
from typing import Callable, List, Optional
from urllib.parse import urljoin, urlsplit

import requests

from intake.errors import DeliveryError, RemoteRejection, TransportError
from intake.models.outcome import AttemptResult, DeliveryOutcome
from intake.payload_builder import BuiltPayload
from intake.utils.http import describe_error, is_success_status, truncate

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 12.0


class DeliveryClient:
    """
    Sends built payloads over HTTP with per-URL fallback.

    Args:
        session: requests.Session (or anything with a compatible post())
        timeout: Seconds allowed per attempt
        origin: Scheme and host used to resolve relative candidate URLs
        clock: Monotonic clock, injectable for tests
    """

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        origin: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.origin = origin
        self.clock = clock

    def _absolute(self, url: str) -> str:
        """
        Resolve a relative candidate against the configured origin.

        Raises:
            TransportError: If the URL is relative and no origin is set
        """
        if urlsplit(url).scheme:
            return url
        if not self.origin:
            raise TransportError(f"Cannot send to relative URL {url} without an origin", url=url)
        return urljoin(self.origin, url)

    def post(self, url: str, payload: BuiltPayload) -> requests.Response:
        """
        Make one POST and classify the result.

        Returns:
            The response, when it counts as delivered

        Raises:
            TransportError: On timeout or network failure
            RemoteRejection: On a non-success status
        """
        target = self._absolute(url)
        try:
            response = self.session.post(target, timeout=self.timeout, **payload.request_kwargs())
        except requests.RequestException as e:
            raise TransportError(describe_error(e), url=url) from e

        if not is_success_status(response.status_code):
            raise RemoteRejection(url, response.status_code, truncate(response.text))
        return response

    def deliver(self, payload: BuiltPayload, candidates: List[str]) -> DeliveryOutcome:
        """
        Try each candidate in order until one accepts the payload.

        Args:
            payload: Payload from the payload builder
            candidates: Ordered candidate URLs from the endpoint resolver

        Returns:
            DeliveryOutcome with every attempt made; delivered is True as
            soon as one candidate succeeds
        """
        outcome = DeliveryOutcome(record_id=payload.record_id)

        for url in candidates:
            started = self.clock()
            try:
                response = self.post(url, payload)
            except RemoteRejection as e:
                outcome.attempts.append(AttemptResult(
                    url=url, ok=False, status=e.status,
                    error=f"HTTP {e.status}: {e.body}" if e.body else f"HTTP {e.status}",
                    elapsed=self.clock() - started,
                ))
                outcome.last_error = e
                logger.error(f"  HTTP {e.status} from {url}: {e.body}")
                continue
            except DeliveryError as e:
                outcome.attempts.append(AttemptResult(
                    url=url, ok=False, error=str(e), elapsed=self.clock() - started,
                ))
                outcome.last_error = e
                logger.error(f"  Request to {url} failed: {e}")
                continue

            outcome.attempts.append(AttemptResult(
                url=url, ok=True, status=response.status_code, elapsed=self.clock() - started,
            ))
            outcome.delivered = True
            outcome.last_error = None
            logger.info(f"  Delivered to {url} (HTTP {response.status_code})")
            break

        if not outcome.delivered:
            logger.error(
                f"  All {len(candidates)} candidate URL(s) failed for record {payload.record_id}"
            )
        return outcome
