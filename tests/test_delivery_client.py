"""
Unit tests for the delivery client.

Run with: pytest tests/test_delivery_client.py -v

All tests use a fake session; no network calls are made.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from intake.delivery_client import DeliveryClient
from intake.errors import RemoteRejection, TransportError
from intake.payload_builder import BuiltPayload

PRIMARY = "https://hooks.example.com/webhook/delivery"
SECONDARY = "https://hooks.example.com/webhook-test/delivery"


def fake_response(status: int, text: str = "") -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.text = text
    return response


def make_payload() -> BuiltPayload:
    return BuiltPayload(record_id="rec-1", encoding="json", data={"version": 1})


@pytest.fixture
def session():
    return MagicMock()


class TestFallback:
    """Tests for trying candidates in order."""

    def test_timeout_then_success(self, session):
        """Test that a timing-out primary falls through to a working secondary."""
        session.post.side_effect = [requests.Timeout("read timed out"), fake_response(200)]
        client = DeliveryClient(session=session, timeout=11.0)

        outcome = client.deliver(make_payload(), [PRIMARY, SECONDARY])

        assert outcome.delivered is True
        assert outcome.attempted_urls == [PRIMARY, SECONDARY]
        assert outcome.attempts[0].ok is False
        assert "Timeout" in outcome.attempts[0].error
        assert outcome.attempts[1].ok is True
        assert outcome.attempts[1].status == 200
        assert outcome.last_error is None

    def test_stops_at_first_success(self, session):
        """Test that no further candidates are tried after a success."""
        session.post.return_value = fake_response(201)
        client = DeliveryClient(session=session)

        outcome = client.deliver(make_payload(), [PRIMARY, SECONDARY])

        assert outcome.delivered is True
        assert session.post.call_count == 1

    def test_rejection_then_success(self, session):
        """Test that a non-2xx status moves on to the next candidate."""
        session.post.side_effect = [fake_response(404, "Webhook not registered"), fake_response(200)]
        client = DeliveryClient(session=session)

        outcome = client.deliver(make_payload(), [PRIMARY, SECONDARY])

        assert outcome.delivered is True
        assert outcome.attempts[0].status == 404
        assert "Webhook not registered" in outcome.attempts[0].error

    def test_all_candidates_fail(self, session):
        """Test that the last error is reported when every candidate fails."""
        session.post.side_effect = [
            requests.ConnectionError("refused"),
            fake_response(500, "boom"),
        ]
        client = DeliveryClient(session=session)

        outcome = client.deliver(make_payload(), [PRIMARY, SECONDARY])

        assert outcome.delivered is False
        assert len(outcome.attempts) == 2
        assert isinstance(outcome.last_error, RemoteRejection)
        assert outcome.last_error.status == 500

    def test_no_retry_of_same_url(self, session):
        """Test that a single candidate is tried exactly once."""
        session.post.side_effect = requests.ConnectionError("refused")
        client = DeliveryClient(session=session)

        outcome = client.deliver(make_payload(), [PRIMARY])

        assert outcome.delivered is False
        assert session.post.call_count == 1
        assert isinstance(outcome.last_error, TransportError)


class TestRequestShape:
    """Tests for what is handed to the session."""

    def test_timeout_and_payload_passed(self, session):
        """Test that the timeout and the payload kwargs reach post()."""
        session.post.return_value = fake_response(200)
        client = DeliveryClient(session=session, timeout=10.0)
        payload = make_payload()

        client.deliver(payload, [PRIMARY])

        session.post.assert_called_once_with(PRIMARY, timeout=10.0, json=payload.data)

    def test_relative_url_joined_with_origin(self, session):
        """Test that relative candidates are resolved against the origin."""
        session.post.return_value = fake_response(200)
        client = DeliveryClient(session=session, origin="https://intake.example.com")

        client.deliver(make_payload(), ["/api/delivery?target=test"])

        url = session.post.call_args[0][0]
        assert url == "https://intake.example.com/api/delivery?target=test"

    def test_relative_url_without_origin_fails_without_network(self, session):
        """Test that a relative URL with no origin never reaches the network."""
        client = DeliveryClient(session=session)

        outcome = client.deliver(make_payload(), ["/api/delivery"])

        assert outcome.delivered is False
        assert isinstance(outcome.last_error, TransportError)
        session.post.assert_not_called()


class TestStatusClassification:
    """Tests for success classification."""

    @pytest.mark.parametrize("status", [200, 201, 202, 204, 0])
    def test_success_statuses(self, session, status):
        """Test that 2xx and opaque responses count as delivered."""
        session.post.return_value = fake_response(status)
        outcome = DeliveryClient(session=session).deliver(make_payload(), [PRIMARY])
        assert outcome.delivered is True

    @pytest.mark.parametrize("status", [301, 400, 403, 429, 502])
    def test_failure_statuses(self, session, status):
        """Test that anything else is a failed attempt."""
        session.post.return_value = fake_response(status)
        outcome = DeliveryClient(session=session).deliver(make_payload(), [PRIMARY])
        assert outcome.delivered is False
        assert outcome.attempts[0].status == status

    def test_long_body_is_truncated(self, session):
        """Test that error bodies are shortened."""
        session.post.return_value = fake_response(500, "x" * 1000)
        outcome = DeliveryClient(session=session).deliver(make_payload(), [PRIMARY])
        assert len(outcome.last_error.body) < 300
