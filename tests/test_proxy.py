"""
Unit tests for the forwarding proxy.

Run with: pytest tests/test_proxy.py -v

The upstream collector is a fake requests session; the proxy itself is
exercised through Flask's test client.
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import Settings
from intake.errors import ConfigurationError
from intake.proxy import create_app

UPSTREAM = "https://collector.example.com/webhook/delivery"
ALLOWED = "https://intake.example.com"


def upstream_response(status=200, body=b'{"ok":true}', content_type="application/json"):
    response = MagicMock()
    response.status_code = status
    response.content = body
    response.headers = {"Content-Type": content_type}
    return response


@pytest.fixture
def session():
    session = MagicMock()
    session.post.return_value = upstream_response()
    return session


@pytest.fixture
def client(session):
    settings = Settings(upstream_url=UPSTREAM, allowed_origins=(ALLOWED,))
    return create_app(settings, session=session).test_client()


class TestForwarding:
    """Tests for POST forwarding."""

    def test_json_body_forwarded_unmodified(self, client, session):
        """Test that the body and content type reach the collector as sent."""
        body = b'{"version": 1, "submission": {"id": "rec-1"}}'
        response = client.post("/api/delivery", data=body, content_type="application/json")

        assert response.status_code == 200
        assert response.data == b'{"ok":true}'
        args, kwargs = session.post.call_args
        assert args[0] == UPSTREAM
        assert kwargs["data"] == body
        assert kwargs["headers"]["Content-Type"] == "application/json"

    def test_multipart_content_type_kept(self, client, session):
        """Test that multipart boundaries survive forwarding."""
        body = b"--xyz\r\nContent-Disposition: form-data; name=\"data\"\r\n\r\n{}\r\n--xyz--\r\n"
        client.post("/api/delivery", data=body, content_type="multipart/form-data; boundary=xyz")

        kwargs = session.post.call_args.kwargs
        assert kwargs["headers"]["Content-Type"] == "multipart/form-data; boundary=xyz"
        assert kwargs["data"] == body

    def test_target_test_uses_test_webhook(self, client, session):
        """Test that target=test forwards to the test webhook."""
        client.post("/api/delivery?target=test", data=b"{}", content_type="application/json")
        assert session.post.call_args[0][0] == "https://collector.example.com/webhook-test/delivery"

    def test_explicit_test_upstream(self, session):
        """Test that a configured test upstream wins over the derived one."""
        settings = Settings(upstream_url=UPSTREAM, upstream_test_url="https://test.example.com/hook")
        client = create_app(settings, session=session).test_client()
        client.post("/api/delivery?target=test", data=b"{}", content_type="application/json")
        assert session.post.call_args[0][0] == "https://test.example.com/hook"

    def test_upstream_status_relayed(self, client, session):
        """Test that upstream errors come back verbatim."""
        session.post.return_value = upstream_response(404, b"Webhook not registered", "text/plain")
        response = client.post("/api/delivery", data=b"{}", content_type="application/json")
        assert response.status_code == 404
        assert response.data == b"Webhook not registered"

    def test_forwarding_failure_is_502(self, client, session):
        """Test that a network failure upstream becomes a 502."""
        session.post.side_effect = requests.ConnectionError("refused")
        response = client.post("/api/delivery", data=b"{}", content_type="application/json")
        assert response.status_code == 502
        assert response.get_json()["error"] == "Bad gateway to collector"
        assert response.get_json()["detail"] == "Connection error: refused"


class TestMethodsAndCors:
    """Tests for preflight, method filtering and CORS headers."""

    def test_preflight_allowed_origin(self, client, session):
        """Test that preflight echoes an allow-listed origin."""
        response = client.options("/api/delivery", headers={"Origin": ALLOWED})
        assert response.status_code == 204
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED
        assert response.headers["Vary"] == "Origin"
        assert "POST" in response.headers["Access-Control-Allow-Methods"]
        session.post.assert_not_called()

    def test_preflight_unknown_origin(self, client):
        """Test that unknown origins are not echoed."""
        response = client.options("/api/delivery", headers={"Origin": "https://evil.example.com"})
        assert response.status_code == 204
        assert "Access-Control-Allow-Origin" not in response.headers

    def test_empty_allow_list_accepts_any_origin(self, session):
        """Test that no allow-list means every origin is echoed."""
        client = create_app(Settings(upstream_url=UPSTREAM), session=session).test_client()
        response = client.options("/api/delivery", headers={"Origin": "https://any.example.com"})
        assert response.headers["Access-Control-Allow-Origin"] == "https://any.example.com"

    @pytest.mark.parametrize("method", ["get", "put", "delete", "patch"])
    def test_other_methods_rejected(self, client, session, method):
        """Test that non-POST/OPTIONS methods get a 405."""
        response = getattr(client, method)("/api/delivery")
        assert response.status_code == 405
        assert response.headers["Allow"] == "POST, OPTIONS"
        session.post.assert_not_called()

    def test_post_carries_cors_headers(self, client):
        """Test that forwarded responses also carry CORS headers."""
        response = client.post(
            "/api/delivery", data=b"{}", content_type="application/json",
            headers={"Origin": ALLOWED},
        )
        assert response.headers["Access-Control-Allow-Origin"] == ALLOWED


class TestCreateApp:
    """Tests for app construction."""

    def test_requires_upstream(self):
        """Test that the proxy refuses to start without an upstream."""
        with pytest.raises(ConfigurationError):
            create_app(Settings())
