"""
Same-origin forwarding proxy for the collector webhook.

The data-entry front end posts to /api/delivery on its own origin; this
app forwards the body unchanged to the collector and relays the answer.
`?target=test` selects the collector's test webhook.

Run it with:
    python main.py proxy
"""

import logging
from typing import Optional

import requests
from flask import Flask, Response, jsonify, request

from intake.endpoint_resolver import url_for_mode
from intake.errors import ConfigurationError
from intake.utils.http import describe_error

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "POST, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization"

# Flask registers HEAD with GET, so every other verb lands in the handler
ROUTE_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _upstream_for(settings, target: Optional[str]) -> str:
    """Pick the collector URL for the requested target."""
    if target == "test":
        return settings.upstream_test_url or url_for_mode(settings.upstream_url, "test")
    return settings.upstream_url


def _apply_cors(response: Response, origin: str, allowed_origins) -> Response:
    """
    Add CORS headers to a response.

    The caller's origin is echoed only if it is on the allow-list; an
    empty allow-list accepts any origin.
    """
    if origin and (not allowed_origins or origin in allowed_origins):
        response.headers['Access-Control-Allow-Origin'] = origin
        response.headers['Vary'] = 'Origin'
    response.headers['Access-Control-Allow-Methods'] = ALLOWED_METHODS
    response.headers['Access-Control-Allow-Headers'] = ALLOWED_HEADERS
    return response


def create_app(settings, session: Optional[requests.Session] = None) -> Flask:
    """
    Build the proxy Flask app.

    Args:
        settings: Settings with upstream_url, allowed_origins and proxy_route
        session: requests.Session used for forwarding, injectable for tests

    Raises:
        ConfigurationError: If no upstream collector URL is configured
    """
    if not settings.upstream_url:
        raise ConfigurationError("N8N_WEBHOOK_URL is not set; the proxy has nowhere to forward to")

    app = Flask(__name__)
    http = session or requests.Session()

    @app.route(settings.proxy_route, methods=ROUTE_METHODS)
    def delivery():
        origin = request.headers.get('Origin', '')

        if request.method == 'OPTIONS':
            return _apply_cors(Response(status=204), origin, settings.allowed_origins)

        if request.method != 'POST':
            response = jsonify({"error": "Method not allowed"})
            response.status_code = 405
            response.headers['Allow'] = ALLOWED_METHODS
            return _apply_cors(response, origin, settings.allowed_origins)

        upstream = _upstream_for(settings, request.args.get('target'))
        headers = {}
        if request.content_type:
            headers['Content-Type'] = request.content_type

        try:
            forwarded = http.post(
                upstream,
                data=request.get_data(),
                headers=headers,
                timeout=settings.proxy_timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Forwarding to {upstream} failed: {e}")
            response = jsonify({"error": "Bad gateway to collector", "detail": describe_error(e)})
            response.status_code = 502
            return _apply_cors(response, origin, settings.allowed_origins)

        logger.info(f"Forwarded {request.content_length or 0} bytes to {upstream}: HTTP {forwarded.status_code}")
        response = Response(
            forwarded.content,
            status=forwarded.status_code,
            content_type=forwarded.headers.get('Content-Type', 'text/plain; charset=utf-8'),
        )
        return _apply_cors(response, origin, settings.allowed_origins)

    return app
