"""
Endpoint resolution for record delivery.

Turns the configured target into the ordered list of candidate URLs the
delivery client tries for each record. Two kinds of targets exist:

- The same-origin proxy (path ending in /api/delivery). The mode is
  carried by a `target=test` query parameter and the proxy picks the
  matching collector URL.
- A direct collector webhook. The mode is part of the path, either
  /webhook/ (production) or /webhook-test/ (test).

A hard override URL from the hosting environment replaces all of this,
but only when it uses https.
"""

import logging
from typing import List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

PROXY_SUFFIX = "/api/delivery"
TARGET_PARAM = "target"
PRODUCTION_SEGMENT = "/webhook/"
TEST_SEGMENT = "/webhook-test/"


def other_mode(mode: str) -> str:
    return "production" if mode == "test" else "test"


def is_proxy_url(url: str, proxy_suffix: str = PROXY_SUFFIX) -> bool:
    """Return True if the URL points at the forwarding proxy."""
    if not url:
        return False
    return urlsplit(url).path.rstrip('/').endswith(proxy_suffix.rstrip('/'))


def url_for_mode(url: str, mode: str, proxy_suffix: str = PROXY_SUFFIX) -> str:
    """
    Return the equivalent of `url` for the given mode.

    Args:
        url: Proxy path or webhook URL, absolute or relative
        mode: "production" or "test"
        proxy_suffix: Path suffix that identifies the proxy

    Returns:
        The URL with the query discriminator toggled (proxy) or the path
        segment swapped (direct webhook). URLs with neither come back
        unchanged.

    Example:
        >>> url_for_mode("/api/delivery", "test")
        '/api/delivery?target=test'
        >>> url_for_mode("https://hooks.example.com/webhook/delivery", "test")
        'https://hooks.example.com/webhook-test/delivery'
    """
    parts = urlsplit(url)

    if is_proxy_url(url, proxy_suffix):
        query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != TARGET_PARAM]
        if mode == "test":
            query.append((TARGET_PARAM, "test"))
        return urlunsplit(parts._replace(query=urlencode(query)))

    path = parts.path
    if TEST_SEGMENT in path and mode == "production":
        path = path.replace(TEST_SEGMENT, PRODUCTION_SEGMENT, 1)
    elif PRODUCTION_SEGMENT in path and mode == "test":
        path = path.replace(PRODUCTION_SEGMENT, TEST_SEGMENT, 1)
    else:
        return url
    return urlunsplit(parts._replace(path=path))


def resolve_candidates(
    base_url: Optional[str],
    mode: str = "production",
    override_url: Optional[str] = None,
    proxy_suffix: str = PROXY_SUFFIX,
    proxy_mode_fallback: bool = False,
) -> List[str]:
    """
    Compute the ordered candidate list for one send.

    Rules:
    1. An https override is the only candidate, with no fallback.
    2. The primary candidate is the base URL adjusted to `mode`.
    3. The other mode's URL follows as a fallback when it differs.
       Proxy targets skip it unless proxy_mode_fallback is set.
    4. Duplicates are dropped, order is kept.

    Args:
        base_url: Configured target; nothing is produced without it
        mode: "production" or "test"
        override_url: Hard override from the hosting environment
        proxy_suffix: Path suffix that identifies the proxy
        proxy_mode_fallback: Add the other mode's proxy URL as a fallback

    Returns:
        Candidate URLs in priority order, empty when nothing is configured
    """
    if override_url:
        if urlsplit(override_url).scheme.lower() == "https":
            return [override_url]
        logger.warning(f"Ignoring override URL without https: {override_url}")

    if not base_url:
        return []

    candidates: List[str] = []

    def add(url: str) -> None:
        if url and url not in candidates:
            candidates.append(url)

    add(url_for_mode(base_url, mode, proxy_suffix))

    if proxy_mode_fallback or not is_proxy_url(base_url, proxy_suffix):
        add(url_for_mode(base_url, other_mode(mode), proxy_suffix))

    return candidates


class EndpointResolver:
    """
    Resolves delivery candidates for a fixed configuration.

    The configuration is captured once at construction; candidates()
    always returns the same list for the same resolver.
    """

    def __init__(
        self,
        base_url: Optional[str],
        mode: str = "production",
        override_url: Optional[str] = None,
        proxy_suffix: str = PROXY_SUFFIX,
        proxy_mode_fallback: bool = False,
    ):
        self.base_url = base_url
        self.mode = mode
        self.override_url = override_url
        self.proxy_suffix = proxy_suffix
        self.proxy_mode_fallback = proxy_mode_fallback
        self._candidates = resolve_candidates(
            base_url,
            mode=mode,
            override_url=override_url,
            proxy_suffix=proxy_suffix,
            proxy_mode_fallback=proxy_mode_fallback,
        )

    @classmethod
    def from_settings(cls, settings) -> "EndpointResolver":
        return cls(
            settings.base_url,
            mode=settings.mode,
            override_url=settings.override_url,
            proxy_suffix=settings.proxy_route,
            proxy_mode_fallback=settings.proxy_mode_fallback,
        )

    def candidates(self) -> List[str]:
        """Return a copy of the candidate list."""
        return list(self._candidates)

    @property
    def is_proxy(self) -> bool:
        """True if the primary candidate goes through the forwarding proxy."""
        if not self._candidates:
            return False
        return is_proxy_url(self._candidates[0], self.proxy_suffix)
