"""
HTTP session configuration for clip downloads.

Provides browser-like media headers, the connect/overall timeouts used for
every transfer, and a factory for configured aiohttp sessions.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional
from urllib.parse import urlparse

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

logger = logging.getLogger(__name__)

# Connect / request-start timeout and overall per-transfer timeout (seconds)
CONNECT_TIMEOUT = 30
TRANSFER_TIMEOUT = 180

# Headers for media/file downloads
MEDIA_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/144.0.0.0 Safari/537.36",
    "Accept": "video/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "identity;q=1, *;q=0",
    "Sec-Fetch-Dest": "video",
    "Sec-Fetch-Mode": "no-cors",
    "Sec-Fetch-Site": "same-site",
}


def is_downloadable_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    try:
        parsed = urlparse(url)
    except (TypeError, ValueError):
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.hostname)


def get_media_headers_with_referer(url: str) -> dict:
    """
    Get media headers with a Referer header derived from the URL.
    Many CDNs check Referer to prevent hotlinking.
    """
    headers = MEDIA_HEADERS.copy()
    parsed = urlparse(url)
    if parsed.scheme and parsed.hostname:
        headers["Referer"] = f"{parsed.scheme}://{parsed.hostname}/"
        headers["Origin"] = f"{parsed.scheme}://{parsed.hostname}"
    return headers


class HttpClientConfig:
    """Connection settings for download sessions."""

    def __init__(
        self,
        connect_timeout: float = CONNECT_TIMEOUT,
        transfer_timeout: float = TRANSFER_TIMEOUT,
        max_connections: int = 10,
        max_connections_per_host: int = 4,
    ):
        self.connect_timeout = connect_timeout
        self.transfer_timeout = transfer_timeout
        self.max_connections = max_connections
        self.max_connections_per_host = max_connections_per_host

    def to_dict(self) -> Dict[str, float]:
        return {
            "connect_timeout": self.connect_timeout,
            "transfer_timeout": self.transfer_timeout,
            "max_connections": self.max_connections,
            "max_connections_per_host": self.max_connections_per_host,
        }

    def client_timeout(self) -> ClientTimeout:
        return ClientTimeout(total=self.transfer_timeout, sock_connect=self.connect_timeout)


def create_async_session(
    config: Optional[HttpClientConfig] = None,
    headers: Optional[Dict[str, str]] = None,
) -> aiohttp.ClientSession:
    """
    Create a configured aiohttp.ClientSession.

    Must be called from within a running event loop.

    Args:
        config: Connection settings (defaults to HttpClientConfig())
        headers: Default headers (defaults to MEDIA_HEADERS)
    """
    config = config or HttpClientConfig()
    connector = TCPConnector(
        limit=config.max_connections,
        limit_per_host=config.max_connections_per_host,
        ttl_dns_cache=300,
    )
    logger.debug(f"Creating download session: {config.to_dict()}")
    return aiohttp.ClientSession(
        connector=connector,
        timeout=config.client_timeout(),
        headers=headers or MEDIA_HEADERS,
    )
