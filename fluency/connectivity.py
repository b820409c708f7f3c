"""Reachability checks against the companion server."""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlsplit

import httpx

DEFAULT_PORT = 7006
API_PREFIX = "/api/fluency"

log = logging.getLogger(__name__)


def build_base_url(address: str) -> str:
    """Turn a ``host`` or ``host:port`` into the API base URL.

    Raises ``ValueError`` when the address has no host or an unusable port.
    """
    address = address.strip().rstrip("/")
    if "://" not in address:
        address = f"http://{address}"
    parts = urlsplit(address)
    host = parts.hostname
    if not host:
        raise ValueError(f"No host in server address {address!r}")
    if ":" in host:
        host = f"[{host}]"
    port = parts.port or DEFAULT_PORT
    return f"{parts.scheme}://{host}:{port}{API_PREFIX}"


def resolve_base_url(address: Optional[str]) -> Optional[str]:
    """Return the API base URL, or ``None`` when sync should stay disabled.

    A blank address disables sync; so does one that cannot be parsed.
    """
    if address is None or not address.strip():
        return None
    try:
        return build_base_url(address)
    except ValueError as exc:
        log.warning("Ignoring invalid server address %r: %s", address, exc)
        return None


class ConnectivityProbe:
    """Single boolean health check.

    ``is_connected`` mirrors the last probe result for status displays only;
    callers that need an answer must probe again.
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self._transport = transport
        self.is_connected = False

    async def probe(self, base_url: str, timeout: float = 3.0) -> bool:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.get(f"{base_url.rstrip('/')}/ping")
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            log.debug("Server connection failed: %s", exc)
            self.is_connected = False
            return False
        self.is_connected = response.status_code == 200
        if not self.is_connected:
            log.debug("Ping to %s returned %s", base_url, response.status_code)
        return self.is_connected
