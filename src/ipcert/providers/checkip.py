"""Resolver querying an HTTP "what is my IP" service."""

import ipaddress
import threading

import httpx

from ipcert._logging import get_logger
from ipcert.exceptions import IpResolutionError
from ipcert.providers.base import IpResolver

logger = get_logger(__name__)

CHECKIP_URL = "https://checkip.amazonaws.com/"


class CheckIpResolver(IpResolver):
    """Resolver backed by a plain-text IP echo service.

    Args:
        url: Service URL; the response body must be the caller's address.
        timeout: HTTP request timeout in seconds (default: 10).
    """

    def __init__(self, url: str = CHECKIP_URL, timeout: float = 10):
        self.url = url
        self.timeout = timeout

    def get_public_ip(self, cancel: threading.Event | None = None) -> str:
        try:
            response = httpx.get(self.url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("Public IP lookup failed", extra={"url": self.url, "error": str(e)})
            raise IpResolutionError(f"Public IP lookup failed: {e}") from e

        text = response.text.strip()
        if not text:
            raise IpResolutionError(f"Empty response from {self.url}")
        try:
            return str(ipaddress.ip_address(text))
        except ValueError as e:
            raise IpResolutionError(f"Invalid address from {self.url}: {text!r}") from e
