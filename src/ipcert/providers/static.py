"""Resolver returning a fixed address."""

import ipaddress
import threading

from ipcert.providers.base import IpResolver


class StaticIpResolver(IpResolver):
    """Resolver for hosts whose public address is known up front.

    Args:
        ip: The public IPv4 or IPv6 address.

    Raises:
        ValueError: If ip is not a valid address.
    """

    def __init__(self, ip: str):
        self.ip = str(ipaddress.ip_address(ip))

    def get_public_ip(self, cancel: threading.Event | None = None) -> str:
        return self.ip
