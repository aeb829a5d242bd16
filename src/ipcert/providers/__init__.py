"""Public IP resolvers."""

from ipcert.providers.base import IpResolver
from ipcert.providers.checkip import CheckIpResolver
from ipcert.providers.static import StaticIpResolver

__all__ = ["CheckIpResolver", "IpResolver", "StaticIpResolver"]
