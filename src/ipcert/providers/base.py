"""Abstract base class for public IP resolvers."""

import threading
from abc import ABC, abstractmethod


class IpResolver(ABC):
    """Abstract interface for public IP resolvers.

    Resolvers report the address the certificate must be issued for.
    """

    @abstractmethod
    def get_public_ip(self, cancel: threading.Event | None = None) -> str:
        """Determine the current public IP address.

        Args:
            cancel: Event signalling that the caller is shutting down.

        Returns:
            The address as a string.

        Raises:
            IpResolutionError: If the address cannot be determined.
        """
        ...
