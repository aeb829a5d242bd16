"""ACME directory providers."""

import threading
from abc import ABC, abstractmethod

import httpx

from ipcert._logging import get_logger
from ipcert.exceptions import AcmeError
from ipcert.models import Directory

logger = get_logger(__name__)

LETSENCRYPT_DIRECTORY_URL = "https://acme-v02.api.letsencrypt.org/directory"
LETSENCRYPT_STAGING_DIRECTORY_URL = "https://acme-staging-v02.api.letsencrypt.org/directory"


class DirectoryProvider(ABC):
    """Source of the CA's endpoint directory."""

    @abstractmethod
    def get_directory(self, http: httpx.Client) -> Directory:
        """Return the ACME directory.

        Args:
            http: HTTP client to use if the directory must be fetched.

        Returns:
            The Directory resource.
        """
        ...


class HttpDirectoryProvider(DirectoryProvider):
    """Fetches the directory once per process and caches it.

    Args:
        directory_url: URL of the ACME directory endpoint.
    """

    def __init__(self, directory_url: str = LETSENCRYPT_DIRECTORY_URL):
        self.directory_url = directory_url
        self._directory: Directory | None = None
        self._lock = threading.Lock()

    def get_directory(self, http: httpx.Client) -> Directory:
        directory = self._directory
        if directory is not None:
            return directory

        with self._lock:
            if self._directory is None:
                self._directory = self._fetch(http)
            return self._directory

    def _fetch(self, http: httpx.Client) -> Directory:
        response = http.get(self.directory_url)
        if response.status_code >= 400:
            logger.error(
                "ACME directory fetch failed",
                extra={
                    "url": self.directory_url,
                    "status_code": response.status_code,
                    "body": response.text,
                },
            )
            raise AcmeError(
                type="unknown",
                detail=f"Directory fetch failed: {response.text}",
                status_code=response.status_code,
            )

        logger.debug("ACME directory fetched", extra={"url": self.directory_url})
        return Directory.model_validate(response.json())


class StaticDirectoryProvider(DirectoryProvider):
    """Directory supplied up front, never fetched."""

    def __init__(self, directory: Directory):
        self.directory = directory

    def get_directory(self, http: httpx.Client) -> Directory:
        return self.directory
