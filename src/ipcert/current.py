"""Process-wide holder of the certificate served on TLS handshakes."""

import ssl
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import NamedTuple

from ipcert._logging import get_logger
from ipcert.models import CertificateRecord

logger = get_logger(__name__)


def build_ssl_context(record: CertificateRecord) -> ssl.SSLContext:
    """Create a server-side TLS context serving a certificate record.

    The ssl module only loads key material from files, so the PEM data is
    written to a private temporary directory that is removed afterwards.

    Args:
        record: Certificate, issuer chain and private key.

    Returns:
        A server SSLContext presenting the full chain.
    """
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    context.minimum_version = ssl.TLSVersion.TLSv1_2
    with tempfile.TemporaryDirectory(prefix="ipcert-") as tmp:
        cert_path = Path(tmp) / "fullchain.pem"
        key_path = Path(tmp) / "privkey.pem"
        cert_path.write_text(record.fullchain_pem, encoding="ascii")
        key_path.write_text(record.private_key_pem, encoding="ascii")
        key_path.chmod(0o600)
        context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
    return context


class _Published(NamedTuple):
    record: CertificateRecord
    context: ssl.SSLContext


class CertificateProvider(ABC):
    """Source of the certificate presented to TLS clients."""

    @property
    @abstractmethod
    def current(self) -> CertificateRecord | None:
        """The published certificate, or None before the first publish."""
        ...

    @abstractmethod
    def publish(self, record: CertificateRecord) -> None:
        """Make a certificate the one served from now on.

        Args:
            record: The certificate to serve.
        """
        ...


class CurrentCertificateProvider(CertificateProvider):
    """Single-slot holder swapped atomically on publish.

    Readers (TLS handshakes) take no lock and do no I/O: they read one
    attribute that always refers to a fully built record and context.
    """

    def __init__(self) -> None:
        self._published: _Published | None = None

    @property
    def current(self) -> CertificateRecord | None:
        published = self._published
        return published.record if published is not None else None

    @property
    def context(self) -> ssl.SSLContext | None:
        """TLS context for the published certificate."""
        published = self._published
        return published.context if published is not None else None

    def publish(self, record: CertificateRecord) -> None:
        # Build everything before the swap so readers never see a partial state
        published = _Published(record, build_ssl_context(record))
        self._published = published
        logger.info(
            "Certificate published",
            extra={"ip": record.identifier, "not_after": record.not_after},
        )

    def select(self, server_name: str | None) -> CertificateRecord | None:
        """Certificate for a handshake; the server name does not matter."""
        return self.current

    def sni_callback(
        self, ssl_object: ssl.SSLObject, server_name: str | None, context: ssl.SSLContext
    ) -> int | None:
        """ssl.SSLContext.sni_callback selecting the published certificate."""
        published = self._published
        if published is None:
            return ssl.ALERT_DESCRIPTION_HANDSHAKE_FAILURE
        ssl_object.context = published.context
        return None

    def make_server_context(self) -> ssl.SSLContext:
        """Listening context that defers certificate choice to sni_callback."""
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.minimum_version = ssl.TLSVersion.TLSv1_2
        context.sni_callback = self.sni_callback
        return context
