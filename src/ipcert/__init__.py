"""ipcert - automatic ACME certificates for a server's public IP address."""

from ipcert.client import AcmeClient
from ipcert.current import CurrentCertificateProvider
from ipcert.manager import CertificateManager, RenewalScheduler

__all__ = ["AcmeClient", "CertificateManager", "CurrentCertificateProvider", "RenewalScheduler"]
__version__ = "0.1.0"
