"""Persistence for the ACME account and issued certificates."""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError

from ipcert._logging import get_logger
from ipcert.crypto import load_private_key_pem, private_key_to_pem
from ipcert.models import AccountKey, CertificateRecord

logger = get_logger(__name__)

ACCOUNT_KEY_FILE = "acme-account-key.pem"
ACCOUNT_KID_FILE = "acme-account-kid.txt"


def sanitize_identifier(identifier: str) -> str:
    """Make an IP identifier safe to use as a file name.

    Args:
        identifier: IPv4 or IPv6 address.

    Returns:
        The identifier with ':' and '/' replaced by '_'.
    """
    return identifier.replace(":", "_").replace("/", "_")


def write_atomic(path: Path, data: str) -> None:
    """Write a file so readers see either the old or the new content.

    The data goes to a temporary file in the same directory, which is then
    renamed over the target. Files are created with mode 0600.

    Args:
        path: Destination file.
        data: Text content.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, 0o600)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


# =============================================================================
# Account storage
# =============================================================================


class AccountStore(ABC):
    """Storage for the long-lived ACME account."""

    @abstractmethod
    def load(self) -> AccountKey | None:
        """Load the stored account.

        Returns:
            The account, or None if none has been saved yet.
        """
        ...

    @abstractmethod
    def save(self, account: AccountKey) -> None:
        """Persist the account key and its kid.

        Args:
            account: The account to store.
        """
        ...


class FileAccountStore(AccountStore):
    """Account stored as a PEM key file and a kid text file.

    Args:
        directory: Directory holding both artifacts.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)
        self.key_path = self.directory / ACCOUNT_KEY_FILE
        self.kid_path = self.directory / ACCOUNT_KID_FILE

    def load(self) -> AccountKey | None:
        if not self.key_path.exists() or not self.kid_path.exists():
            return None

        key = load_private_key_pem(self.key_path.read_text(encoding="utf-8"))
        kid = self.kid_path.read_text(encoding="utf-8").strip()
        logger.debug("ACME account loaded", extra={"kid": kid, "path": str(self.directory)})
        return AccountKey(key=key, kid=kid)

    def save(self, account: AccountKey) -> None:
        # Key first: a kid without its key would be unusable
        write_atomic(self.key_path, private_key_to_pem(account.key))
        write_atomic(self.kid_path, account.kid)
        logger.info("ACME account saved", extra={"kid": account.kid, "path": str(self.directory)})


class MemoryAccountStore(AccountStore):
    """Account kept in process memory only."""

    def __init__(self, account: AccountKey | None = None):
        self._account = account

    def load(self) -> AccountKey | None:
        return self._account

    def save(self, account: AccountKey) -> None:
        self._account = account


# =============================================================================
# Certificate storage
# =============================================================================


class CertificateStore(ABC):
    """Storage for issued certificates, keyed by IP identifier."""

    @abstractmethod
    def load(self, identifier: str) -> CertificateRecord | None:
        """Load the record for an identifier.

        Args:
            identifier: IP address the certificate was issued for.

        Returns:
            The stored record, or None if there is none.
        """
        ...

    @abstractmethod
    def save(self, record: CertificateRecord) -> None:
        """Store a record, replacing any previous one for its identifier.

        Args:
            record: The certificate record to persist.
        """
        ...


class FileCertificateStore(CertificateStore):
    """One JSON file per sanitized identifier.

    Args:
        directory: Directory holding the certificate files.
    """

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def path_for(self, identifier: str) -> Path:
        return self.directory / f"{sanitize_identifier(identifier)}.json"

    def load(self, identifier: str) -> CertificateRecord | None:
        path = self.path_for(identifier)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return CertificateRecord.model_validate_json(data)
        except ValidationError:
            # Treated as missing so the next issuance overwrites it
            logger.warning(
                "Stored certificate is unreadable",
                extra={"ip": identifier, "path": str(path)},
                exc_info=True,
            )
            return None

    def save(self, record: CertificateRecord) -> None:
        path = self.path_for(record.identifier)
        write_atomic(path, record.model_dump_json(indent=2))
        logger.info(
            "Certificate saved",
            extra={"ip": record.identifier, "path": str(path), "not_after": record.not_after},
        )


class MemoryCertificateStore(CertificateStore):
    """Certificates kept in process memory only."""

    def __init__(self) -> None:
        self._records: dict[str, CertificateRecord] = {}
        self._lock = threading.Lock()

    def load(self, identifier: str) -> CertificateRecord | None:
        with self._lock:
            return self._records.get(sanitize_identifier(identifier))

    def save(self, record: CertificateRecord) -> None:
        with self._lock:
            self._records[sanitize_identifier(record.identifier)] = record
