"""Renewal policy, certificate manager and background scheduler."""

import threading
from datetime import UTC, datetime, timedelta

from ipcert._logging import get_logger
from ipcert.client import AcmeClient
from ipcert.current import CertificateProvider
from ipcert.exceptions import IssuanceCancelled
from ipcert.models import CertificateRecord
from ipcert.providers.base import IpResolver
from ipcert.storage import CertificateStore

logger = get_logger(__name__)

MAX_AGE = timedelta(hours=24)
MIN_REMAINING = timedelta(days=1)
RENEWAL_INTERVAL = timedelta(hours=24)


def needs_renewal(record: CertificateRecord | None, now: datetime) -> bool:
    """Decide whether a stored certificate must be replaced.

    Args:
        record: The stored record, if any.
        now: Current time (timezone-aware).

    Returns:
        True if there is no record, it was issued more than a day ago,
        or it expires within a day.
    """
    if record is None:
        return True
    return record.age(now) > MAX_AGE or record.remaining(now) < MIN_REMAINING


class CertificateManager:
    """Keeps the published certificate valid for the current public IP.

    Args:
        resolver: Source of the public IP address.
        client: ACME client used when a new certificate is needed.
        store: Persisted certificates.
        provider: Holder read by the TLS layer.
    """

    def __init__(
        self,
        resolver: IpResolver,
        client: AcmeClient,
        store: CertificateStore,
        provider: CertificateProvider,
    ):
        self.resolver = resolver
        self.client = client
        self.store = store
        self.provider = provider

    def ensure_fresh(self, cancel: threading.Event | None = None) -> CertificateRecord:
        """Publish a valid certificate, issuing a new one when required.

        Args:
            cancel: Event that aborts an in-flight issuance.

        Returns:
            The published record.

        Raises:
            IpResolutionError: If the public IP cannot be determined.
            AcmeError: If issuance fails; the previous certificate stays published.
        """
        ip = self.resolver.get_public_ip(cancel)
        record = self.store.load(ip)

        if not needs_renewal(record, datetime.now(UTC)):
            logger.debug("Stored certificate is fresh", extra={"ip": ip})
            self.provider.publish(record)
            return record

        logger.info(
            "Requesting certificate",
            extra={"ip": ip, "reason": "missing" if record is None else "renewal"},
        )
        record = self.client.obtain_certificate(ip, cancel=cancel)
        self.store.save(record)
        self.provider.publish(record)
        return record


class RenewalScheduler:
    """Runs CertificateManager.ensure_fresh() on a single background thread.

    Failures are logged and retried on the next tick; there is no backoff.

    Args:
        manager: The certificate manager.
        interval: Delay between cycles.
        retry_interval: Delay after a failed cycle (defaults to interval).
    """

    def __init__(
        self,
        manager: CertificateManager,
        interval: timedelta = RENEWAL_INTERVAL,
        retry_interval: timedelta | None = None,
    ):
        self.manager = manager
        self.interval = interval
        self.retry_interval = retry_interval or interval
        self.last_error: BaseException | None = None
        self._stop = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """Run a single cycle, logging any error.

        At most one cycle runs at a time. A call made while another cycle
        is in flight returns False without doing anything.

        Returns:
            True if the cycle succeeded.
        """
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Certificate renewal already in progress")
            return False
        try:
            self.manager.ensure_fresh(self._stop)
        except IssuanceCancelled:
            logger.info("Certificate renewal cancelled")
            return False
        except Exception as e:
            self.last_error = e
            logger.exception("Certificate renewal failed")
            return False
        finally:
            self._cycle_lock.release()

        self.last_error = None
        return True

    def _run(self) -> None:
        while not self._stop.is_set():
            ok = self.run_once()
            delay = self.interval if ok else self.retry_interval
            if self._stop.wait(delay.total_seconds()):
                break
        logger.info("Renewal scheduler stopped")

    def start(self) -> None:
        """Start the background loop. Calling it twice has no effect."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ipcert-renewal", daemon=True)
        self._thread.start()
        logger.info(
            "Renewal scheduler started",
            extra={"interval_s": self.interval.total_seconds()},
        )

    def stop(self, timeout: float | None = None) -> None:
        """Signal the loop to stop and wait for it.

        An issuance in flight is cancelled at its next request or poll.

        Args:
            timeout: Seconds to wait for the thread to exit.
        """
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
