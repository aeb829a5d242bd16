"""Command line entry point: ``python -m ipcert``."""

import argparse
import logging
import signal
import sys
import threading

from ipcert._logging import get_logger
from ipcert.account import AccountManager
from ipcert.challenges.http01 import InMemoryChallengeStore
from ipcert.challenges.server import make_challenge_server, start_challenge_server
from ipcert.client import AcmeClient
from ipcert.config import ConfigError, Settings
from ipcert.current import CurrentCertificateProvider
from ipcert.directory import HttpDirectoryProvider
from ipcert.exceptions import AcmeError, IpResolutionError
from ipcert.manager import CertificateManager, RenewalScheduler
from ipcert.providers import CheckIpResolver, IpResolver, StaticIpResolver
from ipcert.server import start_tls_server
from ipcert.storage import FileAccountStore, FileCertificateStore

logger = get_logger(__name__)


def build_manager(
    settings: Settings,
    challenges: InMemoryChallengeStore,
    provider: CurrentCertificateProvider,
) -> CertificateManager:
    """Wire a CertificateManager from settings.

    Args:
        settings: Runtime configuration.
        challenges: Store shared with the HTTP-01 responder.
        provider: Holder shared with the TLS endpoint.

    Returns:
        The manager.
    """
    resolver: IpResolver
    if settings.public_ip:
        resolver = StaticIpResolver(settings.public_ip)
    else:
        resolver = CheckIpResolver()

    client = AcmeClient(
        directory=HttpDirectoryProvider(settings.directory_url),
        accounts=AccountManager(
            FileAccountStore(settings.account_dir),
            contact_email=settings.contact_email,
        ),
        challenges=challenges,
        ca_cert=settings.ca_cert,
        profile=settings.profile,
        csr_common_name=settings.csr_common_name,
    )
    return CertificateManager(
        resolver=resolver,
        client=client,
        store=FileCertificateStore(settings.certificate_dir),
        provider=provider,
    )


def cmd_issue(settings: Settings) -> int:
    """Run one renewal cycle in the foreground."""
    challenges = InMemoryChallengeStore()
    provider = CurrentCertificateProvider()
    manager = build_manager(settings, challenges, provider)

    http_server = make_challenge_server(challenges, settings.http_host, settings.http_port)
    start_challenge_server(http_server)
    try:
        record = manager.ensure_fresh()
    except (AcmeError, IpResolutionError) as e:
        print(f"Certificate issuance failed: {e}", file=sys.stderr)
        return 1
    finally:
        http_server.shutdown()
        http_server.server_close()
        manager.client.close()

    print(f"{record.identifier}: valid {record.not_before.isoformat()} to {record.not_after.isoformat()}")
    return 0


def cmd_run(settings: Settings) -> int:
    """Serve HTTP-01 and HTTPS while renewing in the background."""
    challenges = InMemoryChallengeStore()
    provider = CurrentCertificateProvider()
    manager = build_manager(settings, challenges, provider)
    scheduler = RenewalScheduler(
        manager,
        interval=settings.renew_interval,
        retry_interval=settings.retry_interval,
    )

    http_server = make_challenge_server(challenges, settings.http_host, settings.http_port)
    start_challenge_server(http_server)
    https_server, _ = start_tls_server(provider, settings.http_host, settings.https_port)

    stopping = threading.Event()

    def _on_signal(signum: int, frame: object) -> None:
        logger.info("Shutdown requested", extra={"signal": signum})
        stopping.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    scheduler.start()
    try:
        stopping.wait()
    finally:
        scheduler.stop(timeout=30)
        https_server.shutdown()
        https_server.server_close()
        http_server.shutdown()
        http_server.server_close()
        manager.client.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="ipcert",
        description="Obtain and renew an ACME certificate for this host's public IP address.",
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="serve HTTP-01 and HTTPS and renew every interval")
    sub.add_parser("issue", help="ensure a fresh certificate once and exit")
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(str(e), file=sys.stderr)
        return 2

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "issue":
        return cmd_issue(settings)
    return cmd_run(settings)
