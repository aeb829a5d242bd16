"""HTTPS endpoint presenting the published certificate."""

import json
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from ipcert._logging import get_logger
from ipcert.current import CurrentCertificateProvider

logger = get_logger(__name__)


class TlsHTTPServer(ThreadingHTTPServer):
    """Threading HTTPS server whose certificate is chosen per handshake.

    The handshake runs on the request thread, not the accept loop, so a
    slow client cannot stall other connections.
    """

    daemon_threads = True

    def __init__(self, address: tuple[str, int], provider: CurrentCertificateProvider):
        self.provider = provider
        super().__init__(address, StatusRequestHandler)
        self.socket = provider.make_server_context().wrap_socket(
            self.socket, server_side=True, do_handshake_on_connect=False
        )

    def handle_error(self, request: object, client_address: tuple) -> None:
        logger.debug("HTTPS connection error", extra={"client": client_address[0]}, exc_info=True)


class StatusRequestHandler(BaseHTTPRequestHandler):
    """Reports the certificate currently being served."""

    server: TlsHTTPServer

    def setup(self) -> None:
        try:
            self.request.do_handshake()
        except (ssl.SSLError, OSError) as e:
            logger.debug("TLS handshake failed", extra={"client": self.client_address[0], "error": str(e)})
            raise
        super().setup()

    def do_GET(self) -> None:
        record = self.server.provider.current
        if record is None:
            status, body = 503, {"status": "no certificate"}
        else:
            status, body = 200, {
                "status": "ok",
                "ip": record.identifier,
                "not_before": record.not_before.isoformat(),
                "not_after": record.not_after.isoformat(),
            }

        data = json.dumps(body).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("HTTPS request: " + format, *args)


def start_tls_server(
    provider: CurrentCertificateProvider, host: str = "0.0.0.0", port: int = 443
) -> tuple[TlsHTTPServer, threading.Thread]:
    """Bind the HTTPS endpoint and serve it on a daemon thread.

    Args:
        provider: Holder of the certificate to present.
        host: Address to bind.
        port: Port to bind.

    Returns:
        The server and its thread.
    """
    server = TlsHTTPServer((host, port), provider)
    thread = threading.Thread(target=server.serve_forever, name="ipcert-https", daemon=True)
    thread.start()
    logger.info("HTTPS endpoint listening", extra={"address": server.server_address})
    return server, thread
