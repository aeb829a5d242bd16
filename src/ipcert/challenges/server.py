"""HTTP server answering HTTP-01 validation requests."""

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

from ipcert._logging import get_logger
from ipcert.challenges.base import ChallengeStore
from ipcert.challenges.http01 import CHALLENGE_PATH_PREFIX

logger = get_logger(__name__)


class ChallengeHTTPServer(ThreadingHTTPServer):
    """Threading HTTP server carrying the challenge store for its handlers."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], store: ChallengeStore):
        self.challenge_store = store
        super().__init__(address, ChallengeRequestHandler)


class ChallengeRequestHandler(BaseHTTPRequestHandler):
    """Serves GET /.well-known/acme-challenge/{token}."""

    server: ChallengeHTTPServer

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        if not path.startswith(CHALLENGE_PATH_PREFIX):
            self._send(404, "Not Found")
            return

        token = path[len(CHALLENGE_PATH_PREFIX) :]
        key_authorization = self.server.challenge_store.lookup(token) if token else None
        if key_authorization is None:
            logger.info("Unknown challenge token requested", extra={"token": token})
            self._send(404, "Not Found")
            return

        logger.info("Challenge served", extra={"token": token, "client": self.client_address[0]})
        self._send(200, key_authorization)

    def _send(self, status: int, body: str) -> None:
        data = body.encode("ascii", errors="replace")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, format: str, *args: object) -> None:
        logger.debug("HTTP-01 request: " + format, *args)


def make_challenge_server(
    store: ChallengeStore, host: str = "0.0.0.0", port: int = 80
) -> ChallengeHTTPServer:
    """Create (but do not start) the HTTP-01 responder.

    Args:
        store: Challenge store to answer from.
        host: Address to bind.
        port: Port to bind; validation always targets port 80.

    Returns:
        The bound server.
    """
    return ChallengeHTTPServer((host, port), store)


def start_challenge_server(server: ChallengeHTTPServer) -> threading.Thread:
    """Run a challenge server on a daemon thread.

    Args:
        server: Server from make_challenge_server().

    Returns:
        The running thread.
    """
    thread = threading.Thread(target=server.serve_forever, name="ipcert-http01", daemon=True)
    thread.start()
    logger.info("HTTP-01 responder listening", extra={"address": server.server_address})
    return thread
