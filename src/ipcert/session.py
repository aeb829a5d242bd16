"""Per-flow ACME session: nonce handling and signed requests."""

import json
import threading

import httpx

from ipcert._logging import get_logger
from ipcert.crypto import PrivateKey, sign_jws
from ipcert.exceptions import AcmeError, BadNonceError, IssuanceCancelled
from ipcert.models import Directory

logger = get_logger(__name__)

JOSE_CONTENT_TYPE = "application/jose+json"


class AcmeSession:
    """State for a single issuance flow.

    Holds the signing key, the account URL once known, and the most recent
    replay nonce. A new session is created for every flow so nothing leaks
    between attempts.

    Args:
        http: HTTP client used for all requests.
        directory: ACME directory resource.
        key: Account private key (may be bound later).
        kid: Account URL; while unset, requests embed the public JWK.
        cancel: Event that aborts the flow when set.
    """

    def __init__(
        self,
        http: httpx.Client,
        directory: Directory,
        key: PrivateKey | None = None,
        kid: str | None = None,
        cancel: threading.Event | None = None,
    ):
        self.http = http
        self.directory = directory
        self.key = key
        self.kid = kid
        self.cancel = cancel or threading.Event()
        self._nonce: str | None = None

    def bind(self, key: PrivateKey, kid: str) -> None:
        """Use an established account for all further requests."""
        self.key = key
        self.kid = kid

    def check_cancelled(self) -> None:
        """Raise IssuanceCancelled if a shutdown was requested."""
        if self.cancel.is_set():
            raise IssuanceCancelled("Issuance cancelled")

    def wait(self, seconds: float) -> None:
        """Sleep between polls, waking early on cancellation."""
        if self.cancel.wait(seconds):
            raise IssuanceCancelled("Issuance cancelled")

    def get_nonce(self) -> str:
        """Return the cached nonce, or fetch a fresh one from newNonce."""
        if self._nonce:
            nonce = self._nonce
            self._nonce = None
            return nonce

        response = self.http.head(self.directory.new_nonce)
        if response.status_code >= 400 or "Replay-Nonce" not in response.headers:
            raise AcmeError(
                type="unknown",
                detail=f"No nonce from {self.directory.new_nonce} ({response.status_code})",
                status_code=response.status_code,
            )
        return response.headers["Replay-Nonce"]

    def _update_nonce(self, response: httpx.Response) -> None:
        """Cache the replacement nonce carried by a response."""
        if "Replay-Nonce" in response.headers:
            self._nonce = response.headers["Replay-Nonce"]

    def post(self, url: str, payload: dict | str) -> httpx.Response:
        """Make a JWS-signed POST request.

        A rejected nonce is retried once with a fresh nonce; any other
        error, or a second rejection, is raised.

        Args:
            url: The endpoint URL.
            payload: Request payload (dict for JSON, "" for POST-as-GET).

        Returns:
            The HTTP response.

        Raises:
            AcmeError: If the ACME server returns an error.
        """
        try:
            return self._post_once(url, payload)
        except BadNonceError:
            logger.warning("ACME nonce rejected, retrying with fresh nonce", extra={"url": url})
            self._nonce = None
            return self._post_once(url, payload)

    def post_as_get(self, url: str) -> httpx.Response:
        """Fetch a resource with an empty-payload signed POST."""
        return self.post(url, "")

    def _post_once(self, url: str, payload: dict | str) -> httpx.Response:
        if self.key is None:
            raise ValueError("Session has no signing key")

        self.check_cancelled()
        body = sign_jws(
            key=self.key,
            payload=payload,
            url=url,
            nonce=self.get_nonce(),
            kid=self.kid,
        )

        response = self.http.post(
            url,
            content=json.dumps(body),
            headers={"Content-Type": JOSE_CONTENT_TYPE},
        )
        self._update_nonce(response)

        if response.status_code >= 400:
            logger.error(
                "ACME request failed",
                extra={"url": url, "status_code": response.status_code, "body": response.text},
            )
            raise self._error_from(response)

        return response

    @staticmethod
    def _error_from(response: httpx.Response) -> AcmeError:
        try:
            data = response.json()
        except json.JSONDecodeError:
            data = None
        if not isinstance(data, dict):
            return AcmeError(
                type="unknown",
                detail=response.text,
                status_code=response.status_code,
            )
        return AcmeError.from_response(data, response.status_code, headers=response.headers)
