"""HTTP-01 challenge implementation."""

import threading

from ipcert.challenges.base import ChallengeStore

CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"


def compute_key_authorization(token: str, thumbprint: str) -> str:
    """Compute the key authorization string.

    The key authorization is the token concatenated with the account
    key thumbprint, separated by a period.

    Args:
        token: The challenge token from the ACME server.
        thumbprint: The base64url-encoded SHA-256 thumbprint of the account key.

    Returns:
        The key authorization string (token.thumbprint).
    """
    return f"{token}.{thumbprint}"


class InMemoryChallengeStore(ChallengeStore):
    """Thread-safe in-process challenge store."""

    def __init__(self) -> None:
        self._responses: dict[str, str] = {}
        self._lock = threading.Lock()

    def publish(self, token: str, key_authorization: str) -> None:
        with self._lock:
            self._responses[token] = key_authorization

    def lookup(self, token: str) -> str | None:
        with self._lock:
            return self._responses.get(token)

    def remove(self, token: str) -> None:
        with self._lock:
            self._responses.pop(token, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._responses)
