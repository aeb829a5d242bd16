"""Base class for HTTP-01 challenge stores."""

from abc import ABC, abstractmethod


class ChallengeStore(ABC):
    """Mapping from challenge token to the expected key authorization.

    Written by the issuance flow and read by the HTTP-01 responder, which
    may run on any request-handling thread.
    """

    @abstractmethod
    def publish(self, token: str, key_authorization: str) -> None:
        """Make a key authorization available for validation.

        Args:
            token: The challenge token from the ACME server.
            key_authorization: The response the CA expects to fetch.
        """
        ...

    @abstractmethod
    def lookup(self, token: str) -> str | None:
        """Find the key authorization for a token.

        Args:
            token: The challenge token from the request path.

        Returns:
            The key authorization, or None if the token is unknown.
        """
        ...

    @abstractmethod
    def remove(self, token: str) -> None:
        """Withdraw a token once validation has finished.

        Removing an unknown token is not an error.

        Args:
            token: The challenge token.
        """
        ...
