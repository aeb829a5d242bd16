"""Exceptions raised while issuing and renewing certificates."""

from collections.abc import Mapping
from typing import Any

from ipcert.models import AcmeErrorType


class AcmeError(Exception):
    """Base exception for ACME protocol errors.

    Carries the problem document (RFC 7807) returned by the CA, or an
    equivalent description for failures detected on the client side.
    """

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        subproblems: list[dict[str, Any]] | None = None,
        retry_after: int | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.subproblems = subproblems
        self.retry_after = retry_after
        super().__init__(f"{type}: {detail}")

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        headers: Mapping[str, str] | None = None,
    ) -> "AcmeError":
        """Create an AcmeError from a problem document.

        Routes to a subclass based on the declared error type.

        Args:
            data: Parsed JSON problem document.
            status_code: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            AcmeError instance (or appropriate subclass).
        """
        retry_after = cls._parse_retry_after(headers.get("retry-after")) if headers else None
        error_type = data.get("type", "unknown")

        kwargs: dict[str, Any] = {
            "type": error_type,
            "detail": data.get("detail", "Unknown error"),
            "status_code": status_code,
            "subproblems": data.get("subproblems"),
            "retry_after": retry_after,
        }

        subclass = _ERROR_TYPES.get(error_type, cls)
        return subclass(**kwargs)

    @staticmethod
    def _parse_retry_after(value: str | None) -> int | None:
        """Parse Retry-After header (seconds or HTTP-date).

        Args:
            value: Retry-After header value.

        Returns:
            Seconds to wait, or None if not parseable.
        """
        if not value:
            return None
        try:
            return int(value)
        except ValueError:
            from datetime import datetime, timezone
            from email.utils import parsedate_to_datetime

            try:
                dt = parsedate_to_datetime(value)
                return max(0, int((dt - datetime.now(timezone.utc)).total_seconds()))
            except (TypeError, ValueError):
                return None


class BadNonceError(AcmeError):
    """Stale or reused nonce (urn:ietf:params:acme:error:badNonce)."""

    pass


class RateLimitError(AcmeError):
    """Rate limit exceeded (urn:ietf:params:acme:error:rateLimited)."""

    pass


class ServerInternalError(AcmeError):
    """ACME server internal error (urn:ietf:params:acme:error:serverInternal)."""

    pass


class UnauthorizedError(AcmeError):
    """Request not authorized (urn:ietf:params:acme:error:unauthorized)."""

    pass


class MalformedError(AcmeError):
    """Malformed request (urn:ietf:params:acme:error:malformed)."""

    pass


class AccountError(AcmeError):
    """The ACME account could not be established."""

    pass


class AuthorizationError(AcmeError):
    """An authorization was marked invalid by the CA."""

    pass


class OrderError(AcmeError):
    """The order became invalid or is missing required resources."""

    pass


class ChallengeNotFoundError(AcmeError):
    """The authorization does not offer a supported challenge."""

    pass


class PollingTimeoutError(AcmeError):
    """A resource did not reach a terminal state within the attempt budget."""

    pass


class IssuanceCancelled(Exception):
    """The issuance flow was interrupted by a shutdown request."""


class IpResolutionError(Exception):
    """The public IP address could not be determined."""


_ERROR_TYPES: dict[str, type[AcmeError]] = {
    AcmeErrorType.BAD_NONCE: BadNonceError,
    AcmeErrorType.RATE_LIMITED: RateLimitError,
    AcmeErrorType.SERVER_INTERNAL: ServerInternalError,
    AcmeErrorType.UNAUTHORIZED: UnauthorizedError,
    AcmeErrorType.MALFORMED: MalformedError,
}
