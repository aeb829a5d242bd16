"""Pydantic models for ACME protocol resources and issued certificates."""

from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from ipcert.crypto import PrivateKey

# =============================================================================
# ACME Protocol Enums (RFC 8555)
# =============================================================================


class AcmeErrorType(StrEnum):
    """ACME error types handled by the client (RFC 8555 Section 6.7)."""

    BAD_NONCE = "urn:ietf:params:acme:error:badNonce"
    MALFORMED = "urn:ietf:params:acme:error:malformed"
    ORDER_NOT_READY = "urn:ietf:params:acme:error:orderNotReady"
    RATE_LIMITED = "urn:ietf:params:acme:error:rateLimited"
    REJECTED_IDENTIFIER = "urn:ietf:params:acme:error:rejectedIdentifier"
    SERVER_INTERNAL = "urn:ietf:params:acme:error:serverInternal"
    UNAUTHORIZED = "urn:ietf:params:acme:error:unauthorized"


class ChallengeStatus(StrEnum):
    """Challenge statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    """Authorization statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(StrEnum):
    """Order statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(StrEnum):
    """Challenge types (RFC 8555 Section 8). Only HTTP-01 is answered."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"


class IdentifierType(StrEnum):
    """Identifier types (RFC 8555 Section 9.7.7, RFC 8738)."""

    DNS = "dns"
    IP = "ip"


class IssuanceState(StrEnum):
    """Steps of a single certificate issuance flow."""

    CREATED = "created"
    AUTHORIZING = "authorizing"
    VALIDATING = "validating"
    VALID = "valid"
    FINALIZING = "finalizing"
    CERTIFICATE_READY = "certificate_ready"
    FAILED = "failed"


# =============================================================================
# Pydantic Models
# =============================================================================


class Directory(BaseModel):
    """ACME directory resource (RFC 8555 Section 7.1.1)."""

    new_nonce: str = Field(alias="newNonce")
    new_account: str = Field(alias="newAccount")
    new_order: str = Field(alias="newOrder")
    meta: dict[str, Any] | None = None

    model_config = {"populate_by_name": True}


class Account(BaseModel):
    """ACME account resource (RFC 8555 Section 7.1.2)."""

    status: str
    contact: list[str] | None = None
    orders: str | None = None


class Identifier(BaseModel):
    """ACME identifier (RFC 8555 Section 7.1.3)."""

    type: IdentifierType
    value: str


class Challenge(BaseModel):
    """ACME challenge resource (RFC 8555 Section 7.5.1).

    The type is kept as a plain string so that authorizations offering
    challenge types this client does not know still parse.
    """

    type: str
    url: str
    status: ChallengeStatus
    token: str | None = None
    validated: datetime | None = None
    error: dict[str, Any] | None = None


class Authorization(BaseModel):
    """ACME authorization resource (RFC 8555 Section 7.1.4)."""

    status: AuthorizationStatus
    identifier: Identifier
    challenges: list[Challenge]
    expires: datetime | None = None


class Order(BaseModel):
    """ACME order resource (RFC 8555 Section 7.1.3)."""

    status: OrderStatus
    identifiers: list[Identifier]
    authorizations: list[str]
    finalize: str
    expires: datetime | None = None
    certificate: str | None = None
    error: dict[str, Any] | None = None


class CertificateRecord(BaseModel):
    """An issued certificate together with its private key.

    Persisted per IP identifier and overwritten on renewal.
    """

    identifier: str
    certificate_pem: str
    chain_pem: str = ""
    private_key_pem: str
    not_before: datetime
    not_after: datetime

    model_config = {"frozen": True}

    @property
    def fullchain_pem(self) -> str:
        """Leaf certificate followed by the issuer chain."""
        return self.certificate_pem + self.chain_pem

    def age(self, now: datetime) -> timedelta:
        """Time elapsed since the certificate became valid."""
        return now - self.not_before

    def remaining(self, now: datetime) -> timedelta:
        """Time left before the certificate expires."""
        return self.not_after - now


class AccountKey(BaseModel):
    """Account signing key and the account URL (kid) assigned by the CA."""

    key: PrivateKey
    kid: str

    model_config = {"frozen": True, "arbitrary_types_allowed": True}
