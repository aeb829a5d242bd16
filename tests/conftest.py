"""Pytest fixtures for the ipcert test suite."""

import base64
import logging
import logging.handlers
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
import respx
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from helpers import (
    ACME_BASE,
    DIRECTORY_URL,
    b64url_decode,
    decode_jws,
    make_self_signed,
    public_key_from_jwk,
    verify_jws,
)

from ipcert.account import AccountManager
from ipcert.challenges.base import ChallengeStore
from ipcert.challenges.http01 import InMemoryChallengeStore
from ipcert.client import AcmeClient
from ipcert.crypto import generate_ecdsa_key, jwk_thumbprint
from ipcert.directory import HttpDirectoryProvider
from ipcert.models import CertificateRecord
from ipcert.session import AcmeSession
from ipcert.storage import MemoryAccountStore


@pytest.fixture
def make_record() -> Callable[..., CertificateRecord]:
    """Factory for self-signed records, relative to now.

    Usage:
        record = make_record("203.0.113.7", issued_ago=timedelta(hours=1))
    """

    def _make(
        ip: str = "203.0.113.7",
        issued_ago: timedelta = timedelta(hours=1),
        valid_for: timedelta = timedelta(days=6),
    ) -> CertificateRecord:
        now = datetime.now(UTC).replace(microsecond=0)
        not_before = now - issued_ago
        return make_self_signed(ip, not_before, not_before + valid_for)

    return _make


class FakeAcmeServer:
    """Minimal ACME CA behind respx.

    Issues nonces, verifies request signatures, validates the HTTP-01 key
    authorization by reading the client's challenge store, and signs the
    submitted CSR with a throwaway CA.
    """

    def __init__(self) -> None:
        self.ca_key = generate_ecdsa_key()
        ca_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "ipcert Test CA")])
        now = datetime.now(UTC)
        self.ca_cert = (
            x509.CertificateBuilder()
            .subject_name(ca_name)
            .issuer_name(ca_name)
            .public_key(self.ca_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + timedelta(days=365))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .sign(self.ca_key, hashes.SHA256())
        )

        self.challenge_store: ChallengeStore | None = None
        self.requests: list[tuple[str, dict, dict | str]] = []
        self.accounts: dict[str, ec.EllipticCurvePublicKey] = {}
        self.orders: list[dict] = []
        self.validated_responses: list[str | None] = []
        self.issued: list[x509.Certificate] = []

        # Behaviour switches
        self.reject_nonces = 0
        self.pending_polls = 1
        self.defer_certificate = False
        self.offer_http01 = True
        self.omit_account_location = False
        self.authz_never_completes = False
        self.force_invalid = False
        self.order_never_completes = False
        self.order_invalid = False

        self._nonce_counter = 0
        self._live_nonces: set[str] = set()
        self._authz_status = "pending"
        self._validating = False
        self._authz_error: dict | None = None
        self._authz_polls = 0
        self._order_status = "pending"
        self._order_error: dict | None = None
        self._certificate_pem: str | None = None

    # -- helpers -----------------------------------------------------------

    def _new_nonce(self) -> str:
        self._nonce_counter += 1
        nonce = f"nonce-{self._nonce_counter}"
        self._live_nonces.add(nonce)
        return nonce

    def _json(self, status: int, data: dict, **headers: str) -> httpx.Response:
        return httpx.Response(
            status, json=data, headers={"Replay-Nonce": self._new_nonce(), **headers}
        )

    def _problem(self, status: int, error_type: str, detail: str) -> httpx.Response:
        return httpx.Response(
            status,
            json={"type": f"urn:ietf:params:acme:error:{error_type}", "detail": detail},
            headers={
                "Replay-Nonce": self._new_nonce(),
                "Content-Type": "application/problem+json",
            },
        )

    def requests_to(self, path: str) -> list[tuple[str, dict, dict | str]]:
        return [r for r in self.requests if r[0] == f"{ACME_BASE}{path}"]

    @property
    def token(self) -> str:
        return "token-abc123"

    def _order(self) -> dict:
        order = {
            "status": self._order_status,
            "identifiers": self.orders[-1]["identifiers"],
            "authorizations": [f"{ACME_BASE}/authz/1"],
            "finalize": f"{ACME_BASE}/order/1/finalize",
        }
        if self._certificate_pem is not None and self._order_status == "valid":
            order["certificate"] = f"{ACME_BASE}/cert/1"
        if self._order_error:
            order["error"] = self._order_error
        return order

    def _authz(self) -> dict:
        challenges = [
            {
                "type": "dns-01",
                "url": f"{ACME_BASE}/chall/dns",
                "status": "pending",
                "token": "dns-token",
            }
        ]
        if self.offer_http01:
            challenge = {
                "type": "http-01",
                "url": f"{ACME_BASE}/chall/1",
                "status": "processing" if self._validating else self._authz_status,
                "token": self.token,
            }
            if self._authz_error:
                challenge["error"] = self._authz_error
            challenges.append(challenge)
        return {
            "status": self._authz_status,
            "identifier": {"type": "ip", "value": self.orders[-1]["identifiers"][0]["value"]},
            "challenges": challenges,
        }

    # -- request dispatch --------------------------------------------------

    def handle(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        path = request.url.path

        if request.method == "GET" and path == "/directory":
            return httpx.Response(
                200,
                json={
                    "newNonce": f"{ACME_BASE}/new-nonce",
                    "newAccount": f"{ACME_BASE}/new-acct",
                    "newOrder": f"{ACME_BASE}/new-order",
                    "meta": {"termsOfService": f"{ACME_BASE}/tos"},
                },
            )
        if request.method == "HEAD" and path == "/new-nonce":
            return httpx.Response(200, headers={"Replay-Nonce": self._new_nonce()})
        if request.method != "POST":
            return httpx.Response(405)

        assert request.headers["Content-Type"] == "application/jose+json"
        header, payload, envelope = decode_jws(request.content)
        self.requests.append((url, header, payload))
        assert header["url"] == url

        nonce = header.get("nonce")
        if self.reject_nonces > 0 or nonce not in self._live_nonces:
            self.reject_nonces = max(0, self.reject_nonces - 1)
            return self._problem(400, "badNonce", "JWS has an invalid anti-replay nonce")
        self._live_nonces.discard(nonce)

        if path == "/new-acct":
            assert "jwk" in header and "kid" not in header
            assert payload["termsOfServiceAgreed"] is True
            public_key = public_key_from_jwk(header["jwk"])
            verify_jws(envelope, public_key)
            kid = f"{ACME_BASE}/acct/{len(self.accounts) + 1}"
            self.accounts[kid] = public_key
            if self.omit_account_location:
                return self._json(201, {"status": "valid"})
            return self._json(201, {"status": "valid"}, Location=kid)

        assert "kid" in header and "jwk" not in header
        if header["kid"] not in self.accounts:
            return self._problem(400, "accountDoesNotExist", "No such account")
        verify_jws(envelope, self.accounts[header["kid"]])

        if path == "/new-order":
            self.orders.append(payload)
            return self._json(201, self._order(), Location=f"{ACME_BASE}/order/1")
        if path == "/authz/1":
            if self._validating:
                self._authz_polls += 1
                if not self.authz_never_completes and self._authz_polls > self.pending_polls:
                    self._complete_validation(header["kid"])
            return self._json(200, self._authz())
        if path == "/chall/1":
            assert payload == {}
            self._validating = True
            self.validated_responses.append(self.challenge_store.lookup(self.token))
            return self._json(200, {"type": "http-01", "url": url, "status": "processing", "token": self.token})
        if path == "/order/1/finalize":
            return self._finalize(payload)
        if path == "/order/1":
            if self.order_invalid:
                self._order_status = "invalid"
                self._order_error = {
                    "type": "urn:ietf:params:acme:error:badCSR",
                    "detail": "CSR was rejected by policy",
                }
            elif self.defer_certificate and not self.order_never_completes and self._certificate_pem is not None:
                self._order_status = "valid"
            return self._json(200, self._order())
        if path == "/cert/1":
            return httpx.Response(
                200,
                text=self._certificate_pem,
                headers={
                    "Replay-Nonce": self._new_nonce(),
                    "Content-Type": "application/pem-certificate-chain",
                },
            )
        return self._problem(404, "malformed", f"Unknown resource {path}")

    def _complete_validation(self, kid: str) -> None:
        self._validating = False
        expected = None
        if self.validated_responses:
            public_key = self.accounts[kid]
            numbers = public_key.public_numbers()
            jwk = {
                "kty": "EC",
                "crv": "P-256",
                "x": base64.urlsafe_b64encode(numbers.x.to_bytes(32, "big")).rstrip(b"=").decode(),
                "y": base64.urlsafe_b64encode(numbers.y.to_bytes(32, "big")).rstrip(b"=").decode(),
            }
            expected = f"{self.token}.{jwk_thumbprint(jwk)}"

        if not self.force_invalid and expected is not None and self.validated_responses[-1] == expected:
            self._authz_status = "valid"
            self._order_status = "ready"
        else:
            self._authz_status = "invalid"
            self._authz_error = {
                "type": "urn:ietf:params:acme:error:unauthorized",
                "detail": "Invalid response from http://203.0.113.7/.well-known/acme-challenge/",
            }

    def _finalize(self, payload: dict) -> httpx.Response:
        csr = x509.load_der_x509_csr(b64url_decode(payload["csr"]))
        assert csr.is_signature_valid
        san = csr.extensions.get_extension_for_class(x509.SubjectAlternativeName)

        now = datetime.now(UTC)
        cert = (
            x509.CertificateBuilder()
            .subject_name(csr.subject)
            .issuer_name(self.ca_cert.subject)
            .public_key(csr.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(minutes=1))
            .not_valid_after(now + timedelta(days=6))
            .add_extension(san.value, critical=False)
            .sign(self.ca_key, hashes.SHA256())
        )
        self.issued.append(cert)
        self._certificate_pem = (
            cert.public_bytes(serialization.Encoding.PEM)
            + self.ca_cert.public_bytes(serialization.Encoding.PEM)
        ).decode("ascii")

        deferred = self.defer_certificate or self.order_never_completes or self.order_invalid
        self._order_status = "processing" if deferred else "valid"
        return self._json(200, self._order())


@pytest.fixture
def acme_server() -> Generator[FakeAcmeServer]:
    """Fake ACME CA reachable at https://acme.test through respx."""
    server = FakeAcmeServer()
    with respx.mock(assert_all_called=False) as router:
        router.route(host="acme.test").mock(side_effect=server.handle)
        yield server


class LogCapture:
    """Helper class to capture and inspect log records."""

    def __init__(self, handler: logging.handlers.MemoryHandler) -> None:
        self._handler = handler

    @property
    def records(self) -> list[logging.LogRecord]:
        """Get all captured log records."""
        return self._handler.buffer

    def get_records(
        self, level: int | None = None, name: str | None = None
    ) -> list[logging.LogRecord]:
        """Get log records filtered by level and/or logger name.

        Args:
            level: Filter by log level (e.g., logging.INFO).
            name: Filter by logger name prefix (e.g., "ipcert.client").

        Returns:
            List of matching log records.
        """
        records = self.records
        if level is not None:
            records = [r for r in records if r.levelno == level]
        if name is not None:
            records = [r for r in records if r.name.startswith(name)]
        return records

    def get_messages(self, level: int | None = None, name: str | None = None) -> list[str]:
        """Get log messages filtered by level and/or logger name."""
        return [r.getMessage() for r in self.get_records(level, name)]

    def clear(self) -> None:
        """Clear all captured log records."""
        self._handler.buffer.clear()


@pytest.fixture
def log_capture() -> Generator[LogCapture]:
    """Capture logs from the ipcert library during a test.

    Usage:
        def test_something(log_capture):
            # do something that logs
            assert "Certificate issued" in log_capture.get_messages(logging.INFO)
    """
    handler = logging.handlers.MemoryHandler(capacity=1000)
    handler.setLevel(logging.DEBUG)

    ipcert_logger = logging.getLogger("ipcert")
    original_level = ipcert_logger.level
    ipcert_logger.setLevel(logging.DEBUG)
    ipcert_logger.addHandler(handler)

    try:
        yield LogCapture(handler)
    finally:
        ipcert_logger.removeHandler(handler)
        ipcert_logger.setLevel(original_level)
        handler.close()


@pytest.fixture
def challenge_store(acme_server: FakeAcmeServer):
    """Challenge store the fake CA validates against."""
    store = InMemoryChallengeStore()
    acme_server.challenge_store = store
    return store


@pytest.fixture
def account_store():
    """Empty in-memory account store."""
    return MemoryAccountStore()


@pytest.fixture
def acme_client(acme_server: FakeAcmeServer, challenge_store, account_store) -> Generator:
    """AcmeClient wired to the fake CA with polling delays disabled."""
    client = AcmeClient(
        directory=HttpDirectoryProvider(DIRECTORY_URL),
        accounts=AccountManager(account_store),
        challenges=challenge_store,
    )
    client.POLL_INTERVAL = 0
    yield client
    client.close()


@pytest.fixture
def acme_session(acme_server: FakeAcmeServer) -> Generator[AcmeSession]:
    """Unbound session against the fake CA."""
    http = httpx.Client()
    directory = HttpDirectoryProvider(DIRECTORY_URL).get_directory(http)
    yield AcmeSession(http, directory)
    http.close()
