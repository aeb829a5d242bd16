"""ACME client issuing certificates for IP address identifiers."""

import threading

import httpx
from cryptography import x509
from cryptography.hazmat.primitives import serialization

from ipcert._logging import Timer, get_logger, identifier_context
from ipcert.account import AccountManager
from ipcert.challenges.base import ChallengeStore
from ipcert.challenges.http01 import compute_key_authorization
from ipcert.crypto import (
    base64url_encode,
    create_ip_csr,
    generate_ecdsa_key,
    key_thumbprint,
    private_key_to_pem,
    split_pem_chain,
)
from ipcert.directory import DirectoryProvider
from ipcert.exceptions import (
    AuthorizationError,
    ChallengeNotFoundError,
    IssuanceCancelled,
    OrderError,
    PollingTimeoutError,
)
from ipcert.models import (
    AcmeErrorType,
    Authorization,
    AuthorizationStatus,
    CertificateRecord,
    Challenge,
    ChallengeType,
    IssuanceState,
    Order,
    OrderStatus,
)
from ipcert.session import AcmeSession

logger = get_logger(__name__)

DEFAULT_PROFILE = "shortlived"
DEFAULT_CSR_COMMON_NAME = "example.com"


class AcmeClient:
    """ACME client for IP address certificates.

    Drives one issuance flow per call to obtain_certificate(): order,
    HTTP-01 authorization, finalization and download (RFC 8555, RFC 8738).

    Args:
        directory: Provider of the CA directory.
        accounts: Account manager used to sign requests.
        challenges: Store the HTTP-01 responder answers from.
        http: HTTP client; one is created (and owned) if not given.
        ca_cert: Path to CA certificate file, False to disable verification,
                 or None/True for default verification.
        profile: Issuance profile requested in the order, or None.
        csr_common_name: Placeholder subject CN for the CSR.
    """

    # Polling configuration
    POLL_INTERVAL = 2  # seconds
    AUTHORIZATION_POLL_ATTEMPTS = 60  # ~2 minutes
    ORDER_POLL_ATTEMPTS = 30  # ~1 minute

    def __init__(
        self,
        directory: DirectoryProvider,
        accounts: AccountManager,
        challenges: ChallengeStore,
        http: httpx.Client | None = None,
        ca_cert: str | bool | None = None,
        profile: str | None = DEFAULT_PROFILE,
        csr_common_name: str = DEFAULT_CSR_COMMON_NAME,
    ):
        self.directory = directory
        self.accounts = accounts
        self.challenges = challenges
        self.profile = profile
        self.csr_common_name = csr_common_name

        self._owns_http = http is None
        if http is None:
            # ca_cert can be: path (str), False (disable), None/True (default)
            verify = True if ca_cert is None else ca_cert
            http = httpx.Client(verify=verify, timeout=30)
        self._http = http

    def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_http:
            self._http.close()

    def __enter__(self) -> "AcmeClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    def new_session(self, cancel: threading.Event | None = None) -> AcmeSession:
        """Start a session bound to the ACME account."""
        session = AcmeSession(
            http=self._http,
            directory=self.directory.get_directory(self._http),
            cancel=cancel,
        )
        self.accounts.ensure_account(session)
        return session

    def obtain_certificate(
        self, ip: str, cancel: threading.Event | None = None
    ) -> CertificateRecord:
        """Obtain a certificate for an IP address.

        Args:
            ip: Public IPv4 or IPv6 address to certify.
            cancel: Event that aborts the flow when set.

        Returns:
            CertificateRecord with the leaf, issuer chain and private key.

        Raises:
            AcmeError: If any step of the flow fails.
            IssuanceCancelled: If cancel was set during the flow.
        """
        state = IssuanceState.CREATED
        with identifier_context(ip), Timer() as timer:
            try:
                session = self.new_session(cancel)

                order, order_url = self.create_order(session, ip)

                state = self._advance(state, IssuanceState.AUTHORIZING)
                for authz_url in order.authorizations:
                    authz = self.fetch_authorization(session, authz_url)
                    if authz.status == AuthorizationStatus.VALID:
                        continue
                    challenge = self.get_challenge(authz)
                    state = self._advance(state, IssuanceState.VALIDATING)
                    self.complete_challenge(session, challenge, authz_url)

                state = self._advance(state, IssuanceState.VALID)
                cert_key = generate_ecdsa_key()
                csr = create_ip_csr(cert_key, ip, common_name=self.csr_common_name)

                state = self._advance(state, IssuanceState.FINALIZING)
                order = self.finalize_order(session, order, csr)
                if not order.certificate:
                    order = self._poll_order_for_certificate(session, order_url)

                chain = self.download_certificate(session, order)
                record = self._build_record(ip, chain, private_key_to_pem(cert_key))
                state = self._advance(state, IssuanceState.CERTIFICATE_READY)
            except IssuanceCancelled:
                logger.info("Certificate issuance cancelled", extra={"state": state})
                raise
            except Exception:
                failed_state = state
                state = self._advance(state, IssuanceState.FAILED)
                logger.error(
                    "Certificate issuance failed",
                    extra={"state": state, "failed_state": failed_state},
                )
                raise

        logger.info(
            "Certificate issued",
            extra={"ip": ip, "not_after": record.not_after, "elapsed_ms": timer.elapsed_ms},
        )
        return record

    @staticmethod
    def _advance(current: IssuanceState, new: IssuanceState) -> IssuanceState:
        if current != new:
            logger.debug(
                "Issuance state changed",
                extra={"from_state": current, "state": new},
            )
        return new

    def create_order(self, session: AcmeSession, ip: str) -> tuple[Order, str]:
        """Create a new order for an IP identifier.

        Args:
            session: Session for the current flow.
            ip: The IP address.

        Returns:
            The Order resource and its URL.

        Raises:
            OrderError: If the CA did not return the order URL.
        """
        payload: dict = {"identifiers": [{"type": "ip", "value": ip}]}
        if self.profile:
            payload["profile"] = self.profile

        response = session.post(session.directory.new_order, payload)
        order = Order.model_validate(response.json())

        order_url = response.headers.get("Location")
        if not order_url:
            raise OrderError(
                type="unknown",
                detail="Order creation did not return a Location header",
                status_code=response.status_code,
            )

        logger.info(
            "Order created",
            extra={"url": order_url, "status": order.status},
        )
        return order, order_url

    def fetch_authorization(self, session: AcmeSession, authz_url: str) -> Authorization:
        """Fetch an authorization with POST-as-GET."""
        response = session.post_as_get(authz_url)
        return Authorization.model_validate(response.json())

    def get_challenge(
        self, authorization: Authorization, challenge_type: str = ChallengeType.HTTP_01
    ) -> Challenge:
        """Get a specific challenge from an authorization.

        Args:
            authorization: The authorization containing challenges.
            challenge_type: Type of challenge to get.

        Returns:
            The Challenge resource.

        Raises:
            ChallengeNotFoundError: If the challenge type is not offered.
        """
        for challenge in authorization.challenges:
            if challenge.type == challenge_type and challenge.token:
                return challenge
        raise ChallengeNotFoundError(
            type="unknown",
            detail=f"Challenge type '{challenge_type}' not found in authorization",
            status_code=0,
        )

    def complete_challenge(
        self, session: AcmeSession, challenge: Challenge, authz_url: str
    ) -> Authorization:
        """Complete an HTTP-01 challenge.

        This method:
        1. Publishes the key authorization to the challenge store
        2. Tells the CA to validate the challenge
        3. Polls the authorization until it is valid or invalid
        4. Withdraws the key authorization

        Args:
            session: Session for the current flow.
            challenge: The http-01 challenge.
            authz_url: URL of the authorization to poll.

        Returns:
            The validated Authorization resource.

        Raises:
            AuthorizationError: If the CA marks the authorization invalid.
            PollingTimeoutError: If validation does not finish in time.
        """
        thumbprint = key_thumbprint(session.key)
        key_authorization = compute_key_authorization(challenge.token, thumbprint)

        self.challenges.publish(challenge.token, key_authorization)
        logger.debug(
            "Challenge published",
            extra={"token": challenge.token},
        )
        try:
            session.post(challenge.url, {})
            return self._poll_authorization(session, authz_url)
        finally:
            try:
                self.challenges.remove(challenge.token)
            except Exception:
                logger.warning(
                    "Challenge cleanup failed",
                    extra={"token": challenge.token},
                    exc_info=True,
                )

    def _poll_authorization(self, session: AcmeSession, authz_url: str) -> Authorization:
        """Poll an authorization until it's valid or invalid."""
        for _ in range(self.AUTHORIZATION_POLL_ATTEMPTS):
            session.wait(self.POLL_INTERVAL)
            authz = self.fetch_authorization(session, authz_url)

            if authz.status == AuthorizationStatus.VALID:
                return authz
            elif authz.status == AuthorizationStatus.PENDING:
                continue

            error_detail = f"Authorization is {authz.status}"
            for challenge in authz.challenges:
                if challenge.error:
                    error_detail = challenge.error.get("detail", error_detail)
                    break
            logger.error(
                "Authorization failed",
                extra={"url": authz_url, "detail": error_detail},
            )
            raise AuthorizationError(
                type=AcmeErrorType.UNAUTHORIZED,
                detail=error_detail,
                status_code=403,
            )

        raise PollingTimeoutError(
            type="unknown",
            detail="Authorization polling timed out",
            status_code=0,
        )

    def finalize_order(
        self,
        session: AcmeSession,
        order: Order,
        csr: x509.CertificateSigningRequest,
    ) -> Order:
        """Finalize an order by submitting the CSR.

        Args:
            session: Session for the current flow.
            order: The order to finalize.
            csr: The Certificate Signing Request.

        Returns:
            The Order resource returned by the finalize endpoint.
        """
        csr_der = csr.public_bytes(serialization.Encoding.DER)
        response = session.post(order.finalize, {"csr": base64url_encode(csr_der)})
        return Order.model_validate(response.json())

    def _poll_order_for_certificate(self, session: AcmeSession, order_url: str) -> Order:
        """Poll an order until it names a certificate URL."""
        for _ in range(self.ORDER_POLL_ATTEMPTS):
            session.wait(self.POLL_INTERVAL)
            response = session.post_as_get(order_url)
            order = Order.model_validate(response.json())

            if order.certificate:
                return order
            if order.status == OrderStatus.INVALID:
                error_detail = "Order is invalid"
                if order.error:
                    error_detail = order.error.get("detail", error_detail)
                raise OrderError(
                    type=AcmeErrorType.ORDER_NOT_READY,
                    detail=error_detail,
                    status_code=403,
                )

        raise PollingTimeoutError(
            type="unknown",
            detail="Order polling timed out before a certificate was issued",
            status_code=0,
        )

    def download_certificate(self, session: AcmeSession, order: Order) -> list[str]:
        """Download the certificate chain for a finalized order.

        Args:
            session: Session for the current flow.
            order: The order with certificate URL.

        Returns:
            PEM blocks, leaf first.

        Raises:
            OrderError: If order has no certificate URL.
        """
        if not order.certificate:
            raise OrderError(
                type="unknown",
                detail="Order has no certificate URL",
                status_code=0,
            )

        response = session.post_as_get(order.certificate)
        return split_pem_chain(response.text)

    @staticmethod
    def _build_record(ip: str, chain: list[str], private_key_pem: str) -> CertificateRecord:
        leaf = x509.load_pem_x509_certificate(chain[0].encode("ascii"))
        return CertificateRecord(
            identifier=ip,
            certificate_pem=chain[0],
            chain_pem="".join(chain[1:]),
            private_key_pem=private_key_pem,
            not_before=leaf.not_valid_before_utc,
            not_after=leaf.not_valid_after_utc,
        )
