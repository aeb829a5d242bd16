"""ACME account creation and reuse."""

from collections.abc import Callable

from ipcert._logging import get_logger
from ipcert.crypto import PrivateKey, generate_ecdsa_key
from ipcert.exceptions import AccountError, AcmeError
from ipcert.models import Account, AccountKey
from ipcert.session import AcmeSession
from ipcert.storage import AccountStore

logger = get_logger(__name__)


class AccountManager:
    """Loads the stored ACME account, creating it on first use.

    Once an account has been saved it is never recreated; every later
    request addresses it by kid.

    Args:
        store: Where the account key and kid are persisted.
        contact_email: Optional contact address sent on account creation.
        key_factory: Callable producing a new account key.
    """

    def __init__(
        self,
        store: AccountStore,
        contact_email: str | None = None,
        key_factory: Callable[[], PrivateKey] = generate_ecdsa_key,
    ):
        self.store = store
        self.contact_email = contact_email
        self.key_factory = key_factory

    def ensure_account(self, session: AcmeSession) -> AccountKey:
        """Bind the session to the account, registering one if needed.

        Args:
            session: Session for the current flow.

        Returns:
            The account in use.

        Raises:
            AccountError: If the account cannot be created.
        """
        account = self.store.load()
        if account is None:
            account = self._register(session)
            self.store.save(account)

        session.bind(account.key, account.kid)
        return account

    def _register(self, session: AcmeSession) -> AccountKey:
        key = self.key_factory()
        session.key = key
        session.kid = None

        payload: dict = {"termsOfServiceAgreed": True}
        if self.contact_email:
            payload["contact"] = [f"mailto:{self.contact_email}"]

        try:
            response = session.post(session.directory.new_account, payload)
        except AcmeError as e:
            raise AccountError(
                type=e.type,
                detail=f"Account creation failed: {e.detail}",
                status_code=e.status_code,
                subproblems=e.subproblems,
                retry_after=e.retry_after,
            ) from e

        kid = response.headers.get("Location")
        if not kid:
            raise AccountError(
                type="unknown",
                detail="Account creation did not return a Location header",
                status_code=response.status_code,
            )

        account = Account.model_validate(response.json())
        logger.info("ACME account created", extra={"kid": kid, "status": account.status})
        return AccountKey(key=key, kid=kid)
