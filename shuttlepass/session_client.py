"""Login handshake and credential persistence."""

from __future__ import annotations

from shuttlepass.credential_store import CredentialStore
from shuttlepass.data_sources.base import ShuttleDataSource
from shuttlepass.errors import InvalidCredentialsError
from shuttlepass.models import Session
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="session_client")


class SessionClient:
    """Exchanges a username/password for a portal token.

    A new `Session` is created on every login and never mutated. Credentials
    are written to the store only after the identity endpoint accepts them,
    so a failed login leaves whatever was stored before untouched.
    """

    def __init__(self, data_source: ShuttleDataSource, store: CredentialStore) -> None:
        self.data_source = data_source
        self.store = store

    def login(self, username: str, password: str) -> Session:
        """Authenticate; raise InvalidCredentialsError on rejection."""
        logger.info("Logging in", extra={"username": username})
        response = self.data_source.authenticate(username, password)
        if not response.success or not response.token:
            logger.warning("Identity endpoint rejected credentials", extra={"username": username})
            raise InvalidCredentialsError()
        self.store.save_credentials(username, password)
        return Session(token=response.token, username=username)

    def relogin(self) -> Session:
        """Silent re-login with stored credentials."""
        creds = self.store.load_credentials()
        if creds is None:
            raise InvalidCredentialsError("No stored credentials; log in first.")
        return self.login(creds.username, creds.password)

    def logout(self) -> None:
        self.store.clear_credentials()
