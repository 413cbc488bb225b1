"""Gmail connection lifecycle: connect, liveness, token refresh, credentialed calls."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import Resource

from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.auth import access_credentials, build_gmail_service, refresh_access_token
from gmail_digest.core.exceptions import (
    AuthExpiredError,
    ConnectionFailedError,
    ConnectionInactive,
    ConnectionNotFound,
    GmailDigestError,
)
from gmail_digest.core.gmail_client import GmailClient
from gmail_digest.core.models import Connection, ConnectionStatus
from gmail_digest.storage.store import DigestStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Refresh a little before Google's reported expiry.
EXPIRY_SKEW = timedelta(seconds=60)


class ConnectionManager:
    """Owns stored Gmail credentials and every state change of a connection.

    State machine:
        disconnected -> connected     connect() verified
        connected    -> disconnected  refresh() failed, or disconnect() by a caller
    """

    def __init__(
        self,
        store: DigestStore,
        settings: GmailDigestSettings,
        *,
        service_factory: Callable[[Credentials], Resource] | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._service_factory = service_factory or build_gmail_service
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = self._locks[user_id] = threading.Lock()
            return lock

    def _client_for(self, access_token: str) -> GmailClient:
        service = self._service_factory(access_credentials(access_token))
        return GmailClient(service, max_results=self._settings.max_results)

    def require_active(self, user_id: str) -> Connection:
        """Load a usable connection.

        Raises:
            ConnectionNotFound: The user never connected.
            ConnectionInactive: The connection is soft-disabled.
        """
        connection = self._store.get_connection(user_id)
        if connection is None:
            raise ConnectionNotFound(f"Gmail not connected for user {user_id}")
        if not connection.connected:
            raise ConnectionInactive(f"Gmail connection inactive for user {user_id}")
        return connection

    def connect(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str,
        expiry: datetime | None,
    ) -> Connection:
        """Store tokens, then verify them with a profile call.

        The record is kept even when verification fails; it is left
        disconnected and the failure is raised.

        Raises:
            ConnectionFailedError: If Gmail rejects the new tokens.
        """
        connection = self._store.upsert_connection(user_id, access_token, refresh_token, expiry)
        try:
            self._client_for(access_token).get_profile()
        except GmailDigestError as e:
            self._store.set_connected(user_id, False)
            raise ConnectionFailedError(
                f"Failed to connect to Gmail with provided tokens: {e}"
            ) from e

        logger.info("Gmail connected for user %s", user_id)
        return connection

    def disconnect(self, user_id: str) -> None:
        """Soft-disable a connection; the record is kept."""
        if self._store.get_connection(user_id) is None:
            raise ConnectionNotFound(f"Gmail not connected for user {user_id}")
        self._store.set_connected(user_id, False)
        logger.info("Gmail disconnected for user %s", user_id)

    def test_connection(self, user_id: str) -> bool:
        """Cheap liveness probe with the stored access token. Never mutates state."""
        connection = self._store.get_connection(user_id)
        if connection is None:
            return False
        try:
            self._client_for(connection.access_token).get_profile()
            return True
        except GmailDigestError as e:
            logger.error("Gmail connection test failed for user %s: %s", user_id, e)
            return False

    def get_status(self, user_id: str) -> ConnectionStatus:
        """Check a connection and downgrade it if Gmail no longer accepts it."""
        connection = self._store.get_connection(user_id)
        if connection is None or not connection.connected:
            return ConnectionStatus(connected=False, message="No Gmail account connected.")

        try:
            self.call(user_id, lambda client: client.get_profile())
            active = True
        except ConnectionInactive:
            active = False
        except GmailDigestError as e:
            logger.error("Gmail status check failed for user %s: %s", user_id, e)
            self._store.set_connected(user_id, False)
            active = False

        return ConnectionStatus(
            connected=active,
            last_connected=connection.updated_at,
            message=(
                "Gmail account is connected and active."
                if active
                else "Gmail account connection is inactive."
            ),
        )

    def refresh(self, user_id: str, *, rejected_token: str | None = None) -> bool:
        """Exchange the stored refresh token for a new access token.

        Single-flight per user: callers queue on a per-user lock, and a caller
        whose rejected_token has already been replaced by another refresh
        returns True without calling Google again.

        On failure the connection is marked disconnected and False is returned.
        """
        with self._lock_for(user_id):
            connection = self._store.get_connection(user_id)
            if connection is None:
                return False

            if (
                rejected_token is not None
                and connection.connected
                and connection.access_token != rejected_token
            ):
                logger.debug("Token for user %s already refreshed by another caller", user_id)
                return True

            try:
                grant = refresh_access_token(self._settings, connection.refresh_token)
            except Exception as e:
                logger.error("Failed to refresh token for user %s: %s", user_id, e)
                self._store.set_connected(user_id, False)
                return False

            rotated = grant.refresh_token if grant.refresh_token != connection.refresh_token else None
            self._store.update_tokens(
                user_id, grant.access_token, grant.expiry, refresh_token=rotated
            )
            logger.info("Access token refreshed for user %s", user_id)
            return True

    def call(self, user_id: str, operation: Callable[[GmailClient], T]) -> T:
        """Run operation against a fresh GmailClient for the user's stored tokens.

        A token past its expiry is refreshed first. If Gmail rejects the token
        mid-call, the token is refreshed and the operation retried exactly once.

        Raises:
            ConnectionNotFound / ConnectionInactive: No usable credentials, or
                the refresh failed.
            AuthExpiredError: The retried call was rejected again.
            ProviderError: Any other Gmail failure (not retried).
        """
        connection = self.require_active(user_id)

        if self._is_expired(connection):
            logger.info("Access token for user %s expired, refreshing before call", user_id)
            connection = self._refresh_or_raise(user_id, connection.access_token)

        try:
            return operation(self._client_for(connection.access_token))
        except AuthExpiredError as e:
            logger.warning("Gmail rejected token for user %s, refreshing: %s", user_id, e)
            connection = self._refresh_or_raise(user_id, connection.access_token)

        return operation(self._client_for(connection.access_token))

    def _refresh_or_raise(self, user_id: str, rejected_token: str) -> Connection:
        if not self.refresh(user_id, rejected_token=rejected_token):
            raise ConnectionInactive(f"Token refresh failed for user {user_id}")
        return self.require_active(user_id)

    @staticmethod
    def _is_expired(connection: Connection) -> bool:
        expiry = connection.expiry_date
        if expiry is None:
            return False
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=UTC)
        return expiry <= datetime.now(UTC) + EXPIRY_SKEW
