"""Gmail API client for listing unread mail, fetching details, and marking read."""

from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime
from typing import Any

from google.auth.exceptions import RefreshError
from googleapiclient.discovery import Resource
from googleapiclient.errors import HttpError

from gmail_digest.core.exceptions import AuthExpiredError, ProviderError
from gmail_digest.core.models import MessageStub, ProviderEmail
from gmail_digest.core.parser import GmailParser

logger = logging.getLogger(__name__)

UNREAD_LABEL = "UNREAD"


def _is_auth_error(exc: Exception) -> bool:
    """Check whether an exception means Gmail rejected the access token."""
    if isinstance(exc, RefreshError):
        return True
    return isinstance(exc, HttpError) and exc.status_code == 401


def build_unread_query(since: datetime | None = None) -> str:
    """Gmail search query for unread mail, optionally received after `since`."""
    query = "is:unread"
    if since is not None:
        query += f" after:{int(since.timestamp())}"
    return query


class GmailClient:
    """Thin wrapper around the Gmail API for one set of credentials.

    Built fresh for every call from the stored connection; holds no token state
    of its own.
    """

    def __init__(
        self,
        service: Resource,
        user_id: str = "me",
        *,
        max_results: int = 50,
        parser: GmailParser | None = None,
    ) -> None:
        self._service = service
        self._user_id = user_id
        self._max_results = max_results
        self._parser = parser or GmailParser()

    def _execute(self, request: Any, context: str) -> Any:
        """Execute a single API request, translating failures.

        Raises:
            AuthExpiredError: On 401 responses or an unusable token.
            ProviderError: On any other API error.
        """
        try:
            return request.execute()
        except Exception as e:
            if _is_auth_error(e):
                raise AuthExpiredError(f"Access token rejected during {context}: {e}") from e
            raise ProviderError(f"Failed to {context}: {e}") from e

    def list_unread(self, since: datetime | None = None) -> Generator[MessageStub, None, None]:
        """Yield unread message references, newest first, capped at max_results.

        A single page is requested; anything beyond the cap is not included.
        The request is sent on first iteration.
        """
        request = (
            self._service.users()
            .messages()
            .list(
                userId=self._user_id,
                q=build_unread_query(since),
                maxResults=self._max_results,
            )
        )
        response = self._execute(request, "list unread messages")

        messages = response.get("messages", [])
        logger.debug("Listed %d unread message IDs", len(messages))
        for msg in messages[: self._max_results]:
            yield MessageStub(message_id=msg["id"], thread_id=msg.get("threadId", ""))

    def get_message_detail(self, message_id: str) -> ProviderEmail | None:
        """Fetch and normalize one message.

        Returns None (after logging a warning) when this single message cannot
        be fetched or parsed. Expired tokens still raise AuthExpiredError.
        """
        request = (
            self._service.users()
            .messages()
            .get(userId=self._user_id, id=message_id, format="full")
        )
        try:
            raw = self._execute(request, f"get message {message_id}")
            return self._parser.parse(raw)
        except ProviderError as e:
            logger.warning("Skipping message %s: %s", message_id, e)
            return None

    def mark_read(self, message_id: str) -> None:
        """Remove the UNREAD label. Idempotent on Gmail's side."""
        request = (
            self._service.users()
            .messages()
            .modify(
                userId=self._user_id,
                id=message_id,
                body={"removeLabelIds": [UNREAD_LABEL]},
            )
        )
        self._execute(request, f"mark message {message_id} as read")

    def get_profile(self) -> dict[str, Any]:
        """Cheap liveness call returning the mailbox profile."""
        request = self._service.users().getProfile(userId=self._user_id)
        return self._execute(request, "get profile")
