"""Digest orchestrator: window → list unread → fetch → classify → persist → mark read."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta

from gmail_digest.analysis.classifier import EmailClassifier
from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.exceptions import GmailDigestError, NotConnectedError
from gmail_digest.core.models import (
    Digest,
    MessageStub,
    NewSummary,
    ProviderEmail,
    RunProgress,
)
from gmail_digest.pipeline.connections import ConnectionManager
from gmail_digest.storage.store import DigestStore

logger = logging.getLogger(__name__)

EMPTY_DIGEST_TEXT = "No new emails to process"


class DigestOrchestrator:
    """Runs one digest for one user.

    Stage 1 - List:     unread message IDs received since the last digest (cap 50)
    Stage 2 - Fetch:    full message per ID; a failed fetch skips that message only
    Stage 3 - Classify: truncated body → Classification (never fails, see EmailClassifier)
    Stage 4 - Persist:  narrative + digest + summaries in one transaction
    Stage 5 - Mark:     remove UNREAD from each processed message, best effort
    """

    def __init__(
        self,
        store: DigestStore,
        connections: ConnectionManager,
        classifier: EmailClassifier,
        settings: GmailDigestSettings | None = None,
        on_progress: Callable[[RunProgress], None] | None = None,
    ) -> None:
        self._store = store
        self._connections = connections
        self._classifier = classifier
        self._settings = settings or GmailDigestSettings()
        self._on_progress = on_progress

    @property
    def on_progress(self) -> Callable[[RunProgress], None] | None:
        return self._on_progress

    @on_progress.setter
    def on_progress(self, callback: Callable[[RunProgress], None] | None) -> None:
        self._on_progress = callback

    def window_start(self, user_id: str) -> datetime:
        """Created-at of the last digest, or the default lookback from now."""
        last = self._store.latest_digest_time(user_id)
        if last is not None:
            return last
        return datetime.now(UTC) - timedelta(hours=self._settings.default_lookback_hours)

    def run_digest(self, user_id: str) -> Digest:
        """Build, persist, and return a digest of the user's unread mail.

        Raises:
            NotConnectedError: No usable Gmail connection.
            GmailDigestError: Listing unread mail failed (after one refresh-retry).
        """
        logger.info("Running email digest for user: %s", user_id)
        self._connections.require_active(user_id)
        progress = RunProgress(user_id=user_id, current_stage="list")
        self._notify(progress)

        try:
            since = self.window_start(user_id)
            stubs = self._connections.call(user_id, lambda client: list(client.list_unread(since)))
            progress.messages_listed = len(stubs)
            self._notify(progress)

            emails = self._fetch_all(user_id, stubs, progress)
            logger.info("Found %d unread emails for user %s", len(emails), user_id)

            if not emails:
                digest = self._store.create_digest(user_id, EMPTY_DIGEST_TEXT)
                progress.current_stage = "complete"
                self._notify(progress)
                return digest

            summaries = self._classify_all(emails, progress)

            progress.current_stage = "persist"
            self._notify(progress)
            narrative = self._classifier.summarize_digest(summaries)
            digest = self._store.create_digest(user_id, narrative, summaries)

            self._mark_all_read(user_id, [s.email_id for s in summaries], progress)

            progress.current_stage = "complete"
            self._notify(progress)
        except Exception as e:
            progress.current_stage = f"error: {e}"
            self._notify(progress)
            raise

        logger.info(
            "Email digest completed for user: %s. Processed %d emails.",
            user_id,
            digest.total_emails,
        )
        return digest

    def _fetch_all(
        self, user_id: str, stubs: list[MessageStub], progress: RunProgress
    ) -> list[ProviderEmail]:
        """Fetch each listed message; failures are skipped, lost credentials abort."""
        progress.current_stage = "fetch"
        self._notify(progress)

        emails: list[ProviderEmail] = []
        for stub in stubs:
            try:
                email = self._connections.call(
                    user_id,
                    lambda client, message_id=stub.message_id: client.get_message_detail(message_id),
                )
            except NotConnectedError:
                raise
            except GmailDigestError as e:
                logger.warning("Failed to fetch message %s: %s", stub.message_id, e)
                email = None

            if email is None:
                progress.messages_failed += 1
            else:
                emails.append(email)
                progress.messages_fetched += 1
            self._notify(progress)

        return emails

    def _classify_one(self, email: ProviderEmail) -> NewSummary:
        classification = self._classifier.classify(
            subject=email.subject,
            body=email.body[: self._settings.max_body_chars],
            sender=email.sender.name or email.sender.email,
        )
        return NewSummary(
            email_id=email.id,
            sender_email=email.sender.email,
            sender_name=email.sender.name,
            subject=email.subject,
            classification=classification,
        )

    def _classify_all(
        self, emails: list[ProviderEmail], progress: RunProgress
    ) -> list[NewSummary]:
        """Classify every email; results keep fetch order."""
        progress.current_stage = "classify"
        self._notify(progress)

        workers = max(1, self._settings.classify_workers)
        if workers == 1:
            results = [self._try_classify(email) for email in emails]
        else:
            with ThreadPoolExecutor(max_workers=workers) as pool:
                results = list(pool.map(self._try_classify, emails))

        summaries = [s for s in results if s is not None]
        progress.messages_classified = len(summaries)
        progress.messages_failed += len(results) - len(summaries)
        self._notify(progress)
        return summaries

    def _try_classify(self, email: ProviderEmail) -> NewSummary | None:
        try:
            return self._classify_one(email)
        except Exception as e:
            logger.error("Failed to analyze email %s: %s", email.id, e)
            return None

    def _mark_all_read(
        self, user_id: str, message_ids: list[str], progress: RunProgress
    ) -> None:
        """Best effort: one failure never blocks the rest or undoes the digest."""
        progress.current_stage = "mark_read"
        self._notify(progress)

        for message_id in message_ids:
            try:
                self._connections.call(
                    user_id, lambda client, mid=message_id: client.mark_read(mid)
                )
                progress.messages_marked_read += 1
            except GmailDigestError as e:
                logger.error("Failed to mark email %s as read: %s", message_id, e)
            self._notify(progress)

    def _notify(self, progress: RunProgress) -> None:
        """Send progress update to callback if registered."""
        if self._on_progress:
            self._on_progress(progress)
