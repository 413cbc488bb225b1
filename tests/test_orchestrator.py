"""Tests for DigestOrchestrator with a mocked Gmail service and classifier."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_raw_message
from googleapiclient.errors import HttpError

from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.exceptions import ConnectionInactive, ConnectionNotFound, ProviderError
from gmail_digest.core.models import Classification, RunProgress, TokenGrant
from gmail_digest.pipeline.connections import ConnectionManager
from gmail_digest.pipeline.orchestrator import EMPTY_DIGEST_TEXT, DigestOrchestrator
from gmail_digest.storage.store import DigestStore

FUTURE = datetime.now(UTC) + timedelta(hours=1)


def _http_error(status: int) -> HttpError:
    return HttpError(resp=MagicMock(status=status), content=b"error")


class FakeMailbox:
    """Mock Gmail service serving a fixed set of unread messages."""

    def __init__(
        self,
        message_ids: list[str],
        *,
        bodies: dict[str, str] | None = None,
        failing_gets: set[str] = frozenset(),
        failing_marks: set[str] = frozenset(),
    ) -> None:
        self.message_ids = message_ids
        self.bodies = bodies or {}
        self.failing_gets = failing_gets
        self.failing_marks = failing_marks
        self.marked: list[str] = []
        self.list_calls: list[dict[str, Any]] = []

        self.service = MagicMock()
        messages = self.service.users.return_value.messages.return_value
        messages.list.side_effect = self._list
        messages.get.side_effect = self._get
        messages.modify.side_effect = self._modify

    def _request(self, result: Any = None, error: Exception | None = None) -> MagicMock:
        request = MagicMock()
        if error is not None:
            request.execute.side_effect = error
        else:
            request.execute.return_value = result
        return request

    def _list(self, **kwargs: Any) -> MagicMock:
        self.list_calls.append(kwargs)
        if not self.message_ids:
            return self._request({"resultSizeEstimate": 0})
        return self._request(
            {"messages": [{"id": m, "threadId": f"t_{m}"} for m in self.message_ids]}
        )

    def _get(self, *, userId: str, id: str, format: str) -> MagicMock:
        if id in self.failing_gets:
            return self._request(error=_http_error(404))
        return self._request(
            make_raw_message(
                id,
                subject=f"Subject {id}",
                plain=self.bodies.get(id, f"Body of {id}"),
            )
        )

    def _modify(self, *, userId: str, id: str, body: dict[str, Any]) -> MagicMock:
        if id in self.failing_marks:
            return self._request(error=_http_error(500))
        self.marked.append(id)
        return self._request({"id": id})


def _classifier() -> MagicMock:
    classifier = MagicMock()
    classifier.classify.side_effect = lambda subject, body, sender: Classification(
        summary=f"About {subject}",
        category="work",
        priority="medium",
        action_required=False,
        sentiment="neutral",
    )
    classifier.summarize_digest.return_value = "Narrative"
    return classifier


def _orchestrator(
    store: DigestStore,
    settings: GmailDigestSettings,
    mailbox: FakeMailbox,
    classifier: MagicMock,
    **kwargs: Any,
) -> DigestOrchestrator:
    connections = ConnectionManager(store, settings, service_factory=lambda creds: mailbox.service)
    return DigestOrchestrator(store, connections, classifier, settings, **kwargs)


@pytest.fixture
def connected(store: DigestStore) -> str:
    store.upsert_connection("u1", "a1", "r1", FUTURE)
    return "u1"


class TestRunDigest:
    def test_zero_messages_makes_no_ai_calls(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        mailbox = FakeMailbox([])
        classifier = _classifier()

        digest = _orchestrator(store, settings, mailbox, classifier).run_digest(connected)

        assert digest.total_emails == 0
        assert digest.summary_text == EMPTY_DIGEST_TEXT
        assert digest.summaries == ()
        classifier.classify.assert_not_called()
        classifier.summarize_digest.assert_not_called()
        assert mailbox.marked == []
        assert store.count_digests(connected) == 1

    def test_processes_all_messages(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        ids = [f"m{i}" for i in range(3)]
        mailbox = FakeMailbox(ids)
        classifier = _classifier()

        digest = _orchestrator(store, settings, mailbox, classifier).run_digest(connected)

        assert digest.total_emails == len(digest.summaries) == 3
        assert digest.summary_text == "Narrative"
        assert [s.email_id for s in digest.summaries] == ids
        assert digest.summaries[0].sender_email == "jane@example.com"
        assert digest.summaries[0].sender_name == "Jane Doe"
        assert digest.summaries[0].summary == "About Subject m0"
        assert mailbox.marked == ids
        classifier.summarize_digest.assert_called_once()

    def test_one_failed_fetch_is_skipped_with_one_warning(
        self,
        store: DigestStore,
        settings: GmailDigestSettings,
        connected: str,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        ids = [f"m{i}" for i in range(5)]
        mailbox = FakeMailbox(ids, failing_gets={"m2"})

        with caplog.at_level(logging.WARNING):
            digest = _orchestrator(store, settings, mailbox, _classifier()).run_digest(connected)

        assert digest.total_emails == 4
        assert "m2" not in [s.email_id for s in digest.summaries]
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 1
        assert "m2" in warnings[0].getMessage()
        assert mailbox.marked == ["m0", "m1", "m3", "m4"]

    def test_one_failed_mark_read_does_not_block_others(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        ids = [f"m{i}" for i in range(5)]
        mailbox = FakeMailbox(ids, failing_marks={"m1"})

        digest = _orchestrator(store, settings, mailbox, _classifier()).run_digest(connected)

        assert mailbox.marked == ["m0", "m2", "m3", "m4"]
        assert digest.total_emails == 5
        assert store.get_digest(connected, digest.id) == digest

    def test_body_is_truncated_before_classification(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        mailbox = FakeMailbox(["m0"], bodies={"m0": "x" * 15_000})
        classifier = _classifier()

        _orchestrator(store, settings, mailbox, classifier).run_digest(connected)

        kwargs = classifier.classify.call_args.kwargs
        assert len(kwargs["body"]) == 10_000
        assert kwargs["sender"] == "Jane Doe"
        assert kwargs["subject"] == "Subject m0"

    def test_failed_classification_drops_only_that_email(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        mailbox = FakeMailbox(["m0", "m1", "m2"])
        classifier = _classifier()
        ok = classifier.classify.side_effect

        def flaky(subject: str, body: str, sender: str) -> Classification:
            if subject == "Subject m1":
                raise RuntimeError("model crashed")
            return ok(subject, body, sender)

        classifier.classify.side_effect = flaky

        digest = _orchestrator(store, settings, mailbox, classifier).run_digest(connected)

        assert [s.email_id for s in digest.summaries] == ["m0", "m2"]
        assert mailbox.marked == ["m0", "m2"]

    def test_parallel_classification_keeps_fetch_order(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        ids = [f"m{i}" for i in range(8)]
        parallel = settings.model_copy(update={"classify_workers": 4})

        digest = _orchestrator(store, parallel, FakeMailbox(ids), _classifier()).run_digest(
            connected
        )

        assert [s.email_id for s in digest.summaries] == ids

    def test_unknown_user(self, store: DigestStore, settings: GmailDigestSettings) -> None:
        mailbox = FakeMailbox(["m0"])
        with pytest.raises(ConnectionNotFound):
            _orchestrator(store, settings, mailbox, _classifier()).run_digest("nobody")
        assert mailbox.list_calls == []

    def test_inactive_connection(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        store.set_connected(connected, False)
        with pytest.raises(ConnectionInactive):
            _orchestrator(store, settings, FakeMailbox(["m0"]), _classifier()).run_digest(
                connected
            )
        assert store.count_digests(connected) == 0

    def test_list_failure_propagates_without_digest(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        mailbox = FakeMailbox(["m0"])
        mailbox.service.users.return_value.messages.return_value.list.side_effect = (
            lambda **kwargs: mailbox._request(error=_http_error(500))
        )

        with pytest.raises(ProviderError):
            _orchestrator(store, settings, mailbox, _classifier()).run_digest(connected)

        assert store.count_digests(connected) == 0

    def test_expired_token_mid_run_is_refreshed(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        mailbox = FakeMailbox(["m0"])
        real_list = mailbox._list
        attempts: list[int] = []

        def list_once_rejected(**kwargs: Any) -> MagicMock:
            attempts.append(1)
            if len(attempts) == 1:
                return mailbox._request(error=_http_error(401))
            return real_list(**kwargs)

        mailbox.service.users.return_value.messages.return_value.list.side_effect = (
            list_once_rejected
        )
        grant = TokenGrant(access_token="a2", refresh_token="r1", expiry=FUTURE)

        with patch(
            "gmail_digest.pipeline.connections.refresh_access_token", return_value=grant
        ) as mock_refresh:
            digest = _orchestrator(store, settings, mailbox, _classifier()).run_digest(connected)

        mock_refresh.assert_called_once()
        assert digest.total_emails == 1
        assert store.get_connection(connected).access_token == "a2"

    def test_progress_callback_sees_every_stage(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        stages: list[str] = []
        snapshots: list[RunProgress] = []

        def on_progress(progress: RunProgress) -> None:
            if not stages or stages[-1] != progress.current_stage:
                stages.append(progress.current_stage)
            snapshots.append(progress)

        orchestrator = _orchestrator(
            store, settings, FakeMailbox(["m0", "m1"]), _classifier(), on_progress=on_progress
        )
        orchestrator.run_digest(connected)

        assert stages == ["list", "fetch", "classify", "persist", "mark_read", "complete"]
        final = snapshots[-1]
        assert final.user_id == connected
        assert final.messages_listed == 2
        assert final.messages_fetched == 2
        assert final.messages_classified == 2
        assert final.messages_marked_read == 2
        assert final.messages_failed == 0

    def test_overlapping_runs_keep_separate_progress(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        store.upsert_connection("u2", "b1", "r2", FUTURE)
        finals: dict[str, RunProgress] = {}
        orchestrator: DigestOrchestrator

        def on_progress(progress: RunProgress) -> None:
            finals[progress.user_id] = progress
            if progress.user_id == connected and progress.current_stage == "classify":
                if "u2" not in finals:
                    orchestrator.run_digest("u2")

        orchestrator = _orchestrator(
            store, settings, FakeMailbox(["m0", "m1"]), _classifier(), on_progress=on_progress
        )
        orchestrator.run_digest(connected)

        assert finals[connected] is not finals["u2"]
        assert finals[connected].user_id == connected
        assert finals[connected].current_stage == "complete"
        assert finals[connected].messages_fetched == 2
        assert finals[connected].messages_marked_read == 2
        assert finals["u2"].messages_marked_read == 2


class TestWindowStart:
    def test_default_lookback_without_prior_digest(
        self, store: DigestStore, settings: GmailDigestSettings
    ) -> None:
        orchestrator = _orchestrator(store, settings, FakeMailbox([]), _classifier())

        before = datetime.now(UTC) - timedelta(hours=24)
        start = orchestrator.window_start("u1")
        after = datetime.now(UTC) - timedelta(hours=24)

        assert before <= start <= after

    def test_uses_last_digest_time(
        self, store: DigestStore, settings: GmailDigestSettings, connected: str
    ) -> None:
        previous = store.create_digest(connected, "earlier")
        mailbox = FakeMailbox([])
        orchestrator = _orchestrator(store, settings, mailbox, _classifier())

        assert orchestrator.window_start(connected) == previous.created_at

        orchestrator.run_digest(connected)
        assert mailbox.list_calls[0]["q"] == f"is:unread after:{int(previous.created_at.timestamp())}"
        assert mailbox.list_calls[0]["maxResults"] == 50
