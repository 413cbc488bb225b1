"""Explicit wiring of settings, storage, Gmail, Gemini, and the pipeline."""

from __future__ import annotations

import logging
from collections.abc import Callable

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import Resource

from gmail_digest.analysis.classifier import EmailClassifier, TextModel
from gmail_digest.analysis.gemini import build_gemini_model
from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.models import RunProgress
from gmail_digest.pipeline.connections import ConnectionManager
from gmail_digest.pipeline.history import DigestHistory
from gmail_digest.pipeline.orchestrator import DigestOrchestrator
from gmail_digest.pipeline.scheduler import DigestScheduler
from gmail_digest.storage.store import DigestStore

logger = logging.getLogger(__name__)


class DigestApp:
    """Holds every component, constructed and wired by hand.

    Storage and connection management are ready immediately. The Gemini model,
    and with it the orchestrator and scheduler, is built on first use so that
    commands which never classify mail do not need an API key.
    """

    def __init__(
        self,
        settings: GmailDigestSettings | None = None,
        *,
        model: TextModel | None = None,
        service_factory: Callable[[Credentials], Resource] | None = None,
        on_progress: Callable[[RunProgress], None] | None = None,
    ) -> None:
        self.settings = settings or GmailDigestSettings()
        self.settings.ensure_directories()

        self.store = DigestStore(self.settings.database_path)
        self.store.connect()

        self.connections = ConnectionManager(
            self.store, self.settings, service_factory=service_factory
        )
        self.history = DigestHistory(self.store)

        self._model = model
        self._on_progress = on_progress
        self._orchestrator: DigestOrchestrator | None = None
        self._scheduler: DigestScheduler | None = None

    @property
    def orchestrator(self) -> DigestOrchestrator:
        if self._orchestrator is None:
            model = self._model or build_gemini_model(self.settings)
            self._orchestrator = DigestOrchestrator(
                self.store,
                self.connections,
                EmailClassifier(model),
                self.settings,
                on_progress=self._on_progress,
            )
        return self._orchestrator

    @property
    def scheduler(self) -> DigestScheduler:
        if self._scheduler is None:
            self._scheduler = DigestScheduler(self.store, self.orchestrator, self.settings)
        return self._scheduler

    def close(self) -> None:
        """Clean up resources."""
        self.store.close()

    def __enter__(self) -> DigestApp:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
