"""Frozen dataclasses for the Gmail Digest domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal, get_args

Category = Literal[
    "work", "personal", "newsletter", "promotional", "social", "important", "spam", "other"
]
Priority = Literal["high", "medium", "low"]
Sentiment = Literal["positive", "negative", "neutral"]

CATEGORIES = frozenset(get_args(Category))
PRIORITIES = frozenset(get_args(Priority))
SENTIMENTS = frozenset(get_args(Sentiment))


@dataclass(frozen=True)
class MessageStub:
    """Lightweight message reference from Gmail list API."""

    message_id: str
    thread_id: str


@dataclass(frozen=True)
class Sender:
    """Display name and address parsed from a From header."""

    name: str
    email: str


@dataclass(frozen=True)
class ProviderEmail:
    """Normalized unread message, never persisted."""

    id: str
    thread_id: str
    subject: str
    body: str
    sender: Sender
    date: str = ""


@dataclass(frozen=True)
class Classification:
    """Structured AI-derived metadata for one message."""

    summary: str
    category: str
    priority: str
    action_required: bool
    sentiment: str


@dataclass(frozen=True)
class Connection:
    """Stored OAuth credentials linking a user to their Gmail account."""

    user_id: str
    access_token: str
    refresh_token: str
    expiry_date: datetime | None
    connected: bool
    updated_at: datetime


@dataclass(frozen=True)
class ConnectionStatus:
    """Result of a liveness check as shown to the user."""

    connected: bool
    message: str
    last_connected: datetime | None = None


@dataclass(frozen=True)
class TokenGrant:
    """Tokens returned by an authorization-code exchange."""

    access_token: str
    refresh_token: str
    expiry: datetime | None


@dataclass(frozen=True)
class Summary:
    """Persisted classification of one email inside a digest."""

    id: int
    digest_id: int
    email_id: str
    sender_email: str
    sender_name: str
    subject: str
    summary: str
    category: str
    priority: str
    action_required: bool
    sentiment: str


@dataclass(frozen=True)
class NewSummary:
    """Summary row waiting to be inserted alongside its digest."""

    email_id: str
    sender_email: str
    sender_name: str
    subject: str
    classification: Classification


@dataclass(frozen=True)
class Digest:
    """One batch summary of a user's unread mail."""

    id: int
    user_id: str
    total_emails: int
    summary_text: str
    created_at: datetime
    summaries: tuple[Summary, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class DigestPage:
    """One page of a user's digest history, newest first."""

    digests: tuple[Digest, ...]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit) if self.limit else 0


@dataclass
class RunProgress:
    """Mutable progress tracker for one digest run."""

    user_id: str = ""
    messages_listed: int = 0
    messages_fetched: int = 0
    messages_classified: int = 0
    messages_marked_read: int = 0
    messages_failed: int = 0
    current_stage: str = "idle"


@dataclass
class ScheduleReport:
    """Outcome of one scheduled sweep over all active connections."""

    users_total: int = 0
    users_succeeded: int = 0
    users_failed: int = 0
    failed_user_ids: list[str] = field(default_factory=list)
