"""Shared fixtures for Gmail Digest tests."""

from __future__ import annotations

import base64
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.models import Classification, NewSummary
from gmail_digest.storage.store import DigestStore


def b64(text: str) -> str:
    """Encode text the way Gmail does (base64url, padding stripped)."""
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def make_raw_message(
    message_id: str = "msg_001",
    *,
    subject: str = "Quarterly report",
    sender: str = '"Jane Doe" <jane@example.com>',
    date: str = "Mon, 15 Jan 2024 10:30:00 -0500",
    plain: str | None = "Hello, this is plain text.",
    html: str | None = None,
) -> dict[str, Any]:
    """Build a format=full Gmail message dict with optional text and HTML parts."""
    parts = []
    if plain is not None:
        parts.append({"mimeType": "text/plain", "body": {"data": b64(plain)}})
    if html is not None:
        parts.append({"mimeType": "text/html", "body": {"data": b64(html)}})

    return {
        "id": message_id,
        "threadId": f"thread_{message_id}",
        "labelIds": ["INBOX", "UNREAD"],
        "payload": {
            "mimeType": "multipart/alternative",
            "headers": [
                {"name": "Subject", "value": subject},
                {"name": "From", "value": sender},
                {"name": "Date", "value": date},
            ],
            "body": {"size": 0},
            "parts": parts,
        },
    }


@pytest.fixture
def tmp_db_path(tmp_path: Path) -> Path:
    """Temporary database path for tests."""
    return tmp_path / "data" / "test.db"


@pytest.fixture
def settings(tmp_db_path: Path) -> GmailDigestSettings:
    """Settings pointing at a temporary database, independent of any .env."""
    return GmailDigestSettings(
        _env_file=None,
        client_id="client-id",
        client_secret="client-secret",
        database_path=tmp_db_path,
        gemini_api_key="test-key",
        max_results=50,
        default_lookback_hours=24,
        max_body_chars=10_000,
        classify_workers=1,
    )


@pytest.fixture
def store(tmp_db_path: Path) -> Generator[DigestStore, None, None]:
    """Connected DigestStore on a temporary database."""
    with DigestStore(tmp_db_path) as s:
        yield s


@pytest.fixture
def classification() -> Classification:
    return Classification(
        summary="Jane shares the quarterly numbers.",
        category="work",
        priority="high",
        action_required=True,
        sentiment="positive",
    )


@pytest.fixture
def new_summary(classification: Classification) -> NewSummary:
    return NewSummary(
        email_id="msg_001",
        sender_email="jane@example.com",
        sender_name="Jane Doe",
        subject="Quarterly report",
        classification=classification,
    )
