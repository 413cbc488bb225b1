"""Gmail Digest - Classify unread Gmail with Gemini and store periodic digests."""

from gmail_digest.bootstrap import DigestApp
from gmail_digest.core.models import (
    Classification,
    Connection,
    ConnectionStatus,
    Digest,
    DigestPage,
    ProviderEmail,
    RunProgress,
    ScheduleReport,
    Sender,
    Summary,
)

__all__ = [
    "Classification",
    "Connection",
    "ConnectionStatus",
    "Digest",
    "DigestApp",
    "DigestPage",
    "ProviderEmail",
    "RunProgress",
    "ScheduleReport",
    "Sender",
    "Summary",
]
