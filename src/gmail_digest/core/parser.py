"""Gmail message parser: MIME tree walking, base64url decoding, header extraction."""

from __future__ import annotations

import base64
import binascii
import logging
from email.utils import parseaddr
from typing import Any

from bs4 import BeautifulSoup

from gmail_digest.core.exceptions import ProviderError
from gmail_digest.core.models import ProviderEmail, Sender

logger = logging.getLogger(__name__)

NO_CONTENT = "No content available"
NO_SUBJECT = "No Subject"


def parse_sender(from_header: str) -> Sender:
    """Split a From header into display name and address.

    '"Jane Doe" <jane@example.com>' -> Sender("Jane Doe", "jane@example.com")
    'jane@example.com'              -> Sender("", "jane@example.com")

    Without an angle-bracket address the whole header is taken as the email.
    """
    header = from_header.strip()
    if "<" in header and ">" in header:
        name, address = parseaddr(header)
        if address:
            return Sender(name=name.strip(), email=address.strip())
    return Sender(name="", email=header)


def html_to_text(html: str) -> str:
    """Strip tags and collapse whitespace."""
    soup = BeautifulSoup(html, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return " ".join(soup.get_text(separator=" ").split())


class GmailParser:
    """Parses raw Gmail API message dicts into ProviderEmail objects."""

    def parse(self, raw_message: dict[str, Any]) -> ProviderEmail:
        """Parse a raw Gmail API message dict (format=full).

        Raises:
            ProviderError: If the message structure is invalid.
        """
        try:
            message_id = raw_message["id"]
            payload = raw_message.get("payload") or {}
            headers = self._extract_headers(payload)

            return ProviderEmail(
                id=message_id,
                thread_id=raw_message.get("threadId", ""),
                subject=headers.get("subject") or NO_SUBJECT,
                body=self.extract_body(payload),
                sender=parse_sender(headers.get("from", "")),
                date=headers.get("date", ""),
            )
        except Exception as e:
            raise ProviderError(
                f"Failed to parse message {raw_message.get('id', '?')}: {e}"
            ) from e

    @staticmethod
    def _extract_headers(payload: dict[str, Any]) -> dict[str, str]:
        """Collect Subject/From/Date keyed by lowercase name; first occurrence wins."""
        headers: dict[str, str] = {}
        for h in payload.get("headers", []):
            name = h.get("name", "").lower()
            if name in ("subject", "from", "date") and name not in headers:
                headers[name] = h.get("value", "")
        return headers

    def extract_body(self, payload: dict[str, Any]) -> str:
        """Pick the best text representation of the message body.

        Order: first text/plain part, first text/html part (as text),
        top-level body data, then the no-content marker.
        """
        plain_text, html = self._walk_parts(payload)

        if plain_text:
            return plain_text
        if html:
            return html_to_text(html)

        body_data = (payload.get("body") or {}).get("data")
        if body_data:
            decoded = self._decode_body(body_data)
            if decoded:
                return decoded

        return NO_CONTENT

    def _walk_parts(self, part: dict[str, Any]) -> tuple[str | None, str | None]:
        """Depth-first walk returning the first (plain_text, html) found."""
        plain_text: str | None = None
        html: str | None = None
        mime_type = part.get("mimeType", "")

        if mime_type == "text/plain":
            data = (part.get("body") or {}).get("data")
            if data:
                plain_text = self._decode_body(data)
        elif mime_type == "text/html":
            data = (part.get("body") or {}).get("data")
            if data:
                html = self._decode_body(data)

        for sub_part in part.get("parts") or []:
            # Skip attachments
            if sub_part.get("filename"):
                continue

            sub_plain, sub_html = self._walk_parts(sub_part)
            if sub_plain and not plain_text:
                plain_text = sub_plain
            if sub_html and not html:
                html = sub_html
            if plain_text:
                break

        return plain_text, html

    @staticmethod
    def _decode_body(data: str) -> str | None:
        """Decode base64url body data; None if it is not valid base64."""
        # Gmail uses base64url encoding (RFC 4648 §5)
        padded = data + "=" * (-len(data) % 4)
        try:
            return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
        except (binascii.Error, ValueError):
            logger.warning("Undecodable body part (%d chars)", len(data))
            return None
