"""Prompt templates for per-email classification and the digest narrative."""

from __future__ import annotations

from collections.abc import Sequence

from gmail_digest.core.models import NewSummary

CLASSIFY_PROMPT = """
Analyze this email and provide a structured response in JSON format:

Email Subject: {subject}
Email Body: {body}
Sender: {sender}

Please analyze and return ONLY valid JSON with these exact fields:
- summary: A concise 2-3 sentence summary of the email content
- category: One of: "work", "personal", "newsletter", "promotional", "social", "important", "spam", "other"
- priority: "high", "medium", or "low"
- actionRequired: boolean indicating if the email requires any action
- sentiment: "positive", "negative", or "neutral"

Be concise and accurate in your analysis. Focus on the actual content rather than assumptions.
"""

DIGEST_PROMPT = """
Create a concise daily email digest summary based on these analyzed emails:

{email_list}

Provide a well-structured digest that:
1. Starts with a brief overview of the email volume and key categories
2. Highlights high-priority emails and action items
3. Groups emails by category where appropriate
4. Ends with any important follow-ups needed

Keep it professional and easy to scan. Maximum {max_words} words.
"""


def classify_prompt(subject: str, body: str, sender: str) -> str:
    return CLASSIFY_PROMPT.format(subject=subject, body=body, sender=sender)


def digest_prompt(summaries: Sequence[NewSummary], max_words: int = 300) -> str:
    email_list = "\n\n".join(
        f"{i}. Subject: {s.subject}\n"
        f"   Summary: {s.classification.summary}\n"
        f"   Category: {s.classification.category}\n"
        f"   Priority: {s.classification.priority}"
        for i, s in enumerate(summaries, start=1)
    )
    return DIGEST_PROMPT.format(email_list=email_list, max_words=max_words)
