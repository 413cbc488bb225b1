"""Per-email classification and digest narrative generation with Gemini.

Neither operation raises: a failed model call or an unusable reply is logged
and replaced with deterministic fallback content.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gmail_digest.analysis.prompts import classify_prompt, digest_prompt
from gmail_digest.core.exceptions import ClassificationFailure
from gmail_digest.core.models import (
    Category,
    Classification,
    NewSummary,
    Priority,
    Sentiment,
)

logger = logging.getLogger(__name__)


class TextModel(Protocol):
    """Anything with Gemini's generate_content(prompt) -> response.text shape."""

    def generate_content(self, contents: str) -> Any: ...


def fallback_classification(subject: str) -> Classification:
    return Classification(
        summary=f"Email about: {subject}",
        category="other",
        priority="medium",
        action_required=False,
        sentiment="neutral",
    )


def fallback_digest_text(summaries: Sequence[NewSummary]) -> str:
    high = sum(1 for s in summaries if s.classification.priority == "high")
    return f"Digest of {len(summaries)} emails processed. {high} require attention."


def extract_json_object(text: str) -> str | None:
    """Return the first balanced {...} block in text, or None.

    Braces inside JSON string literals are ignored.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


class ClassificationReply(BaseModel):
    """Shape of the JSON object the model is asked to return."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    summary: str = Field(..., min_length=1)
    category: Category
    priority: Priority
    action_required: bool = Field(..., alias="actionRequired", strict=True)
    sentiment: Sentiment

    @field_validator("summary", mode="before")
    @classmethod
    def strip_summary(cls, value: Any) -> Any:
        return value.strip() if isinstance(value, str) else value

    @field_validator("category", "priority", "sentiment", mode="before")
    @classmethod
    def normalize_label(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    def to_classification(self) -> Classification:
        return Classification(
            summary=self.summary,
            category=self.category,
            priority=self.priority,
            action_required=self.action_required,
            sentiment=self.sentiment,
        )


def parse_classification(text: str) -> Classification:
    """Parse a model reply into a Classification.

    Raises:
        ClassificationFailure: If no JSON object is found or the object does
            not validate as a ClassificationReply.
    """
    block = extract_json_object(text)
    if block is None:
        raise ClassificationFailure("No JSON object in model reply")

    try:
        reply = ClassificationReply.model_validate_json(block)
    except ValidationError as e:
        raise ClassificationFailure(f"Invalid model reply: {e}") from e

    return reply.to_classification()


class EmailClassifier:
    """Classifies emails and writes digest narratives using a text model."""

    def __init__(self, model: TextModel, *, digest_max_words: int = 300) -> None:
        self._model = model
        self._digest_max_words = digest_max_words

    def _generate(self, prompt: str) -> str:
        response = self._model.generate_content(prompt)
        return response.text

    def classify(self, subject: str, body: str, sender: str) -> Classification:
        """Classify one email; returns the fallback classification on any failure."""
        try:
            text = self._generate(classify_prompt(subject, body, sender))
            return parse_classification(text)
        except Exception as e:
            logger.error("Error analyzing email %r with AI: %s", subject, e)
            return fallback_classification(subject)

    def summarize_digest(self, summaries: Sequence[NewSummary]) -> str:
        """Write one narrative for all classified emails; templated text on failure."""
        try:
            text = self._generate(digest_prompt(summaries, self._digest_max_words))
            if not text or not text.strip():
                raise ClassificationFailure("Empty digest text from model")
            return text.strip()
        except Exception as e:
            logger.error("Error generating digest summary: %s", e)
            return fallback_digest_text(summaries)
