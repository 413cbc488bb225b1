"""Gemini model construction via google-generativeai."""

from __future__ import annotations

import logging

import google.generativeai as genai

from gmail_digest.config.settings import GmailDigestSettings
from gmail_digest.core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


def build_gemini_model(settings: GmailDigestSettings) -> genai.GenerativeModel:
    """Configure the SDK with the API key and return a GenerativeModel.

    Raises:
        ConfigurationError: If no API key is configured.
    """
    if not settings.gemini_api_key:
        raise ConfigurationError("GMAIL_DIGEST_GEMINI_API_KEY is not configured")

    genai.configure(api_key=settings.gemini_api_key)
    model = genai.GenerativeModel(settings.gemini_model)
    logger.info("Initialized Gemini model: %s", settings.gemini_model)
    return model
