"""Custom exceptions for Gmail Digest."""


class GmailDigestError(Exception):
    """Base exception for all Gmail Digest errors."""


class ConfigurationError(GmailDigestError):
    """A required setting is missing or invalid."""


class AuthenticationError(GmailDigestError):
    """OAuth consent or authorization-code exchange failed."""


class ProviderError(GmailDigestError):
    """Gmail API call failed for a reason other than an expired token."""


class AuthExpiredError(GmailDigestError):
    """Gmail rejected the access token (401-class)."""


class NotConnectedError(GmailDigestError):
    """No usable Gmail credentials for the user."""


class ConnectionNotFound(NotConnectedError):
    """The user has never connected a Gmail account."""


class ConnectionInactive(NotConnectedError):
    """The user's Gmail connection is marked disconnected."""


class ConnectionFailedError(GmailDigestError):
    """Stored tokens could not reach Gmail right after connect."""


class ClassificationFailure(GmailDigestError):
    """The model reply could not be turned into a classification."""


class DigestNotFound(GmailDigestError):
    """Digest does not exist or belongs to another user."""
