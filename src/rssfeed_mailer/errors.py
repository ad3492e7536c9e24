"""Exceptions raised by RSS Feed Mailer."""


class RssMailerError(Exception):
    """Base class for every error the CLI reports as fatal."""


class ConfigError(RssMailerError):
    """Raised when required settings are missing or malformed."""


class StoreError(RssMailerError):
    """Base class for delivery store failures."""


class StoreNotFound(StoreError):
    """Raised when opening a database that does not exist."""


class StoreAlreadyExists(StoreError):
    """Raised when creating a database over an existing file."""


class StoreTimeout(StoreError):
    """Raised when the write lock cannot be taken within the timeout."""


class StoreDecodeError(StoreError):
    """Raised when a stored record cannot be read back."""


class InvariantViolation(StoreError):
    """Raised when a feed is missing (or present) where it must not be."""


class NotifierError(RssMailerError):
    """Base class for outbound mail failures."""


class NotifierConnectError(NotifierError):
    """Raised when the mail server cannot be reached or TLS fails."""


class NotifierAuthError(NotifierError):
    """Raised when the mail server rejects the credentials."""


class TransportError(NotifierError):
    """Raised when a message cannot be handed to the mail server."""
