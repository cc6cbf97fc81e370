"""Custom exceptions for mailbridge."""


class MailbridgeError(Exception):
    """Base exception for all mailbridge errors."""


class ConfigurationError(MailbridgeError):
    """Exception raised for configuration related errors."""


class TransportError(MailbridgeError):
    """Exception raised when the mailbox transport fails.

    Attributes:
        code: Short machine-readable error code.
        retryable: Whether a later invocation may succeed without operator action.
    """

    code = "TRANSPORT_ERROR"
    retryable = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class AuthenticationError(TransportError):
    """Exception raised when the mailbox rejects the account credentials."""

    code = "AUTH_ERROR"
    retryable = False


class MailboxConnectionError(TransportError):
    """Exception raised when the mailbox server cannot be reached."""

    code = "CONNECTION_ERROR"
    retryable = True


class RateLimitError(TransportError):
    """Exception raised when the provider throttles the account."""

    code = "RATE_LIMIT"
    retryable = True

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class DeliveryError(TransportError):
    """Exception raised when the outgoing server refuses a message."""

    code = "DELIVERY_ERROR"
    retryable = False


class AccountNotFoundError(MailbridgeError):
    """Exception raised when an account id does not exist."""


class AccountInactiveError(MailbridgeError):
    """Exception raised when an account is disconnected or still pending."""


class MessageNotFoundError(MailbridgeError):
    """Exception raised when a message id does not exist."""


class ConversationNotFoundError(MailbridgeError):
    """Exception raised when a conversation id does not exist."""


class MessageParseError(MailbridgeError):
    """Exception raised when a raw message cannot be parsed."""


class StorageError(MailbridgeError):
    """Exception raised for persistent store failures."""
