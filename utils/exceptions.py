"""Custom exception classes for the mailbox system."""


class MailboxError(Exception):
    """Base exception class for all mailbox-related errors."""
    pass


class MailboxIOError(MailboxError):
    """Exception raised when seeking, reading or writing the mailbox file fails."""
    pass


class RecordIntegrityError(MailboxError):
    """Exception raised when a read returns only part of a record."""
    pass


class ProtocolViolationError(MailboxError):
    """Exception raised when a request payload fails validation."""
    pass


class BusyTimeoutError(MailboxError):
    """Base exception for exchanges that ran out of time."""
    pass


class ServerBusyError(BusyTimeoutError):
    """Exception raised when the mailbox never became free for a request."""
    pass


class ResponseTimeoutError(BusyTimeoutError):
    """Exception raised when the server did not answer in time."""
    pass


class ServerGoneError(MailboxError):
    """Exception raised when the mailbox carries the server shutdown marker."""
    pass


class ExchangeCancelledError(MailboxError):
    """Exception raised when shutdown was requested in the middle of an exchange."""
    pass


class MailboxNotBoundError(MailboxError):
    """Exception raised when a client uses the mailbox before binding to one."""
    pass


class DiscoveryError(MailboxError):
    """Exception raised when no live server mailbox could be found."""
    pass


class ConfigurationError(MailboxError):
    """Exception raised when configuration is invalid or missing."""
    pass
