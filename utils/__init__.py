"""Utility modules for logging and exception handling."""

from utils.logging import setup_logging, get_logger
from utils.exceptions import (
    MailboxError,
    MailboxIOError,
    RecordIntegrityError,
    ProtocolViolationError,
    BusyTimeoutError,
    ServerBusyError,
    ResponseTimeoutError,
    ServerGoneError,
    ExchangeCancelledError,
    MailboxNotBoundError,
    DiscoveryError,
    ConfigurationError,
)

__all__ = [
    'setup_logging',
    'get_logger',
    'MailboxError',
    'MailboxIOError',
    'RecordIntegrityError',
    'ProtocolViolationError',
    'BusyTimeoutError',
    'ServerBusyError',
    'ResponseTimeoutError',
    'ServerGoneError',
    'ExchangeCancelledError',
    'MailboxNotBoundError',
    'DiscoveryError',
    'ConfigurationError',
]
