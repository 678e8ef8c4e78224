"""Protocol module for the mailbox record, its layouts and file access."""

from protocol.constants import (
    PAYLOAD_SIZE,
    MAX_PAYLOAD_BYTES,
    UNASSIGNED_CLIENT_ID,
    SERVER_FILE_PREFIX,
    SERVER_FILE_EXTENSION,
    DEFAULT_MAILBOX_NAME,
    SHUTDOWN_MARKER,
    PING_COMMAND,
)
from protocol.status import MailboxStatus
from protocol.encoding import encode_payload, decode_payload
from protocol.messages import (
    RecordLayout,
    ExchangeRecord,
    SIMPLE_LAYOUT,
    MULTI_CLIENT_LAYOUT,
)
from protocol.mailbox import MailboxFile

__all__ = [
    'PAYLOAD_SIZE',
    'MAX_PAYLOAD_BYTES',
    'UNASSIGNED_CLIENT_ID',
    'SERVER_FILE_PREFIX',
    'SERVER_FILE_EXTENSION',
    'DEFAULT_MAILBOX_NAME',
    'SHUTDOWN_MARKER',
    'PING_COMMAND',
    'MailboxStatus',
    'encode_payload',
    'decode_payload',
    'RecordLayout',
    'ExchangeRecord',
    'SIMPLE_LAYOUT',
    'MULTI_CLIENT_LAYOUT',
    'MailboxFile',
]
