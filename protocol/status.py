"""Mailbox status definitions."""

from enum import IntEnum


class MailboxStatus(IntEnum):
    """Enumeration of record states shared by client and server."""

    FREE = 0        # Slot is idle, a client may write a request
    REQUEST = 1     # Client wrote a request, server owns the slot
    RESPONSE = 2    # Server wrote a response, client owns the slot
