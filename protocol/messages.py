"""Exchange record structure definitions."""

from dataclasses import dataclass
import struct

from protocol.constants import (
    MULTI_CLIENT_RECORD_FORMAT,
    SIMPLE_RECORD_FORMAT,
    UNASSIGNED_CLIENT_ID,
)
from protocol.encoding import encode_payload, decode_payload
from protocol.status import MailboxStatus


@dataclass(frozen=True)
class RecordLayout:
    """Binary layout of the mailbox record for one protocol variant."""

    name: str
    format_str: str
    has_client_id: bool

    @property
    def size(self) -> int:
        """Size of the full record in bytes."""
        return struct.calcsize(self.format_str)


SIMPLE_LAYOUT = RecordLayout(
    name="simple",
    format_str=SIMPLE_RECORD_FORMAT,
    has_client_id=False,
)

MULTI_CLIENT_LAYOUT = RecordLayout(
    name="multi",
    format_str=MULTI_CLIENT_RECORD_FORMAT,
    has_client_id=True,
)


@dataclass
class ExchangeRecord:
    """The single record exchanged through a mailbox."""

    status: MailboxStatus = MailboxStatus.FREE
    client_id: int = UNASSIGNED_CLIENT_ID
    payload: str = ""

    @classmethod
    def empty(cls) -> 'ExchangeRecord':
        """Zero-valued record, as found in freshly initialized storage."""
        return cls()

    @classmethod
    def from_bytes(cls, data: bytes, layout: RecordLayout) -> 'ExchangeRecord':
        """
        Parse a record from bytes.

        Args:
            data: Raw bytes containing exactly one record
            layout: Layout the bytes were written with

        Returns:
            Parsed ExchangeRecord instance

        Raises:
            ValueError: If the status field holds an unknown value
        """
        if layout.has_client_id:
            status, client_id, raw = struct.unpack(layout.format_str, data)
        else:
            status, raw = struct.unpack(layout.format_str, data)
            client_id = UNASSIGNED_CLIENT_ID
        return cls(
            status=MailboxStatus(status),
            client_id=client_id,
            payload=decode_payload(raw),
        )

    def to_bytes(self, layout: RecordLayout) -> bytes:
        """
        Serialize the full record to bytes.

        Args:
            layout: Layout to serialize with

        Returns:
            Serialized record bytes of size ``layout.size``
        """
        raw = encode_payload(self.payload)
        if layout.has_client_id:
            return struct.pack(layout.format_str, int(self.status), self.client_id, raw)
        return struct.pack(layout.format_str, int(self.status), raw)
