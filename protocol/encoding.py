"""Payload encoding and decoding functions."""

from protocol.constants import MAX_PAYLOAD_BYTES, PAYLOAD_SIZE


def encode_payload(text: str) -> bytes:
    """
    Encode text into a NUL-padded payload buffer.

    Text longer than the usable capacity is truncated on a character
    boundary so the buffer always keeps its terminator.
    """
    raw = text.encode('utf-8')
    if len(raw) > MAX_PAYLOAD_BYTES:
        raw = raw[:MAX_PAYLOAD_BYTES].decode('utf-8', errors='ignore').encode('utf-8')
    return raw.ljust(PAYLOAD_SIZE, b'\0')


def decode_payload(raw: bytes) -> str:
    """
    Decode a payload buffer back to text.
    Everything from the first NUL onwards is ignored.
    """
    end = raw.find(b'\0')
    if end != -1:
        raw = raw[:end]
    return raw.decode('utf-8', errors='replace')
