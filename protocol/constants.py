"""Protocol constants for the mailbox record.

These are protocol-level constants that should not be changed
without updating both client and server implementations.
"""

import struct

# Capacity of the payload buffer in bytes, including the NUL terminator
PAYLOAD_SIZE = 256

# Usable payload bytes
MAX_PAYLOAD_BYTES = PAYLOAD_SIZE - 1

# Simple layout: little-endian int (status) + payload buffer
SIMPLE_RECORD_FORMAT = f'<i{PAYLOAD_SIZE}s'

# Multi-client layout: little-endian int (status) + int (client_id) + payload buffer
MULTI_CLIENT_RECORD_FORMAT = f'<ii{PAYLOAD_SIZE}s'

SIMPLE_RECORD_SIZE = struct.calcsize(SIMPLE_RECORD_FORMAT)
MULTI_CLIENT_RECORD_SIZE = struct.calcsize(MULTI_CLIENT_RECORD_FORMAT)

# Client id meaning "not assigned yet"
UNASSIGNED_CLIENT_ID = 0

# Discovery naming convention: <prefix><instance number><extension>
SERVER_FILE_PREFIX = 'ipc_server_'
SERVER_FILE_EXTENSION = '.bin'

# Default file name of the single-mailbox variant
DEFAULT_MAILBOX_NAME = 'ipc_mailbox.bin'

# Payload written with status FREE when a server exits
SHUTDOWN_MARKER = 'SERVER_SHUTDOWN'

# Request literal of the ping protocol and the synthetic liveness probe
PING_COMMAND = 'ping'

# Synthetic liveness request of the simple variant, sequence number 0
SEQUENCED_PING_COMMAND = '[0] ping'
