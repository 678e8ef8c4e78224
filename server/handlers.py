"""Request validation and dispatch strategies for the server loop."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple
import re

from protocol.constants import PING_COMMAND
from protocol.messages import ExchangeRecord
from server.session import ServerSession
from utils.exceptions import ProtocolViolationError
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Reply:
    """
    Outcome of dispatching one request.

    ``payload`` None means the server deliberately does not answer.
    ``delay`` is a pause in seconds before the response is written.
    """

    payload: Optional[str]
    client_id: int
    delay: float = 0.0


class RequestHandler:
    """Base class for the protocol a server speaks over its mailbox."""

    error_payload: str = "ERROR: Invalid request"

    def validate(self, payload: str) -> bool:
        raise NotImplementedError

    def dispatch(self, record: ExchangeRecord, session: ServerSession) -> Reply:
        raise NotImplementedError

    def reject(self, record: ExchangeRecord) -> Reply:
        """Reply to an invalid request, keeping the caller's client id."""
        return Reply(payload=self.error_payload, client_id=record.client_id)


class PingHandler(RequestHandler):
    """Multi-client protocol: only ``ping`` is accepted, clients get ids."""

    error_payload = "ERROR: Only 'ping' is accepted"

    def validate(self, payload: str) -> bool:
        return payload.strip().lower() == PING_COMMAND

    def dispatch(self, record: ExchangeRecord, session: ServerSession) -> Reply:
        client_id, is_new = session.register_client(record.client_id)
        if is_new:
            logger.info(
                f"Client #{client_id} connected. "
                f"Total connected clients: {session.client_count}"
            )

        logger.info(f"Received 'ping' from client #{client_id}")
        response = (
            f"pong from server #{session.instance_number} "
            f"to client #{client_id}"
        )
        return Reply(payload=response, client_id=client_id)


class FaultMode(Enum):
    """Simulated misbehaviour of a debug server."""

    DELAY = "delay"                 # Respond only after fault_delay
    EMPTY = "empty"                 # Respond with an empty payload
    NO_RESPONSE = "no_response"     # Never respond, client times out


DEFAULT_FAULT_BODIES: Dict[str, FaultMode] = {
    "timeout": FaultMode.DELAY,
    "invalid": FaultMode.EMPTY,
    "crash": FaultMode.NO_RESPONSE,
}

_SEQUENCED_REQUEST = re.compile(r'^\[(\d+)\]\s*(.*?)\s*$', re.DOTALL)


def parse_sequenced_request(payload: str) -> Tuple[int, str]:
    """
    Split a ``[<seq>] <text>`` request into sequence number and text.

    Raises:
        ProtocolViolationError: If the payload does not follow the format
                                or the text is empty
    """
    match = _SEQUENCED_REQUEST.match(payload)
    if not match:
        raise ProtocolViolationError(f"Malformed request: {payload!r}")
    body = match.group(2)
    if not body:
        raise ProtocolViolationError(f"Empty request text: {payload!r}")
    return int(match.group(1)), body


class SequencedTextHandler(RequestHandler):
    """
    Single-mailbox protocol: free text requests numbered by the client.

    When fault simulation is enabled a few reserved request texts make the
    server misbehave on purpose, see ``DEFAULT_FAULT_BODIES``.
    """

    error_payload = "ERROR: Invalid request format"

    def __init__(
        self,
        fault_bodies: Optional[Dict[str, FaultMode]] = None,
        fault_delay: float = 3.0,
    ):
        """
        Args:
            fault_bodies: Reserved request texts mapped to the fault they
                          trigger; None disables fault simulation
            fault_delay: Pause before answering a DELAY request, in seconds
        """
        self._fault_bodies = fault_bodies or {}
        self._fault_delay = fault_delay

    def validate(self, payload: str) -> bool:
        try:
            parse_sequenced_request(payload)
        except ProtocolViolationError:
            return False
        return True

    def dispatch(self, record: ExchangeRecord, session: ServerSession) -> Reply:
        sequence, body = parse_sequenced_request(record.payload)
        logger.info(f"Received request [{sequence}]: {body}")

        fault = self._fault_bodies.get(body.lower())
        if fault is FaultMode.NO_RESPONSE:
            logger.warning(f"Simulating crash for request [{sequence}]")
            return Reply(payload=None, client_id=record.client_id)
        if fault is FaultMode.EMPTY:
            logger.warning(f"Simulating empty response for request [{sequence}]")
            return Reply(payload="", client_id=record.client_id)
        if fault is FaultMode.DELAY:
            logger.warning(
                f"Simulating slow response for request [{sequence}] "
                f"({self._fault_delay:.1f}s)"
            )
            return Reply(
                payload=f"[{sequence}] OK: {body}",
                client_id=record.client_id,
                delay=self._fault_delay,
            )

        return Reply(payload=f"[{sequence}] OK: {body}", client_id=record.client_id)
