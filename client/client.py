"""Client side of the mailbox rendezvous."""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
import asyncio

from config.settings import ClientConfig, ProtocolConfig
from discovery.finder import find_live_mailbox
from protocol.constants import SHUTDOWN_MARKER, UNASSIGNED_CLIENT_ID
from protocol.mailbox import MailboxFile
from protocol.messages import ExchangeRecord
from protocol.status import MailboxStatus
from utils.exceptions import (
    ExchangeCancelledError,
    MailboxError,
    MailboxNotBoundError,
    ResponseTimeoutError,
    ServerBusyError,
    ServerGoneError,
)
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ClientStatus:
    """Snapshot of the client's connection."""

    path: Optional[Path] = None
    client_id: int = UNASSIGNED_CLIENT_ID
    connected: bool = False


class MailboxClient:
    """
    Client that sends requests through a server's mailbox.

    One exchange walks the record through FREE, REQUEST, RESPONSE and
    back to FREE. The client always hands the slot back as FREE when an
    exchange completes or times out, so an abandoned request never locks
    the mailbox.
    """

    def __init__(
        self,
        config: ClientConfig,
        protocol_config: ProtocolConfig,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        """
        Args:
            config: Client configuration
            protocol_config: Layout and timing of the protocol variant
            shutdown_event: Cooperative stop flag checked between polls
        """
        self._config = config
        self._protocol_config = protocol_config
        self._shutdown_event = shutdown_event or asyncio.Event()
        self._mailbox: Optional[MailboxFile] = None
        self._client_id: int = UNASSIGNED_CLIENT_ID

    @property
    def client_id(self) -> int:
        """Id assigned by the server, 0 until the first response."""
        return self._client_id

    @property
    def path(self) -> Optional[Path]:
        return self._mailbox.path if self._mailbox else None

    @property
    def is_bound(self) -> bool:
        return self._mailbox is not None

    def bind(self, path: Union[str, Path], create: bool = False) -> None:
        """
        Attach to a mailbox file. The client id starts over at 0.

        Args:
            path: Mailbox file
            create: Create and initialize the file if it does not exist

        Raises:
            MailboxIOError: If the file cannot be opened
        """
        self.unbind()
        mailbox = MailboxFile(path, self._protocol_config.layout)
        created = mailbox.open(create=create)
        if created:
            mailbox.initialize()
        self._mailbox = mailbox
        self._client_id = UNASSIGNED_CLIENT_ID
        logger.info(f"Connected to: {mailbox.path}")

    def unbind(self) -> None:
        """Detach from the current mailbox, forgetting the client id."""
        if self._mailbox is None:
            return
        self._mailbox.close()
        logger.info(f"Disconnected from: {self._mailbox.path}")
        self._mailbox = None
        self._client_id = UNASSIGNED_CLIENT_ID

    def connect(self) -> Path:
        """
        Bind to the mailbox of the configured variant.

        The multi-instance variant binds to the newest available server
        found in the work directory. The simple variant binds to its fixed
        mailbox file, creating it if needed.

        Raises:
            DiscoveryError: If no server mailbox is available
            MailboxIOError: If the mailbox cannot be opened
        """
        if self._protocol_config.uses_discovery:
            path = find_live_mailbox(self._config.work_dir, self._protocol_config.layout)
            self.bind(path)
        else:
            path = Path(self._config.work_dir) / self._config.mailbox_name
            self.bind(path, create=True)
        return path

    async def send(self, payload: str) -> str:
        """
        Run one request/response exchange.

        Args:
            payload: Request text, passed to the server as is

        Returns:
            Response payload (may be empty)

        Raises:
            MailboxNotBoundError: If the client is not bound to a mailbox
            ServerBusyError: If the mailbox never became free
            ResponseTimeoutError: If no response arrived in time
            ServerGoneError: If the server has shut down
            ExchangeCancelledError: If shutdown was requested meanwhile
            MailboxIOError: If reading or writing the record failed
            RecordIntegrityError: If a partial record was read
        """
        mailbox = self._require_mailbox()

        await self._wait_for_free(mailbox)

        request = ExchangeRecord(
            status=MailboxStatus.REQUEST,
            client_id=self._client_id,
            payload=payload,
        )
        mailbox.write(request)
        logger.debug(f"Sent request as client #{self._client_id}: {payload!r}")

        if self._config.verify_claim:
            self._verify_claim(mailbox, request)

        try:
            response = await self._await_response(
                mailbox,
                self._protocol_config.response_timeout,
                self._protocol_config.poll_interval,
            )
        except (ResponseTimeoutError, ExchangeCancelledError):
            self._reset(mailbox)
            raise

        self._consume(response)
        self._reset(mailbox)
        return response.payload

    async def probe(self) -> bool:
        """
        Check that a server is answering on the bound mailbox.

        Sends the variant's ping payload and waits briefly for any response. The
        mailbox is handed back as FREE whatever the outcome, unless it was
        busy to begin with.
        """
        if self._mailbox is None:
            return False
        mailbox = self._mailbox

        try:
            record = mailbox.read()
            if record.status != MailboxStatus.FREE or record.payload == SHUTDOWN_MARKER:
                return False

            mailbox.write(ExchangeRecord(
                status=MailboxStatus.REQUEST,
                client_id=self._client_id,
                payload=self._protocol_config.probe_payload,
            ))
            try:
                response = await self._await_response(
                    mailbox,
                    self._protocol_config.probe_timeout,
                    self._protocol_config.probe_interval,
                )
            except ServerGoneError:
                return False
            except (ResponseTimeoutError, ExchangeCancelledError):
                self._reset(mailbox)
                return False

            self._consume(response)
            self._reset(mailbox)
            return True
        except MailboxError as e:
            logger.debug(f"Probe of {mailbox.path} failed: {e}")
            return False

    async def status(self) -> ClientStatus:
        """Report the bound mailbox, the client id and whether the server answers."""
        if self._mailbox is None:
            return ClientStatus()
        connected = await self.probe()
        return ClientStatus(
            path=self._mailbox.path,
            client_id=self._client_id,
            connected=connected,
        )

    async def _wait_for_free(self, mailbox: MailboxFile) -> None:
        for _ in range(self._protocol_config.busy_attempts):
            self._check_cancelled()
            record = mailbox.read()
            if record.status == MailboxStatus.FREE:
                if record.payload == SHUTDOWN_MARKER:
                    raise ServerGoneError(f"Server behind {mailbox.path} has shut down")
                return
            await asyncio.sleep(self._protocol_config.poll_interval)

        raise ServerBusyError("Server is busy")

    async def _await_response(
        self, mailbox: MailboxFile, timeout: float, interval: float
    ) -> ExchangeRecord:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            self._check_cancelled()
            record = mailbox.read()
            if record.status == MailboxStatus.RESPONSE:
                return record
            if record.status == MailboxStatus.FREE and record.payload == SHUTDOWN_MARKER:
                raise ServerGoneError(f"Server behind {mailbox.path} has shut down")
            if loop.time() >= deadline:
                raise ResponseTimeoutError("Timeout waiting for response")
            await asyncio.sleep(interval)

    def _verify_claim(self, mailbox: MailboxFile, request: ExchangeRecord) -> None:
        """
        Re-read right after sending to detect a concurrent claimant.

        Another client that saw FREE at the same moment may have
        overwritten the request; in that case the slot belongs to it.
        """
        current = mailbox.read()
        if current == request or current.status == MailboxStatus.RESPONSE:
            return
        raise ServerBusyError("Mailbox was claimed by another client")

    def _consume(self, response: ExchangeRecord) -> None:
        if self._client_id == UNASSIGNED_CLIENT_ID and response.client_id != UNASSIGNED_CLIENT_ID:
            self._client_id = response.client_id
            logger.info(f"Server assigned Client ID: {self._client_id}")

    def _reset(self, mailbox: MailboxFile) -> None:
        mailbox.write(ExchangeRecord(
            status=MailboxStatus.FREE,
            client_id=self._client_id,
            payload="",
        ))

    def _check_cancelled(self) -> None:
        if self._shutdown_event.is_set():
            raise ExchangeCancelledError("Client is shutting down")

    def _require_mailbox(self) -> MailboxFile:
        if self._mailbox is None:
            raise MailboxNotBoundError("Not connected to server")
        return self._mailbox
