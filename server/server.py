"""Server side of the mailbox rendezvous."""

from pathlib import Path
from typing import Optional
import asyncio

from config.settings import ServerConfig, ProtocolConfig
from discovery.finder import mailbox_path, next_instance_number
from protocol.constants import SHUTDOWN_MARKER, UNASSIGNED_CLIENT_ID
from protocol.mailbox import MailboxFile
from protocol.messages import ExchangeRecord
from protocol.status import MailboxStatus
from server.handlers import (
    DEFAULT_FAULT_BODIES,
    PingHandler,
    Reply,
    RequestHandler,
    SequencedTextHandler,
)
from server.session import ServerSession
from utils.exceptions import (
    MailboxIOError,
    ProtocolViolationError,
    RecordIntegrityError,
)
from utils.logging import get_logger

logger = get_logger(__name__)


class MailboxServer:
    """
    Server that answers requests written into its mailbox.

    The server polls the record until a client sets it to REQUEST,
    validates and dispatches the payload through its handler and writes
    the RESPONSE back. I/O failures never stop the loop; only the
    shutdown event does.
    """

    def __init__(
        self,
        mailbox: MailboxFile,
        handler: RequestHandler,
        protocol_config: ProtocolConfig,
        session: Optional[ServerSession] = None,
        remove_on_exit: bool = False,
    ):
        """
        Args:
            mailbox: Mailbox owned by this server (opened by ``start``)
            handler: Validation and dispatch strategy
            protocol_config: Timing of the protocol variant
            session: Counters and client registry
            remove_on_exit: Delete the mailbox file on shutdown
        """
        self._mailbox = mailbox
        self._handler = handler
        self._protocol_config = protocol_config
        self._session = session or ServerSession()
        self._remove_on_exit = remove_on_exit

    @classmethod
    def from_config(cls, config: ServerConfig, protocol_config: ProtocolConfig) -> 'MailboxServer':
        """
        Build a server for the configured variant.

        The multi-instance variant numbers itself after the mailboxes
        already present in the work directory; the simple variant uses a
        fixed file name.
        """
        if protocol_config.uses_discovery:
            instance_number = next_instance_number(config.work_dir)
            path = mailbox_path(config.work_dir, instance_number)
            handler: RequestHandler = PingHandler()
        else:
            instance_number = 1
            path = Path(config.work_dir) / config.mailbox_name
            handler = SequencedTextHandler(
                fault_bodies=DEFAULT_FAULT_BODIES if config.debug_faults else None,
                fault_delay=protocol_config.fault_delay,
            )

        return cls(
            mailbox=MailboxFile(path, protocol_config.layout),
            handler=handler,
            protocol_config=protocol_config,
            session=ServerSession(instance_number=instance_number),
            remove_on_exit=protocol_config.uses_discovery,
        )

    @property
    def path(self) -> Path:
        return self._mailbox.path

    @property
    def session(self) -> ServerSession:
        return self._session

    def start(self) -> None:
        """
        Open the mailbox, creating it exclusively when possible.

        Raises:
            MailboxIOError: If the mailbox cannot be opened or initialized
        """
        logger.info(
            f"Starting server #{self._session.instance_number} "
            f"with file: {self._mailbox.path}"
        )
        created = self._mailbox.open(exclusive=True)
        if not created:
            logger.info("Using existing IPC file")
        try:
            if not self._mailbox.initialize():
                self._clear_shutdown_marker()
        except (MailboxIOError, RecordIntegrityError):
            self._mailbox.close()
            # A half-created file would look like an idle server to discovery
            if created:
                self._mailbox.remove()
            raise
        logger.info("Server started")

    def _clear_shutdown_marker(self) -> None:
        """Reset a mailbox left behind by a previous server run."""
        try:
            record = self._mailbox.read()
        except RecordIntegrityError as e:
            logger.warning(f"Existing record unreadable, resetting: {e}")
        else:
            if record.payload != SHUTDOWN_MARKER:
                return
        self._mailbox.write(ExchangeRecord.empty())

    async def serve(self, shutdown_event: asyncio.Event) -> None:
        """
        Answer requests until ``shutdown_event`` is set.

        Args:
            shutdown_event: Cooperative stop flag, checked between polls
        """
        while not shutdown_event.is_set():
            record = await self._wait_for_request(shutdown_event)
            if record is None:
                break
            await self._handle_request(record, shutdown_event)

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Start, serve until shutdown, then stop. Nothing is left behind if start fails."""
        self.start()
        try:
            await self.serve(shutdown_event)
        finally:
            self.stop()

    def stop(self) -> None:
        """
        Leave the shutdown marker in the mailbox and release it.

        Waiting clients read status FREE with the marker payload. The
        multi-instance variant then removes the file.
        """
        logger.info("Shutting down...")

        if self._mailbox.is_open:
            marker = ExchangeRecord(
                status=MailboxStatus.FREE,
                client_id=UNASSIGNED_CLIENT_ID,
                payload=SHUTDOWN_MARKER,
            )
            try:
                self._mailbox.write(marker)
            except MailboxIOError as e:
                logger.error(f"Failed to write shutdown marker: {e}")
            self._mailbox.close()

        if self._remove_on_exit and self._mailbox.remove():
            logger.info(f"Removed IPC file: {self._mailbox.path}")

        logger.info(f"Server #{self._session.instance_number} stopped")
        logger.info(
            f"Requests processed: {self._session.processed}, "
            f"rejected: {self._session.errors}, "
            f"unique clients served: {self._session.client_count}"
        )

    async def _wait_for_request(
        self, shutdown_event: asyncio.Event
    ) -> Optional[ExchangeRecord]:
        """Poll until a request arrives; None if shutdown was requested."""
        while not shutdown_event.is_set():
            try:
                record = self._mailbox.read()
            except (MailboxIOError, RecordIntegrityError) as e:
                logger.warning(f"Read failed, retrying: {e}")
                await asyncio.sleep(self._protocol_config.error_backoff)
                continue

            if record.status == MailboxStatus.REQUEST:
                return record

            await asyncio.sleep(self._protocol_config.poll_interval)
        return None

    async def _handle_request(
        self, record: ExchangeRecord, shutdown_event: asyncio.Event
    ) -> None:
        if not self._handler.validate(record.payload):
            logger.warning(
                f"Invalid message from client #{record.client_id}: "
                f"\"{record.payload}\""
            )
            self._session.errors += 1
            await self._respond(self._handler.reject(record))
            return

        try:
            reply = self._handler.dispatch(record, self._session)
        except ProtocolViolationError as e:
            logger.warning(f"Rejected request from client #{record.client_id}: {e}")
            self._session.errors += 1
            await self._respond(self._handler.reject(record))
            return

        if reply.payload is None:
            await self._await_release(record, shutdown_event)
            return

        if reply.delay > 0:
            await asyncio.sleep(reply.delay)
            if not self._still_pending(record):
                logger.warning(
                    f"Request from client #{record.client_id} was abandoned, "
                    f"dropping response"
                )
                return

        if await self._respond(reply):
            self._session.processed += 1
            logger.info(f"Sent response to client #{reply.client_id}")

    async def _respond(self, reply: Reply) -> bool:
        """Write the response; failures are logged and the client will time out."""
        response = ExchangeRecord(
            status=MailboxStatus.RESPONSE,
            client_id=reply.client_id,
            payload=reply.payload or "",
        )
        try:
            self._mailbox.write(response)
        except MailboxIOError as e:
            logger.error(f"Failed to write response to client #{reply.client_id}: {e}")
            return False

        if self._protocol_config.courtesy_delay > 0:
            await asyncio.sleep(self._protocol_config.courtesy_delay)
        return True

    def _still_pending(self, request: ExchangeRecord) -> bool:
        try:
            current = self._mailbox.read()
        except (MailboxIOError, RecordIntegrityError) as e:
            logger.warning(f"Read failed while checking request: {e}")
            return False
        return current == request

    async def _await_release(
        self, request: ExchangeRecord, shutdown_event: asyncio.Event
    ) -> None:
        """Wait until the unanswered request is withdrawn by its client."""
        while not shutdown_event.is_set():
            try:
                record = self._mailbox.read()
            except (MailboxIOError, RecordIntegrityError) as e:
                logger.warning(f"Read failed, retrying: {e}")
                await asyncio.sleep(self._protocol_config.error_backoff)
                continue

            if record != request:
                return
            await asyncio.sleep(self._protocol_config.poll_interval)
