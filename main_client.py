#!/usr/bin/env python3
"""
Main entry point for the interactive client application.

The client connects to a server mailbox on startup and reads commands
from stdin:

    ping         send a request (multi-instance variant)
    <any text>   send a numbered request (simple variant)
    status       show the connection and probe the server
    connect      (re)discover and bind to a server
    disconnect   release the current server
    exit         quit
"""

import asyncio
import signal
import sys
import os
import threading
from typing import Optional

from config.settings import Config, ProtocolConfig
from client.client import MailboxClient
from protocol.constants import PING_COMMAND
from utils.logging import setup_logging, get_logger
from utils.exceptions import (
    BusyTimeoutError,
    ConfigurationError,
    DiscoveryError,
    ExchangeCancelledError,
    MailboxError,
    MailboxNotBoundError,
    ServerGoneError,
)

logger = get_logger(__name__)


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, queue: asyncio.Queue) -> None:
    """Feed stdin lines into ``queue`` from a daemon thread; None marks EOF."""

    def reader() -> None:
        for line in sys.stdin:
            loop.call_soon_threadsafe(queue.put_nowait, line.rstrip('\n'))
        loop.call_soon_threadsafe(queue.put_nowait, None)

    threading.Thread(target=reader, name="stdin-reader", daemon=True).start()


class ClientApplication:
    """Main application class for the interactive client."""

    def __init__(self):
        """Initialize application."""
        self.config = Config()
        self.client: MailboxClient = None
        self.protocol_config: Optional[ProtocolConfig] = None
        self.shutdown_event = asyncio.Event()
        self._sequence = 0

    async def run(self) -> int:
        """
        Run the client application.

        Returns:
            Process exit code
        """
        try:
            logger.info("Loading configuration...")
            client_config = self.config.load_client_config()
            self.protocol_config = self.config.load_protocol_config()
        except (ConfigurationError, ValueError) as e:
            logger.error(f"Configuration error: {e}")
            return 1

        self.client = MailboxClient(client_config, self.protocol_config, self.shutdown_event)
        self._connect()

        queue: asyncio.Queue = asyncio.Queue()
        _start_stdin_reader(asyncio.get_running_loop(), queue)

        try:
            while not self.shutdown_event.is_set():
                print("\nEnter command: ", end="", flush=True)
                line = await self._next_line(queue)
                if line is None:
                    break
                await self._handle_command(line)
        finally:
            self.client.unbind()

        print("Client stopped.")
        return 0

    async def _next_line(self, queue: asyncio.Queue) -> Optional[str]:
        """Wait for an input line; None on EOF or shutdown."""
        get_task = asyncio.ensure_future(queue.get())
        stop_task = asyncio.ensure_future(self.shutdown_event.wait())
        done, pending = await asyncio.wait(
            {get_task, stop_task}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        if get_task in done:
            return get_task.result()
        return None

    async def _handle_command(self, line: str) -> None:
        command = line.strip().lower()

        if not command:
            print("Enter not empty command")
        elif command == "exit":
            self.shutdown_event.set()
        elif command == "status":
            await self._show_status()
        elif command == "connect":
            self._connect()
        elif command == "disconnect":
            if self.client.is_bound:
                self.client.unbind()
                print("Disconnected.")
        elif self.protocol_config.uses_discovery:
            if command != PING_COMMAND:
                print("Error: Only 'ping' is accepted.")
                return
            await self._send(line)
        else:
            self._sequence += 1
            await self._send(f"[{self._sequence}] {line.strip()}")

    async def _send(self, payload: str) -> None:
        try:
            response = await self.client.send(payload)
        except MailboxNotBoundError:
            print("Error: Not connected to server.")
            return
        except BusyTimeoutError as e:
            print(f"{e}.")
            return
        except ServerGoneError:
            print("Server has shut down. Use 'connect' to find another one.")
            return
        except ExchangeCancelledError:
            return
        except MailboxError as e:
            logger.warning(f"Exchange failed: {e}")
            print("Failed to send request.")
            return

        if response:
            print(f"Response: {response}")

    def _connect(self) -> None:
        try:
            path = self.client.connect()
        except DiscoveryError:
            print("No servers available.")
            return
        except MailboxError as e:
            logger.warning(f"Connect failed: {e}")
            print("Failed to connect.")
            return
        print(f"Connected to: {path}")

    async def _show_status(self) -> None:
        status = await self.client.status()
        if status.path is None:
            print("Not connected to any server.")
            return
        print(f"Connected to: {status.path}")
        print(f"Client ID: {status.client_id or 'not assigned'}")
        if not status.connected:
            print("NOT CONNECTED")

    def handle_shutdown(self, signum, frame):
        """
        Handle shutdown signals.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        logger.info(f"Received signal {signum}")
        self.shutdown_event.set()


async def main() -> int:
    """Main entry point."""
    log_level = os.getenv('LOG_LEVEL', 'WARNING')
    setup_logging(log_level)

    app = ClientApplication()

    # Setup signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda s=sig: app.handle_shutdown(s, None)
        )

    return await app.run()


def cli() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        print("\nClient stopped.")
        sys.exit(0)


if __name__ == '__main__':
    cli()
