#!/usr/bin/env python3
"""
Main entry point for the server application.

This script creates the server mailbox and answers client requests
written into it until SIGINT or SIGTERM is received.
"""

import asyncio
import signal
import sys
import os

from config.settings import Config
from server.server import MailboxServer
from utils.logging import setup_logging, get_logger
from utils.exceptions import ConfigurationError, MailboxIOError

logger = get_logger(__name__)


class ServerApplication:
    """Main application class for server."""

    def __init__(self):
        """Initialize application."""
        self.config = Config()
        self.server: MailboxServer = None
        self.shutdown_event = asyncio.Event()

    async def run(self) -> int:
        """
        Run the server application.

        Loads configuration, opens the mailbox and serves requests until
        shutdown is requested.

        Returns:
            Process exit code
        """
        try:
            logger.info("Loading configuration...")
            server_config = self.config.load_server_config()
            protocol_config = self.config.load_protocol_config()

            logger.info(
                f"Configuration loaded: "
                f"variant={protocol_config.variant}, "
                f"work_dir={server_config.work_dir}"
            )

            self.server = MailboxServer.from_config(server_config, protocol_config)

            logger.info("Press Ctrl+C to stop")
            await self.server.run(self.shutdown_event)

            logger.info("Server application stopped successfully")
            return 0

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            logger.error(
                "Please check your environment variables. "
                "See .env.example for available configuration."
            )
            return 1
        except ValueError as e:
            logger.error(f"Configuration validation error: {e}")
            return 1
        except MailboxIOError as e:
            logger.error(f"Failed to open IPC file: {e}")
            return 1
        except Exception as e:
            logger.error(f"Unexpected error: {e}", exc_info=True)
            return 1

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
    log_level = os.getenv('LOG_LEVEL', 'INFO')
    setup_logging(log_level)

    logger.info("Starting server application...")

    app = ServerApplication()

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
        print("\nShutdown complete")
        sys.exit(0)


if __name__ == '__main__':
    cli()
