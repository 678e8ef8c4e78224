"""Configuration management for the mailbox system."""

from dataclasses import dataclass
from typing import Optional
import os
from pathlib import Path

from dotenv import load_dotenv

from protocol.constants import DEFAULT_MAILBOX_NAME, PING_COMMAND, SEQUENCED_PING_COMMAND
from protocol.messages import RecordLayout, SIMPLE_LAYOUT, MULTI_CLIENT_LAYOUT


# Load .env file from project root
# This is called at module import time to ensure env vars are available
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path, override=False)

VARIANT_SIMPLE = "simple"
VARIANT_MULTI = "multi"
VARIANTS = (VARIANT_SIMPLE, VARIANT_MULTI)


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ProtocolConfig:
    """
    Layout and timing of one protocol variant.

    All durations are in seconds. Use ``for_variant`` to get the
    presets both roles of a variant agree on.
    """

    variant: str = VARIANT_MULTI
    layout: RecordLayout = MULTI_CLIENT_LAYOUT
    poll_interval: float = 0.1
    error_backoff: float = 1.0
    courtesy_delay: float = 0.05
    busy_attempts: int = 5
    response_timeout: float = 5.0
    probe_timeout: float = 0.5
    probe_interval: float = 0.05
    probe_payload: str = PING_COMMAND
    fault_delay: float = 3.0

    @classmethod
    def for_variant(cls, variant: str) -> 'ProtocolConfig':
        """
        Build the preset for a protocol variant.

        Args:
            variant: "multi" (discovered multi-client mailboxes) or
                     "simple" (one fixed mailbox)

        Raises:
            ValueError: If the variant is unknown
        """
        if variant == VARIANT_MULTI:
            return cls()
        if variant == VARIANT_SIMPLE:
            return cls(
                variant=VARIANT_SIMPLE,
                layout=SIMPLE_LAYOUT,
                busy_attempts=50,
                response_timeout=10.0,
                probe_payload=SEQUENCED_PING_COMMAND,
            )
        raise ValueError(f"Unknown mailbox variant: {variant}")

    @property
    def uses_discovery(self) -> bool:
        return self.variant == VARIANT_MULTI

    def validate(self) -> None:
        """Validate protocol configuration parameters."""
        if self.variant not in VARIANTS:
            raise ValueError(f"Mailbox variant must be one of {VARIANTS}")
        for name in ("poll_interval", "error_backoff", "probe_interval"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.busy_attempts < 1:
            raise ValueError("busy_attempts must be at least 1")
        if self.response_timeout <= 0 or self.probe_timeout <= 0:
            raise ValueError("Timeouts must be positive")
        if self.courtesy_delay < 0 or self.fault_delay < 0:
            raise ValueError("Delays must not be negative")
        if not self.probe_payload:
            raise ValueError("probe_payload must not be empty")


@dataclass
class ServerConfig:
    """Configuration for server component."""

    work_dir: str = "."
    mailbox_name: str = DEFAULT_MAILBOX_NAME
    debug_faults: bool = False

    def validate(self) -> None:
        """Validate server configuration parameters."""
        if not self.work_dir:
            raise ValueError("Work directory is required")
        if not Path(self.work_dir).is_dir():
            raise ValueError(f"Work directory does not exist: {self.work_dir}")
        if not self.mailbox_name:
            raise ValueError("Mailbox name is required")


@dataclass
class ClientConfig:
    """Configuration for client component."""

    work_dir: str = "."
    mailbox_name: str = DEFAULT_MAILBOX_NAME
    verify_claim: bool = False

    def validate(self) -> None:
        """Validate client configuration parameters."""
        if not self.work_dir:
            raise ValueError("Work directory is required")
        if not self.mailbox_name:
            raise ValueError("Mailbox name is required")


class Config:
    """Main configuration loader and manager."""

    def __init__(self):
        """Initialize configuration manager."""
        self.protocol: Optional[ProtocolConfig] = None
        self.client: Optional[ClientConfig] = None
        self.server: Optional[ServerConfig] = None

    def load_protocol_config(self) -> ProtocolConfig:
        """
        Load protocol configuration.

        Environment variables:
            MAILBOX_VARIANT: "multi" or "simple" (default: multi)

        Returns:
            Validated ProtocolConfig instance

        Raises:
            ValueError: If the variant is unknown
        """
        variant = os.getenv('MAILBOX_VARIANT', VARIANT_MULTI).strip().lower()
        config = ProtocolConfig.for_variant(variant)
        config.validate()
        self.protocol = config
        return config

    def load_server_config(self) -> ServerConfig:
        """
        Load server configuration from environment variables.

        Environment variables:
            MAILBOX_DIR: Directory holding mailbox files (default: .)
            MAILBOX_NAME: Mailbox file name for the simple variant
                          (default: ipc_mailbox.bin)
            SERVER_DEBUG_FAULTS: Enable simulated faults (default: false)

        Returns:
            Validated ServerConfig instance

        Raises:
            ValueError: If configuration is invalid
        """
        config = ServerConfig(
            work_dir=os.getenv('MAILBOX_DIR', '.'),
            mailbox_name=os.getenv('MAILBOX_NAME', DEFAULT_MAILBOX_NAME),
            debug_faults=_env_flag('SERVER_DEBUG_FAULTS'),
        )
        config.validate()
        self.server = config
        return config

    def load_client_config(self) -> ClientConfig:
        """
        Load client configuration from environment variables.

        Environment variables:
            MAILBOX_DIR: Directory holding mailbox files (default: .)
            MAILBOX_NAME: Mailbox file name for the simple variant
                          (default: ipc_mailbox.bin)
            CLIENT_VERIFY_CLAIM: Re-read the mailbox after sending to detect
                                 a concurrent claim (default: false)

        Returns:
            Validated ClientConfig instance

        Raises:
            ValueError: If configuration is invalid
        """
        config = ClientConfig(
            work_dir=os.getenv('MAILBOX_DIR', '.'),
            mailbox_name=os.getenv('MAILBOX_NAME', DEFAULT_MAILBOX_NAME),
            verify_claim=_env_flag('CLIENT_VERIFY_CLAIM'),
        )
        config.validate()
        self.client = config
        return config
