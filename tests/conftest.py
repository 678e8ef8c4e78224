import asyncio
from dataclasses import replace

import pytest

from config.settings import ClientConfig, ProtocolConfig, ServerConfig
from protocol.mailbox import MailboxFile
from protocol.messages import ExchangeRecord


def fast(protocol: ProtocolConfig) -> ProtocolConfig:
    """Same variant, timings shrunk so tests finish quickly."""
    return replace(
        protocol,
        poll_interval=0.01,
        error_backoff=0.02,
        courtesy_delay=0.0,
        busy_attempts=5,
        response_timeout=0.3,
        probe_timeout=0.2,
        probe_interval=0.01,
        fault_delay=0.05,
    )


def read_record(path, layout) -> ExchangeRecord:
    with MailboxFile(path, layout) as mailbox:
        return mailbox.read()


def write_record(path, layout, record: ExchangeRecord) -> None:
    with MailboxFile(path, layout) as mailbox:
        mailbox.write(record)


async def with_server(server, body):
    """Run ``body()`` while ``server`` serves in the same event loop."""
    shutdown = asyncio.Event()
    task = asyncio.create_task(server.serve(shutdown))
    try:
        return await body()
    finally:
        shutdown.set()
        await task


@pytest.fixture
def multi_protocol():
    return fast(ProtocolConfig.for_variant("multi"))


@pytest.fixture
def simple_protocol():
    return fast(ProtocolConfig.for_variant("simple"))


@pytest.fixture
def server_config(tmp_path):
    return ServerConfig(work_dir=str(tmp_path))


@pytest.fixture
def client_config(tmp_path):
    return ClientConfig(work_dir=str(tmp_path))


@pytest.fixture
def recorded_writes(monkeypatch):
    """Every record written through any MailboxFile, in order."""
    writes = []
    original = MailboxFile.write

    def recording_write(self, record):
        original(self, record)
        writes.append(replace(record))

    monkeypatch.setattr(MailboxFile, "write", recording_write)
    return writes
