import asyncio
import os
from dataclasses import replace

import pytest

from config.settings import ServerConfig
from discovery.finder import list_mailboxes, mailbox_path
from protocol.constants import SHUTDOWN_MARKER
from protocol.mailbox import MailboxFile
from protocol.messages import ExchangeRecord, MULTI_CLIENT_LAYOUT, SIMPLE_LAYOUT
from protocol.status import MailboxStatus
from server.handlers import (
    DEFAULT_FAULT_BODIES,
    FaultMode,
    PingHandler,
    SequencedTextHandler,
    parse_sequenced_request,
)
from server.server import MailboxServer
from server.session import ServerSession
from utils.exceptions import MailboxIOError, ProtocolViolationError

from conftest import read_record, with_server, write_record


async def wait_for_status(path, layout, status, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        record = read_record(path, layout)
        if record.status == status:
            return record
        await asyncio.sleep(0.01)
    raise AssertionError(f"mailbox never reached {status!r}")


# -------------------- session --------------------

def test_new_clients_get_increasing_ids():
    session = ServerSession()
    ids = [session.register_client(0) for _ in range(4)]
    assert ids == [(1, True), (2, True), (3, True), (4, True)]


def test_known_client_is_not_new():
    session = ServerSession()
    client_id, _ = session.register_client(0)
    assert session.register_client(client_id) == (client_id, False)
    assert session.client_count == 1


def test_stale_id_is_registered_and_not_reissued():
    session = ServerSession()
    assert session.register_client(7) == (7, True)
    assert session.register_client(0) == (8, True)
    assert session.known_clients == {7, 8}


# -------------------- handlers --------------------

@pytest.mark.parametrize("payload, valid", [
    ("ping", True),
    ("PING", True),
    ("  Ping\n", True),
    ("PONG", False),
    ("ping ping", False),
    ("", False),
])
def test_ping_validation(payload, valid):
    assert PingHandler().validate(payload) is valid


def test_ping_dispatch_assigns_id():
    session = ServerSession(instance_number=4)
    reply = PingHandler().dispatch(ExchangeRecord(MailboxStatus.REQUEST, 0, "ping"), session)
    assert reply.client_id == 1
    assert reply.payload == "pong from server #4 to client #1"


def test_reject_keeps_client_id():
    reply = PingHandler().reject(ExchangeRecord(MailboxStatus.REQUEST, 5, "PONG"))
    assert reply.client_id == 5
    assert reply.payload == "ERROR: Only 'ping' is accepted"


@pytest.mark.parametrize("payload, expected", [
    ("[1] hello", (1, "hello")),
    ("[12]   two words  ", (12, "two words")),
    ("[3]x", (3, "x")),
])
def test_parse_sequenced_request(payload, expected):
    assert parse_sequenced_request(payload) == expected


@pytest.mark.parametrize("payload", ["hello", "[] hi", "[a] hi", "[4]", "[4]   ", " [1] hi"])
def test_malformed_sequenced_request(payload):
    with pytest.raises(ProtocolViolationError):
        parse_sequenced_request(payload)
    assert SequencedTextHandler().validate(payload) is False


def test_reserved_bodies_only_with_faults_enabled():
    session = ServerSession()
    request = ExchangeRecord(MailboxStatus.REQUEST, 0, "[2] crash")

    plain = SequencedTextHandler().dispatch(request, session)
    assert plain.payload == "[2] OK: crash"

    faulty = SequencedTextHandler(fault_bodies=DEFAULT_FAULT_BODIES, fault_delay=1.5)
    assert faulty.dispatch(request, session).payload is None
    assert faulty.dispatch(
        ExchangeRecord(MailboxStatus.REQUEST, 0, "[3] invalid"), session
    ).payload == ""
    delayed = faulty.dispatch(ExchangeRecord(MailboxStatus.REQUEST, 0, "[4] timeout"), session)
    assert delayed.delay == 1.5
    assert delayed.payload == "[4] OK: timeout"
    assert DEFAULT_FAULT_BODIES["crash"] is FaultMode.NO_RESPONSE


# -------------------- server loop --------------------

def test_server_numbers_itself_after_existing_mailboxes(tmp_path, multi_protocol):
    mailbox_path(tmp_path, 2).touch()
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)
    assert server.session.instance_number == 3
    assert server.path == mailbox_path(tmp_path, 3)


def test_server_answers_ping(tmp_path, multi_protocol):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)
    server.start()

    async def body():
        write_record(server.path, MULTI_CLIENT_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 0, "ping"))
        return await wait_for_status(server.path, MULTI_CLIENT_LAYOUT, MailboxStatus.RESPONSE)

    response = asyncio.run(with_server(server, body))
    server.stop()

    assert response == ExchangeRecord(MailboxStatus.RESPONSE, 1, "pong from server #1 to client #1")
    assert server.session.processed == 1


def test_invalid_request_is_counted_as_error(tmp_path, multi_protocol):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)
    server.start()

    async def body():
        write_record(server.path, MULTI_CLIENT_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 3, "PONG"))
        return await wait_for_status(server.path, MULTI_CLIENT_LAYOUT, MailboxStatus.RESPONSE)

    response = asyncio.run(with_server(server, body))
    server.stop()

    assert response == ExchangeRecord(MailboxStatus.RESPONSE, 3, "ERROR: Only 'ping' is accepted")
    assert server.session.processed == 0
    assert server.session.errors == 1
    assert server.session.known_clients == set()


def test_server_recovers_from_partial_record(tmp_path, multi_protocol):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)
    server.start()

    async def body():
        os.truncate(server.path, 10)
        await asyncio.sleep(0.1)
        write_record(server.path, MULTI_CLIENT_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 0, "ping"))
        return await wait_for_status(server.path, MULTI_CLIENT_LAYOUT, MailboxStatus.RESPONSE)

    response = asyncio.run(with_server(server, body))
    server.stop()
    assert response.client_id == 1


def test_server_survives_failed_response_write(tmp_path, multi_protocol, monkeypatch):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)
    server.start()

    original = MailboxFile.write
    failures = []

    def flaky_write(self, record):
        if record.status == MailboxStatus.RESPONSE and not failures:
            failures.append(record)
            raise MailboxIOError("disk full")
        original(self, record)

    monkeypatch.setattr(MailboxFile, "write", flaky_write)

    async def body():
        write_record(server.path, MULTI_CLIENT_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 0, "ping"))
        return await wait_for_status(server.path, MULTI_CLIENT_LAYOUT, MailboxStatus.RESPONSE)

    response = asyncio.run(with_server(server, body))
    server.stop()

    assert len(failures) == 1
    assert response.payload.startswith("pong from server #1")


def test_multi_server_removes_mailbox_on_stop(tmp_path, multi_protocol):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)
    server.start()
    assert server.path.exists()
    server.stop()
    assert not server.path.exists()


def test_simple_server_leaves_shutdown_marker(tmp_path, simple_protocol):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), simple_protocol)
    server.start()
    server.stop()

    record = read_record(server.path, SIMPLE_LAYOUT)
    assert record == ExchangeRecord(MailboxStatus.FREE, 0, SHUTDOWN_MARKER)


def test_restarted_server_clears_shutdown_marker(tmp_path, simple_protocol):
    config = ServerConfig(work_dir=str(tmp_path))
    first = MailboxServer.from_config(config, simple_protocol)
    first.start()
    first.stop()

    second = MailboxServer.from_config(config, simple_protocol)
    second.start()
    assert read_record(second.path, SIMPLE_LAYOUT) == ExchangeRecord.empty()
    second.stop()


def test_serve_returns_once_shutdown_is_set(tmp_path, multi_protocol):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)

    async def scenario():
        shutdown = asyncio.Event()
        task = asyncio.create_task(server.run(shutdown))
        await asyncio.sleep(0.05)
        shutdown.set()
        await asyncio.wait_for(task, timeout=1.0)

    asyncio.run(scenario())
    assert not server.path.exists()


def test_failed_initialize_leaves_no_mailbox_behind(tmp_path, multi_protocol, monkeypatch):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), multi_protocol)

    def failing_write(self, record):
        raise MailboxIOError("disk full")

    monkeypatch.setattr(MailboxFile, "write", failing_write)

    with pytest.raises(MailboxIOError):
        asyncio.run(server.run(asyncio.Event()))
    assert not server.path.exists()
    assert list_mailboxes(tmp_path) == []


def test_failed_initialize_keeps_reused_mailbox(tmp_path, simple_protocol, monkeypatch):
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path)), simple_protocol)
    server.path.touch()

    def failing_write(self, record):
        raise MailboxIOError("disk full")

    monkeypatch.setattr(MailboxFile, "write", failing_write)

    with pytest.raises(MailboxIOError):
        server.start()
    assert server.path.exists()


# -------------------- delayed responses --------------------

def test_delayed_response_is_dropped_when_client_gave_up(tmp_path, simple_protocol):
    protocol = replace(simple_protocol, fault_delay=0.2)
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path), debug_faults=True), protocol)
    server.start()
    withdrawn = ExchangeRecord(MailboxStatus.FREE, 0, "")

    async def body():
        write_record(server.path, SIMPLE_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 0, "[1] timeout"))
        await asyncio.sleep(0.05)
        write_record(server.path, SIMPLE_LAYOUT, withdrawn)
        await asyncio.sleep(0.3)
        after_delay = read_record(server.path, SIMPLE_LAYOUT)

        write_record(server.path, SIMPLE_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 0, "[2] hello"))
        response = await wait_for_status(server.path, SIMPLE_LAYOUT, MailboxStatus.RESPONSE)
        return after_delay, response

    after_delay, response = asyncio.run(with_server(server, body))
    server.stop()

    assert after_delay == withdrawn
    assert response.payload == "[2] OK: hello"
    assert server.session.processed == 1


def test_delayed_response_is_written_while_request_pending(tmp_path, simple_protocol):
    protocol = replace(simple_protocol, fault_delay=0.1)
    server = MailboxServer.from_config(ServerConfig(work_dir=str(tmp_path), debug_faults=True), protocol)
    server.start()

    async def body():
        write_record(server.path, SIMPLE_LAYOUT, ExchangeRecord(MailboxStatus.REQUEST, 0, "[1] timeout"))
        return await wait_for_status(server.path, SIMPLE_LAYOUT, MailboxStatus.RESPONSE)

    response = asyncio.run(with_server(server, body))
    server.stop()

    assert response.payload == "[1] OK: timeout"
    assert server.session.processed == 1
