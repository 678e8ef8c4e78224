"""Discovery of server mailboxes by file naming convention."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from protocol.constants import SERVER_FILE_EXTENSION, SERVER_FILE_PREFIX
from protocol.mailbox import MailboxFile
from protocol.messages import RecordLayout
from protocol.status import MailboxStatus
from utils.exceptions import DiscoveryError, MailboxError
from utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class MailboxCandidate:
    """A mailbox file found in the shared directory."""

    instance_number: int
    path: Path


def parse_instance_number(
    name: str,
    prefix: str = SERVER_FILE_PREFIX,
    extension: str = SERVER_FILE_EXTENSION,
) -> Optional[int]:
    """
    Extract the instance number from a mailbox file name.

    Returns:
        The decimal number between prefix and extension, or None for
        names that do not follow the convention
    """
    if not name.startswith(prefix) or not name.endswith(extension):
        return None
    suffix = name[len(prefix):len(name) - len(extension)]
    if not suffix.isdigit() or not suffix.isascii():
        return None
    return int(suffix)


def mailbox_path(directory: Union[str, Path], instance_number: int) -> Path:
    """Path of the mailbox owned by server ``instance_number``."""
    name = f"{SERVER_FILE_PREFIX}{instance_number}{SERVER_FILE_EXTENSION}"
    return Path(directory) / name


def list_mailboxes(directory: Union[str, Path]) -> List[MailboxCandidate]:
    """
    List mailbox files in a directory, newest instance first.

    Files whose names do not carry a numeric instance suffix are skipped.
    """
    directory = Path(directory)
    candidates = []
    try:
        entries = list(directory.iterdir())
    except OSError as e:
        logger.warning(f"Cannot list {directory}: {e}")
        return []

    for entry in entries:
        number = parse_instance_number(entry.name)
        if number is None:
            continue
        candidates.append(MailboxCandidate(instance_number=number, path=entry))

    candidates.sort(key=lambda c: c.instance_number, reverse=True)
    return candidates


def next_instance_number(directory: Union[str, Path]) -> int:
    """
    Instance number for a server starting in ``directory``.

    One more than the highest number present, whether or not its server
    is still alive.
    """
    candidates = list_mailboxes(directory)
    if not candidates:
        return 1
    return candidates[0].instance_number + 1


def is_available(path: Union[str, Path], layout: RecordLayout) -> bool:
    """
    Check whether a mailbox can take a new connection.

    A mailbox is available when it can be read and its status is FREE or
    RESPONSE. A mailbox in REQUEST is busy and is not offered.
    """
    mailbox = MailboxFile(path, layout)
    try:
        mailbox.open()
        record = mailbox.read()
    except MailboxError as e:
        logger.debug(f"Mailbox {path} not available: {e}")
        return False
    finally:
        mailbox.close()

    return record.status in (MailboxStatus.FREE, MailboxStatus.RESPONSE)


def find_live_mailbox(directory: Union[str, Path], layout: RecordLayout) -> Path:
    """
    Select the mailbox a client should bind to.

    Among available mailboxes the one with the highest instance number
    wins.

    Raises:
        DiscoveryError: If no mailbox is available
    """
    available = [
        candidate for candidate in list_mailboxes(directory)
        if is_available(candidate.path, layout)
    ]

    if not available:
        raise DiscoveryError(f"No servers available in {directory}")

    if len(available) > 1:
        logger.debug(
            f"{len(available)} servers available, "
            f"choosing #{available[0].instance_number}"
        )
    return available[0].path
