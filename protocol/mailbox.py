"""Mailbox file access with full-record reads and durable writes."""

from pathlib import Path
from typing import Optional, Union
import os

from protocol.messages import ExchangeRecord, RecordLayout
from utils.exceptions import MailboxIOError, RecordIntegrityError
from utils.logging import get_logger

logger = get_logger(__name__)


class MailboxFile:
    """
    Handle to a mailbox file holding exactly one exchange record.

    Every access repositions to the start of the file and transfers the
    whole record, so the other side never observes a half-written field
    from this side. Writes are followed by fsync.
    """

    def __init__(self, path: Union[str, Path], layout: RecordLayout):
        """
        Args:
            path: Location of the mailbox file
            layout: Record layout of the protocol variant in use
        """
        self._path = Path(path)
        self._layout = layout
        self._fd: Optional[int] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def layout(self) -> RecordLayout:
        return self._layout

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    def open(self, create: bool = False, exclusive: bool = False) -> bool:
        """
        Open the mailbox file for reading and writing.

        Args:
            create: Create the file if it does not exist
            exclusive: Try exclusive creation first and reuse the existing
                       file if another process created it already

        Returns:
            True if this call created the file

        Raises:
            MailboxIOError: If the file cannot be opened
        """
        if self._fd is not None:
            return False

        try:
            if exclusive:
                try:
                    self._fd = os.open(
                        self._path, os.O_RDWR | os.O_CREAT | os.O_EXCL, 0o600
                    )
                    return True
                except FileExistsError:
                    logger.info(f"Mailbox {self._path} already exists, reusing it")
                    self._fd = os.open(self._path, os.O_RDWR)
                    return False

            flags = os.O_RDWR | (os.O_CREAT if create else 0)
            existed = self._path.exists()
            self._fd = os.open(self._path, flags, 0o600)
            return create and not existed
        except OSError as e:
            raise MailboxIOError(f"Cannot open mailbox {self._path}: {e}") from e

    def initialize(self) -> bool:
        """
        Write a zero record if the file does not hold a full record yet.

        Returns:
            True if the record was (re)initialized
        """
        fd = self._require_fd()
        try:
            size = os.lseek(fd, 0, os.SEEK_END)
        except OSError as e:
            raise MailboxIOError(f"Cannot seek mailbox {self._path}: {e}") from e

        if size >= self._layout.size:
            return False

        self.write(ExchangeRecord.empty())
        logger.debug(f"Initialized mailbox {self._path}")
        return True

    def read(self) -> ExchangeRecord:
        """
        Read the whole record.

        An empty file reads as a zero record.

        Raises:
            MailboxIOError: If seeking or reading fails
            RecordIntegrityError: If only part of a record could be read
        """
        fd = self._require_fd()
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            data = os.read(fd, self._layout.size)
        except OSError as e:
            raise MailboxIOError(f"Cannot read mailbox {self._path}: {e}") from e

        if not data:
            return ExchangeRecord.empty()

        if len(data) != self._layout.size:
            raise RecordIntegrityError(
                f"Partial record in {self._path}: "
                f"got {len(data)} of {self._layout.size} bytes"
            )

        try:
            return ExchangeRecord.from_bytes(data, self._layout)
        except ValueError as e:
            raise RecordIntegrityError(f"Corrupted record in {self._path}: {e}") from e

    def write(self, record: ExchangeRecord) -> None:
        """
        Write the whole record and flush it to disk.

        A failing fsync is logged but not raised, some filesystems do not
        support it.

        Raises:
            MailboxIOError: If seeking or writing fails or the write is short
        """
        fd = self._require_fd()
        data = record.to_bytes(self._layout)
        try:
            os.lseek(fd, 0, os.SEEK_SET)
            written = os.write(fd, data)
        except OSError as e:
            raise MailboxIOError(f"Cannot write mailbox {self._path}: {e}") from e

        if written != len(data):
            raise MailboxIOError(
                f"Short write to {self._path}: {written} of {len(data)} bytes"
            )

        try:
            os.fsync(fd)
        except OSError as e:
            logger.warning(f"fsync failed for {self._path}: {e}")

    def close(self) -> None:
        """Close the file. Safe to call more than once."""
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        except OSError as e:
            logger.warning(f"Error closing mailbox {self._path}: {e}")
        finally:
            self._fd = None

    def remove(self) -> bool:
        """
        Delete the mailbox file.

        Returns:
            True if the file was removed
        """
        try:
            self._path.unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning(f"Cannot remove mailbox {self._path}: {e}")
            return False

    def _require_fd(self) -> int:
        if self._fd is None:
            raise MailboxIOError(f"Mailbox {self._path} is not open")
        return self._fd

    def __enter__(self) -> 'MailboxFile':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
