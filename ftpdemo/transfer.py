"""
Moving bytes between the filesystem and a data connection.

File reads, writes, opens and closes run in the reactor thread pool, so a
slow disk never stalls other sessions.
"""

from __future__ import annotations

import datetime
import logging
import os
import stat
from typing import IO, TYPE_CHECKING, Any

from twisted.internet.defer import Deferred, succeed
from twisted.internet.threads import deferToThread
from twisted.internet.utils import getProcessOutputAndValue
from zope.interface import implementer

from ftpdemo.exceptions import ChannelError, FilesystemError
from ftpdemo.interfaces import IDirectoryLister
from ftpdemo.utils.log import failure_to_exc_info
from ftpdemo.utils.misc import load_object
from ftpdemo.utils.python import to_bytes

if TYPE_CHECKING:
    from twisted.python.failure import Failure

    # typing.Self requires Python 3.11
    from typing_extensions import Self

    from ftpdemo.datachannel import DataConnection
    from ftpdemo.settings import BaseSettings


logger = logging.getLogger(__name__)


@implementer(IDirectoryLister)
class LsDirectoryLister:
    """Lists a directory by running ``ls -l`` on it."""

    def __init__(self, executable: str = "ls"):
        self.executable: str = executable

    @classmethod
    def from_settings(cls, settings: BaseSettings) -> Self:
        return cls()

    def list_directory(self, path: str) -> Deferred[bytes]:
        d = getProcessOutputAndValue(
            self.executable, ("-l", path), env=dict(os.environ, LC_ALL="C")
        )

        def _check(result: tuple[bytes, bytes, int]) -> bytes:
            out, err, code = result
            if code != 0:
                logger.error(
                    "%s -l %s exited with %s: %r", self.executable, path, code, err
                )
                raise FilesystemError("Failed to list directory.")
            return out

        return d.addCallback(_check)


@implementer(IDirectoryLister)
class StatDirectoryLister:
    """Builds the ``ls -l`` style listing in Python, for hosts without ``ls``."""

    @classmethod
    def from_settings(cls, settings: BaseSettings) -> Self:
        return cls()

    def list_directory(self, path: str) -> Deferred[bytes]:
        return deferToThread(self._listing, path)

    def _listing(self, path: str) -> bytes:
        lines = []
        blocks = 0
        for name in sorted(os.listdir(path)):
            st = os.lstat(os.path.join(path, name))
            blocks += getattr(st, "st_blocks", 0)
            mtime = datetime.datetime.fromtimestamp(st.st_mtime).strftime("%b %d %H:%M")
            lines.append(
                f"{stat.filemode(st.st_mode)} {st.st_nlink} {st.st_uid} {st.st_gid} "
                f"{st.st_size} {mtime} {name}"
            )
        # ls counts 1K blocks, st_blocks counts 512 byte ones
        lines.insert(0, f"total {blocks // 2}")
        return to_bytes("\n".join(lines) + "\n", errors="surrogateescape")


class _OrderedFileWriter:
    """Writes chunks to a file in the thread pool, one at a time and in the
    order they were received. The data connection is paused while too many
    chunks are waiting.

    The first failed write is kept in :attr:`failure`; the data connection
    is closed and every chunk after it is dropped."""

    high_water = 16
    low_water = 4

    def __init__(self, fp: IO[bytes], connection: DataConnection):
        self.fp = fp
        self.connection = connection
        self.pending: int = 0
        self.written: int = 0
        self.paused: bool = False
        self.failure: Failure | None = None
        self._chain: Deferred[Any] = succeed(None)

    def write(self, data: bytes) -> None:
        if self.failure is not None:
            return
        self.pending += 1
        self._chain.addCallback(self._write_chunk, data)
        self._chain.addCallbacks(self._written, self._write_failed)
        if self.pending >= self.high_water and not self.paused:
            self.paused = True
            self.connection.transport.pauseProducing()

    def _write_chunk(self, _: Any, data: bytes) -> Deferred[int]:
        if self.failure is not None:
            return succeed(0)
        return deferToThread(self.fp.write, data)

    def _written(self, count: int) -> None:
        self.pending -= 1
        self.written += count
        if self.paused and self.pending <= self.low_water:
            self.paused = False
            if not self.connection.lost:
                self.connection.transport.resumeProducing()

    def _write_failed(self, failure: Failure) -> None:
        self.pending -= 1
        self.failure = failure
        logger.error(
            "Failed to write to %r: %s",
            getattr(self.fp, "name", self.fp),
            failure.getErrorMessage(),
            exc_info=failure_to_exc_info(failure),
            extra={"failure": failure},
        )
        self.connection.abort()

    def flush(self) -> Deferred[Any]:
        return self._chain


class TransferEngine:
    def __init__(self, lister: IDirectoryLister, chunk_size: int = 1024):
        self.lister: IDirectoryLister = lister
        self.chunk_size: int = chunk_size

    @classmethod
    def from_settings(cls, settings: BaseSettings) -> Self:
        lister_cls = load_object(settings["FTP_DIRECTORY_LISTER"])
        return cls(
            lister=lister_cls.from_settings(settings),
            chunk_size=settings.getint("FTP_TRANSFER_CHUNK_SIZE"),
        )

    async def listing(self, directory: str) -> bytes:
        """Return the listing of ``directory`` without its summary line."""
        output = await self.lister.list_directory(directory)
        lines = output.splitlines()[1:]
        return b"\n".join(lines)

    async def send_listing(self, connection: DataConnection, listing: bytes) -> None:
        connection.write(listing)
        await connection.finish()

    async def open_for_reading(self, path: str) -> IO[bytes]:
        try:
            return await deferToThread(open, path, "rb")
        except OSError as e:
            logger.error("Failed to open %s for reading: %s", path, e)
            raise FilesystemError("Failed to open file.")

    async def open_for_writing(self, path: str) -> IO[bytes]:
        # "x" fails if the file appeared after the sandbox checks
        try:
            return await deferToThread(open, path, "xb")
        except OSError as e:
            logger.error("Failed to create %s: %s", path, e)
            raise FilesystemError("Failed to open file.")

    async def send_file(self, connection: DataConnection, fp: IO[bytes]) -> int:
        """Stream ``fp`` to the data connection in fixed size chunks, then
        close both. Return the number of bytes sent.

        The next chunk is only read once the transport has room for it."""
        sent = 0
        connection.stream()
        try:
            while True:
                chunk = await deferToThread(fp.read, self.chunk_size)
                if not chunk:
                    break
                if connection.lost:
                    raise ChannelError("Connection closed; transfer aborted.", code=426)
                connection.write(chunk)
                sent += len(chunk)
                await connection.when_writable()
        finally:
            await deferToThread(fp.close)
        await connection.finish()
        return sent

    async def receive_file(self, connection: DataConnection, fp: IO[bytes]) -> int:
        """Append everything received on the data connection to ``fp``, and
        close it once the client closes the connection. Return the number of
        bytes written. A dropped connection leaves the partial file behind; a
        failed write closes the data connection and fails with a 451."""
        writer = _OrderedFileWriter(fp, connection)
        try:
            connection.set_consumer(writer.write)
            await connection.when_closed()
            await writer.flush()
        finally:
            await deferToThread(fp.close)
        if writer.failure is not None:
            raise FilesystemError("Failed to write file.", code=451)
        return writer.written
