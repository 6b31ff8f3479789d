"""
tests: this package contains all ftpdemo unittests
"""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any

from twisted.internet import error
from twisted.internet.address import IPv4Address
from twisted.internet.defer import succeed
from twisted.internet.testing import StringTransport
from twisted.python.failure import Failure
from zope.interface import implementer

from ftpdemo.datachannel import DataChannelBroker, DataConnection
from ftpdemo.dispatcher import CommandDispatcher
from ftpdemo.interfaces import IControlConnection, IDirectoryLister
from ftpdemo.sandbox import PathSandbox
from ftpdemo.transfer import TransferEngine

if TYPE_CHECKING:
    from pathlib import Path

    from twisted.internet.defer import Deferred
    from twisted.internet.interfaces import IProtocol, IProtocolFactory

# ignore system-wide proxies for tests
os.environ["ftp_proxy"] = ""


@implementer(IControlConnection)
class FakeControlConnection:
    def __init__(self, identity: Any = 1, host: str = "127.0.0.1"):
        self.identity = identity
        self.host = host
        self.lines: list[str] = []
        self.closed = False

    def write_line(self, line: str) -> None:
        self.lines.append(line)

    def close(self) -> None:
        self.closed = True

    def local_host(self) -> str:
        return self.host

    @property
    def last(self) -> str:
        return self.lines[-1]

    @property
    def codes(self) -> list[str]:
        return [line[:3] for line in self.lines]


@implementer(IDirectoryLister)
class FixedDirectoryLister:
    def __init__(self, output: bytes = b"total 8\n-rw-r--r-- 1 0 0 4 Jan 01 00:00 a\n"):
        self.output = output
        self.listed: list[str] = []

    @classmethod
    def from_settings(cls, settings):
        return cls()

    def list_directory(self, path: str) -> Deferred[bytes]:
        self.listed.append(path)
        return succeed(self.output)


class ClosingTransport(StringTransport):
    """A StringTransport that reports the connection lost as soon as it is
    asked to close it."""

    def __init__(self, protocol: IProtocol, *a: Any, **kw: Any):
        super().__init__(*a, **kw)
        self.protocol = protocol

    def loseConnection(self) -> None:
        if self.disconnecting:
            return
        super().loseConnection()
        self.protocol.connectionLost(Failure(error.ConnectionDone()))


def get_data_connection() -> tuple[DataConnection, ClosingTransport]:
    connection = DataConnection()
    transport = ClosingTransport(connection)
    connection.makeConnection(transport)
    return connection, transport


def get_dispatcher(
    root: Path,
    reactor: Any,
    lister: IDirectoryLister | None = None,
    **kwargs: Any,
) -> CommandDispatcher:
    broker_kwargs = {k: kwargs.pop(k) for k in ("rng", "bind_attempts", "host") if k in kwargs}
    return CommandDispatcher(
        sandbox=PathSandbox(root),
        broker=DataChannelBroker(reactor=reactor, **broker_kwargs),
        engine=TransferEngine(lister or FixedDirectoryLister(), chunk_size=4),
        **kwargs,
    )


def connect_data_client(
    factory: IProtocolFactory, port: int = 40000
) -> tuple[IProtocol | None, ClosingTransport | None]:
    """Simulate a client connecting to a data channel factory recorded by a
    MemoryReactor."""
    protocol = factory.buildProtocol(IPv4Address("TCP", "127.0.0.1", port))
    if protocol is None:
        return None, None
    transport = ClosingTransport(protocol)
    protocol.makeConnection(transport)
    return protocol, transport


class BrokenFile:
    """A writable file object whose every write fails, as on a full disk."""

    name = "broken.bin"

    def __init__(self) -> None:
        self.writes = 0
        self.closed = False

    def write(self, data: bytes) -> int:
        self.writes += 1
        raise OSError(28, "No space left on device")

    def close(self) -> None:
        self.closed = True
