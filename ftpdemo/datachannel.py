"""
Data channel negotiation.

PORT and PASV only record how the next data connection is to be made.
:meth:`DataChannelBroker.obtain_channel` turns that record into exactly one
connected :class:`DataConnection` per transfer:

- active mode connects out to the address given with PORT, every time;
- passive mode takes the single connection accepted by the
  :class:`PassiveListener` opened at PASV time. The listener stops once that
  connection is closed, so the next transfer needs a fresh PASV.
"""

from __future__ import annotations

import logging
import random
from typing import TYPE_CHECKING, Any

from twisted.internet import error
from twisted.internet.defer import Deferred, fail, succeed
from twisted.internet.endpoints import TCP4ClientEndpoint, connectProtocol
from twisted.internet.interfaces import IPushProducer
from twisted.internet.protocol import Factory, Protocol, connectionDone
from zope.interface import implementer

from ftpdemo.exceptions import ChannelError
from ftpdemo.session import ActiveChannel, PassiveChannel

if TYPE_CHECKING:
    from collections.abc import Callable

    from twisted.internet.interfaces import IAddress, IListeningPort
    from twisted.python.failure import Failure

    # typing.Self requires Python 3.11
    from typing_extensions import Self

    from ftpdemo.session import Session
    from ftpdemo.settings import BaseSettings


logger = logging.getLogger(__name__)


@implementer(IPushProducer)
class DataConnection(Protocol):
    """One data channel connection, used for a single transfer.

    Bytes received before a consumer is attached are kept and handed over
    on :meth:`set_consumer`, so a client that starts sending right after
    connecting loses nothing.

    For outgoing transfers the connection registers itself as a streaming
    producer with its transport (:meth:`stream`); the transport pauses it
    while its write buffer is full and :meth:`when_writable` lets the sender
    wait for the buffer to drain.
    """

    def __init__(self) -> None:
        self._buffer: list[bytes] = []
        self._consumer: Callable[[bytes], Any] | None = None
        self._close_waiters: list[Deferred[None]] = []
        self._lost: bool = False
        self._paused: bool = False
        self._streaming: bool = False
        self._writable_waiters: list[Deferred[None]] = []
        self.on_made: Callable[[DataConnection], Any] | None = None
        self.on_lost: Callable[[DataConnection], Any] | None = None

    def connectionMade(self) -> None:
        if self.on_made is not None:
            self.on_made(self)

    def dataReceived(self, data: bytes) -> None:
        if self._consumer is None:
            self._buffer.append(data)
        else:
            self._consumer(data)

    def connectionLost(self, reason: Failure = connectionDone) -> None:
        self._lost = True
        waiters, self._close_waiters = self._close_waiters, []
        for d in waiters:
            d.callback(None)
        self._release_writers()
        if self.on_lost is not None:
            self.on_lost(self)

    @property
    def lost(self) -> bool:
        return self._lost

    def set_consumer(self, consumer: Callable[[bytes], Any]) -> None:
        self._consumer = consumer
        buffered, self._buffer = self._buffer, []
        for data in buffered:
            consumer(data)

    def write(self, data: bytes) -> None:
        assert self.transport
        self.transport.write(data)

    def when_closed(self) -> Deferred[None]:
        """Return a Deferred that fires once the connection is gone."""
        if self._lost:
            return succeed(None)
        d: Deferred[None] = Deferred()
        self._close_waiters.append(d)
        return d

    def stream(self) -> None:
        """Register with the transport as a streaming producer so that a full
        write buffer pauses the sender."""
        if not self._streaming and not self._lost:
            assert self.transport
            self.transport.registerProducer(self, True)
            self._streaming = True

    def when_writable(self) -> Deferred[None]:
        """Return a Deferred that fires once the transport accepts more data,
        or the connection is gone."""
        if not self._paused or self._lost:
            return succeed(None)
        d: Deferred[None] = Deferred()
        self._writable_waiters.append(d)
        return d

    def _release_writers(self) -> None:
        waiters, self._writable_waiters = self._writable_waiters, []
        for d in waiters:
            d.callback(None)

    def pauseProducing(self) -> None:
        self._paused = True

    def resumeProducing(self) -> None:
        self._paused = False
        self._release_writers()

    def stopProducing(self) -> None:
        self._paused = False
        self._release_writers()

    def finish(self) -> Deferred[None]:
        """Close the connection after the pending writes are flushed."""
        d = self.when_closed()
        if not self._lost:
            assert self.transport
            if self._streaming:
                self._streaming = False
                self.transport.unregisterProducer()
            self.transport.loseConnection()
        return d

    def abort(self) -> None:
        if not self._lost and self.transport is not None:
            self.transport.loseConnection()


class _PassiveFactory(Factory):
    noisy = False

    def __init__(self, listener: PassiveListener):
        self.listener: PassiveListener = listener

    def buildProtocol(self, addr: IAddress) -> DataConnection | None:
        return self.listener._build_connection(addr)


class PassiveListener:
    """A listening port that accepts a single data connection."""

    def __init__(self, reactor: Any, host: str, port: int):
        self._connection: DataConnection | None = None
        self._ready: bool = False
        self._taken: bool = False
        self._waiters: list[Deferred[DataConnection]] = []
        self._port: IListeningPort | None = reactor.listenTCP(
            port, _PassiveFactory(self), interface=host
        )
        address = self._port.getHost()
        self.host: str = address.host
        self.port: int = address.port

    @property
    def listening(self) -> bool:
        return self._port is not None

    def _build_connection(self, addr: IAddress) -> DataConnection | None:
        if self._connection is not None or self._port is None:
            logger.debug("Refusing extra passive data connection from %s", addr)
            return None
        logger.debug("passive data connection established from %s", addr)
        self._connection = connection = DataConnection()
        connection.on_made = self._connection_made
        connection.on_lost = self._connection_lost
        return connection

    def _connection_made(self, connection: DataConnection) -> None:
        self._ready = True
        if self._waiters:
            self._taken = True
            self._waiters.pop(0).callback(connection)

    def _connection_lost(self, connection: DataConnection) -> None:
        self._stop_listening()
        for d in self._drain_waiters():
            d.errback(ChannelError())

    def _drain_waiters(self) -> list[Deferred[DataConnection]]:
        waiters, self._waiters = self._waiters, []
        return waiters

    def accept(self) -> Deferred[DataConnection]:
        """Return a Deferred firing with the accepted connection, which may
        have arrived already."""
        connection = self._connection
        if self._taken or (connection is not None and connection.lost):
            return fail(ChannelError())
        if self._ready and connection is not None:
            self._taken = True
            return succeed(connection)
        if self._port is None:
            return fail(ChannelError())

        def _cancel(d: Deferred[DataConnection]) -> None:
            if d in self._waiters:
                self._waiters.remove(d)

        d: Deferred[DataConnection] = Deferred(_cancel)
        self._waiters.append(d)
        return d

    def _stop_listening(self) -> None:
        port, self._port = self._port, None
        if port is not None:
            port.stopListening()
            logger.debug("passive data server at %s:%s closed", self.host, self.port)

    def close(self) -> None:
        """Stop listening. A connection that was accepted but never handed to
        a transfer is dropped; one in use is left to finish. A transfer still
        waiting for its connection fails with a 425."""
        self._stop_listening()
        for d in self._drain_waiters():
            d.errback(ChannelError())
        if self._connection is not None and not self._taken:
            self._connection.abort()

    def __repr__(self) -> str:
        return f"<PassiveListener {self.host}:{self.port} listening={self.listening}>"


class DataChannelBroker:
    def __init__(
        self,
        reactor: Any = None,
        host: str = "127.0.0.1",
        port_high: tuple[int, int] = (100, 256),
        bind_attempts: int = 10,
        rng: random.Random | None = None,
    ):
        if reactor is None:
            from twisted.internet import reactor  # noqa: PLW0621
        self.reactor = reactor
        self.host: str = host
        self.port_high: tuple[int, int] = port_high
        self.bind_attempts: int = bind_attempts
        self.rng: random.Random = rng or random.Random()

    @classmethod
    def from_settings(cls, settings: BaseSettings, reactor: Any = None) -> Self:
        low, high = (int(x) for x in settings.getlist("FTP_PASSIVE_PORT_HIGH"))
        return cls(
            reactor=reactor,
            host=settings["FTP_LISTEN_IP"],
            port_high=(low, high),
            bind_attempts=settings.getint("FTP_PASSIVE_BIND_ATTEMPTS"),
        )

    def set_active(self, session: Session, host: str, port: int) -> None:
        session.channel = ActiveChannel(host, port)

    def _random_port(self) -> tuple[int, int]:
        p1 = self.rng.randint(*self.port_high)
        p2 = self.rng.randint(0, 255)
        return p1, p2

    def open_passive(self, session: Session) -> tuple[int, int]:
        """Close the session's current passive listener, open a new one on a
        random port and make it the session channel. Return the two port
        octets that go in the 227 reply."""
        session.channel = None
        for _ in range(self.bind_attempts):
            p1, p2 = self._random_port()
            try:
                listener = PassiveListener(self.reactor, self.host, p1 * 256 + p2)
            except (error.CannotListenError, OverflowError) as e:
                logger.debug("Cannot listen on %s:%s: %s", self.host, p1 * 256 + p2, e)
                continue
            session.channel = PassiveChannel(listener)
            logger.debug(
                "passive data server listening at: %s:%s", listener.host, listener.port
            )
            return p1, p2
        logger.warning(
            "No passive port could be bound after %s attempts", self.bind_attempts
        )
        raise ChannelError("Could not enter passive mode.")

    def obtain_channel(self, session: Session) -> Deferred[DataConnection]:
        channel = session.channel
        if isinstance(channel, ActiveChannel):
            return self._connect_active(channel)
        if isinstance(channel, PassiveChannel):
            return channel.listener.accept()
        return fail(ChannelError("Use PORT or PASV first.", code=503))

    def _connect_active(self, channel: ActiveChannel) -> Deferred[DataConnection]:
        # PORT octets go up to 256, which can name ports past 65535
        if not 0 < channel.port <= 65535:
            logger.info("active data connection to %r refused: port out of range", channel)
            return fail(ChannelError())
        endpoint = TCP4ClientEndpoint(self.reactor, channel.host, channel.port)
        d: Deferred[DataConnection] = connectProtocol(endpoint, DataConnection())

        def _connected(connection: DataConnection) -> DataConnection:
            logger.debug("active data connection established at: %r", channel)
            return connection

        def _failed(failure: Failure) -> DataConnection:
            logger.info(
                "active data connection to %r failed: %s", channel, failure.getErrorMessage()
            )
            raise ChannelError()

        d.addCallbacks(_connected, _failed)
        return d
