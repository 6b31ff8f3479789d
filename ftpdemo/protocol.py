"""
Twisted glue for the control channel: splits the byte stream into command
lines and forwards connection events to the dispatcher hooks.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING

from twisted.internet.protocol import ServerFactory, connectionDone
from twisted.protocols.basic import LineReceiver
from zope.interface import implementer

from ftpdemo.interfaces import IControlConnection
from ftpdemo.utils.python import to_bytes, to_unicode

if TYPE_CHECKING:
    from twisted.internet.interfaces import IAddress
    from twisted.python.failure import Failure

    from ftpdemo.dispatcher import CommandDispatcher


logger = logging.getLogger(__name__)

_connection_ids = itertools.count(1)


@implementer(IControlConnection)
class FTPControlProtocol(LineReceiver):
    delimiter = b"\n"
    MAX_LENGTH = 4096

    def __init__(self, dispatcher: CommandDispatcher):
        self.dispatcher: CommandDispatcher = dispatcher
        self.identity: int = next(_connection_ids)
        self._lost: bool = False

    def connectionMade(self) -> None:
        logger.debug("connection %s established from %s", self.identity, self.transport.getPeer())
        self.dispatcher.on_connect(self)

    def lineReceived(self, line: bytes) -> None:
        self.dispatcher.on_data(self, to_unicode(line.rstrip(b"\r"), errors="replace"))

    def connectionLost(self, reason: Failure = connectionDone) -> None:
        self._lost = True
        logger.debug("connection %s closed: %s", self.identity, reason.getErrorMessage())
        self.dispatcher.on_close(self)

    def write_line(self, line: str) -> None:
        if self._lost or self.transport is None:
            logger.debug("Dropping reply to closed connection %s: %s", self.identity, line)
            return
        self.sendLine(to_bytes(line))

    def close(self) -> None:
        if not self._lost and self.transport is not None:
            self.transport.loseConnection()

    def local_host(self) -> str:
        return self.transport.getHost().host


class FTPControlFactory(ServerFactory):
    protocol = FTPControlProtocol
    noisy = False

    def __init__(self, dispatcher: CommandDispatcher):
        self.dispatcher: CommandDispatcher = dispatcher

    def buildProtocol(self, addr: IAddress) -> FTPControlProtocol:
        p = self.protocol(self.dispatcher)
        p.factory = self
        return p
