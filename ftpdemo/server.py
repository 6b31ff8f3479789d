from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from ftpdemo.dispatcher import CommandDispatcher
from ftpdemo.protocol import FTPControlFactory
from ftpdemo.settings import BaseSettings, Settings
from ftpdemo.utils.conf import parse_listen

if TYPE_CHECKING:
    from twisted.internet.defer import Deferred
    from twisted.internet.interfaces import IListeningPort


logger = logging.getLogger(__name__)


class FTPServer:
    """Binds the dispatcher to a listening control port on a reactor."""

    def __init__(self, settings: BaseSettings | dict[str, Any] | None = None, reactor: Any = None):
        if reactor is None:
            from twisted.internet import reactor  # noqa: PLW0621
        if not isinstance(settings, BaseSettings):
            settings = Settings(settings)
        self.settings: BaseSettings = settings
        self.reactor = reactor
        self.dispatcher: CommandDispatcher = CommandDispatcher.from_settings(settings, reactor)
        self.factory: FTPControlFactory = FTPControlFactory(self.dispatcher)
        self.port: IListeningPort | None = None

    def listen(self) -> IListeningPort:
        self.port = self.reactor.listenTCP(
            self.settings.getint("FTP_LISTEN_PORT"),
            self.factory,
            interface=self.settings["FTP_LISTEN_IP"],
        )
        address = self.port.getHost()
        logger.info(
            "Listening on %s:%s, root directory %s",
            address.host,
            address.port,
            self.dispatcher.sandbox.root,
        )
        return self.port

    def run(self, listen: str | None = None) -> None:
        if listen:
            host, port = parse_listen(listen)
            self.settings.set("FTP_LISTEN_IP", host, "cmdline")
            self.settings.set("FTP_LISTEN_PORT", port, "cmdline")
            self.dispatcher.broker.host = self.settings["FTP_LISTEN_IP"]
        self.listen()
        self.reactor.run()

    def stop(self) -> Deferred[Any] | None:
        for session in self.dispatcher.sessions:
            session.close()
        port, self.port = self.port, None
        if port is None:
            return None
        return port.stopListening()
