"""
The FTP command state machine.

:class:`CommandDispatcher` receives the lifecycle events of every control
connection through :meth:`~CommandDispatcher.on_connect`,
:meth:`~CommandDispatcher.on_data` and :meth:`~CommandDispatcher.on_close`.
There is no explicit state enum: whether a command is allowed is decided
from the fields of the connection's :class:`~ftpdemo.session.Session`.

Handlers are the ``ftp_<VERB>`` methods. They return the reply line, or raise
an :class:`~ftpdemo.exceptions.FTPReplyError` that is turned into one. The
data-bearing commands are coroutines: they first wait for their turn on the
session transfer lock, then for the data connection, and only then run the
transfer itself.
"""

from __future__ import annotations

import ipaddress
import logging
import os
import re
from typing import TYPE_CHECKING, Any

from twisted.internet.defer import Deferred, maybeDeferred
from twisted.internet.threads import deferToThread

import ftpdemo
from ftpdemo.datachannel import DataChannelBroker
from ftpdemo.exceptions import (
    AuthError,
    ChannelError,
    FilesystemError,
    FTPReplyError,
    NotConfigured,
    ProtocolError,
)
from ftpdemo.sandbox import PathSandbox
from ftpdemo.session import SessionStore, TransferMode
from ftpdemo.transfer import TransferEngine
from ftpdemo.utils.defer import deferred_from_coro
from ftpdemo.utils.log import failure_to_exc_info

if TYPE_CHECKING:
    from collections.abc import Callable

    from twisted.python.failure import Failure

    # typing.Self requires Python 3.11
    from typing_extensions import Self

    from ftpdemo.datachannel import DataConnection
    from ftpdemo.interfaces import IControlConnection
    from ftpdemo.session import Session
    from ftpdemo.settings import BaseSettings


logger = logging.getLogger(__name__)

PORT_HOST_CHECKS = ("require", "reject", "none")

_OCTET_RE = re.compile(r"\d{1,3}", re.ASCII)


def parse_command(line: str) -> tuple[str, str]:
    """Split a command line into its upper-cased verb (at most 4
    characters) and its argument."""
    line = line.strip()
    if not line:
        return "", ""
    verb = line[:4].split()[0]
    return verb.upper(), line[len(verb) :].strip()


def _is_ipv4(host: str) -> bool:
    try:
        ipaddress.IPv4Address(host)
    except ValueError:
        return False
    return True


def parse_port(args: str, host_check: str = "require") -> tuple[str, int]:
    """Parse a PORT argument ``h1,h2,h3,h4,p1,p2`` into ``(host, port)``.

    Every number must be within 0-256. ``host_check`` decides what happens
    with the host part:

    - ``"require"``: it must be a valid IPv4 address;
    - ``"reject"``: it must *not* be one. This is the legacy check, which
      rejects every ordinary address;
    - ``"none"``: it is not checked.

    Raise :exc:`ValueError` if the argument is not acceptable.
    """
    segments = args.split(",")
    if len(segments) != 6:
        raise ValueError(f"expected 6 numbers, got {len(segments)}")
    octets = []
    for segment in segments:
        segment = segment.strip()
        if not _OCTET_RE.fullmatch(segment) or int(segment) > 256:
            raise ValueError(f"invalid number {segment!r}")
        octets.append(int(segment))
    host = ".".join(str(o) for o in octets[:4])
    port = octets[4] * 256 + octets[5]
    if host_check == "require" and not _is_ipv4(host):
        raise ValueError(f"invalid host {host}")
    if host_check == "reject" and _is_ipv4(host):
        raise ValueError(f"host {host} rejected")
    return host, port


class CommandDispatcher:
    def __init__(
        self,
        sandbox: PathSandbox,
        broker: DataChannelBroker,
        engine: TransferEngine,
        users: dict[str, str] | None = None,
        anonymous: bool = True,
        port_host_check: str = "require",
        sessions: SessionStore | None = None,
    ):
        if port_host_check not in PORT_HOST_CHECKS:
            raise NotConfigured(
                f"FTP_PORT_HOST_CHECK must be one of {PORT_HOST_CHECKS}, got {port_host_check!r}"
            )
        self.sandbox: PathSandbox = sandbox
        self.broker: DataChannelBroker = broker
        self.engine: TransferEngine = engine
        self.users: dict[str, str] = users or {}
        self.anonymous: bool = anonymous
        self.port_host_check: str = port_host_check
        self.sessions: SessionStore = sessions if sessions is not None else SessionStore()

    @classmethod
    def from_settings(cls, settings: BaseSettings, reactor: Any = None) -> Self:
        return cls(
            sandbox=PathSandbox.from_settings(settings),
            broker=DataChannelBroker.from_settings(settings, reactor),
            engine=TransferEngine.from_settings(settings),
            users=settings.getdict("FTP_USERS"),
            anonymous=settings.getbool("FTP_ANONYMOUS"),
            port_host_check=settings.get("FTP_PORT_HOST_CHECK"),
        )

    # lifecycle hooks

    def on_connect(self, connection: IControlConnection) -> None:
        connection.write_line(f"220 (FTP Demo v{ftpdemo.__version__})")

    def on_data(self, connection: IControlConnection, line: str) -> Deferred[Any] | None:
        """Process one command line. Return a Deferred that fires once the
        command is complete, or ``None`` for an empty line."""
        verb, args = parse_command(line)
        if not verb:
            return None
        logger.debug(
            "command received: %s %s", verb, "****" if verb == "PASS" else args
        )

        session = self.sessions.get_or_create(connection.identity)
        handler: Callable[..., Any] | None = getattr(self, f"ftp_{verb}", None)
        if handler is None:
            logger.warning("unknown command: %s", verb)
            connection.write_line(f"500 Unknown command: {verb}.")
            return None

        d = maybeDeferred(lambda: deferred_from_coro(handler(session, connection, args)))
        d.addCallbacks(
            self._command_done,
            self._command_failed,
            callbackArgs=(connection,),
            errbackArgs=(connection, verb),
        )
        return d

    def on_close(self, connection: IControlConnection) -> None:
        self.sessions.close(connection.identity)

    def _command_done(self, reply: str | None, connection: IControlConnection) -> None:
        if reply is not None:
            connection.write_line(reply)

    def _command_failed(
        self, failure: Failure, connection: IControlConnection, verb: str
    ) -> None:
        if failure.check(FTPReplyError):
            connection.write_line(failure.value.reply())
        else:
            logger.error(
                "Error processing %s",
                verb,
                exc_info=failure_to_exc_info(failure),
                extra={"failure": failure},
            )
            connection.write_line("451 Requested action aborted: local error in processing.")

    # preconditions

    def _ensure_auth(self, session: Session) -> None:
        if not session.authenticated:
            raise AuthError()

    def _ensure_channel(self, session: Session) -> None:
        if session.channel is None:
            raise ChannelError("Use PORT or PASV first.", code=503)

    def _sandboxed(
        self, resolve: Callable[[str, str], str], session: Session, path: str, message: str
    ) -> str:
        try:
            return resolve(session.cwd, path)
        except FilesystemError:
            raise FilesystemError(message)

    def password_matches(self, user: str, password: str) -> bool:
        if user == "anonymous" and self.anonymous:
            return True
        return user in self.users and self.users[user] == password

    # authentication

    def ftp_USER(self, session: Session, connection: IControlConnection, args: str) -> str:
        if session.authenticated:
            raise AuthError("Already logged in.")
        session.user = args
        return "331 Please specify the password."

    def ftp_PASS(self, session: Session, connection: IControlConnection, args: str) -> str:
        if session.authenticated:
            raise AuthError("Already logged in.")
        if session.user is None:
            raise AuthError("Login with USER first.", code=503)
        if self.password_matches(session.user, args):
            session.authenticated = True
            logger.info("User %s logged in", session.user)
            return "230 Login successful."
        logger.info("Login incorrect for user %s", session.user)
        session.user = None
        raise AuthError("Login incorrect.")

    # channel negotiation

    def ftp_PORT(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        try:
            host, port = parse_port(args, self.port_host_check)
        except ValueError as e:
            logger.debug("Illegal PORT argument %r: %s", args, e)
            raise ProtocolError("Illegal PORT command.")
        self.broker.set_active(session, host, port)
        return "200 PORT command successful. Consider using PASV."

    def ftp_PASV(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        p1, p2 = self.broker.open_passive(session)
        host = self.broker.host
        if host == "0.0.0.0":
            host = connection.local_host()
        return f"227 Entering Passive Mode ({host.replace('.', ',')},{p1},{p2})."

    # navigation

    def ftp_PWD(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        return f'257 "{session.cwd}" is the current directory.'

    def ftp_CWD(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        path = self._sandboxed(
            self.sandbox.resolve_directory, session, args, "Failed to change directory."
        )
        session.cwd = self.sandbox.to_virtual(path)
        return "250 Directory successfully changed."

    def ftp_CDUP(self, session: Session, connection: IControlConnection, args: str) -> str:
        return self.ftp_CWD(session, connection, "../")

    def ftp_TYPE(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        try:
            mode = TransferMode(args.upper())
        except ValueError:
            raise ProtocolError("Unrecognised TYPE command.")
        session.transfer_mode = mode
        return f"200 Switching to {mode.label} mode."

    # transfers

    async def _data_connection(self, session: Session) -> DataConnection:
        return await self.broker.obtain_channel(session)

    async def ftp_LIST(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        self._ensure_channel(session)
        directory = self._sandboxed(
            self.sandbox.resolve_directory, session, session.cwd, "Failed to open directory."
        )
        await session.transfer_lock.acquire()
        try:
            data = await self._data_connection(session)
            try:
                listing = await self.engine.listing(directory)
            except Exception:
                data.abort()
                raise
            connection.write_line("150 Here comes the directory listing.")
            await self.engine.send_listing(data, listing)
            return "226 Directory send OK."
        finally:
            session.transfer_lock.release()

    async def ftp_RETR(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        self._ensure_channel(session)
        path = self._sandboxed(self.sandbox.resolve_file, session, args, "File not found.")
        await session.transfer_lock.acquire()
        try:
            data = await self._data_connection(session)
            try:
                fp = await self.engine.open_for_reading(path)
            except FTPReplyError:
                data.abort()
                raise
            mode = "BINARY" if session.transfer_mode is TransferMode.BINARY else "ASCII"
            connection.write_line(f"150 Opening {mode} mode data connection for {args}.")
            sent = await self.engine.send_file(data, fp)
            logger.debug("RETR %s: %s bytes sent", path, sent)
            return "226 Transfer complete."
        finally:
            session.transfer_lock.release()

    async def ftp_STOR(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        self._ensure_channel(session)
        path = self._sandboxed(
            self.sandbox.resolve_new_file, session, args, "Permission denied."
        )
        await session.transfer_lock.acquire()
        try:
            data = await self._data_connection(session)
            try:
                fp = await self.engine.open_for_writing(path)
            except FTPReplyError:
                data.abort()
                raise
            connection.write_line("150 Ok to send data.")
            received = await self.engine.receive_file(data, fp)
            logger.debug("STOR %s: %s bytes received", path, received)
            return "226 Transfer complete."
        finally:
            session.transfer_lock.release()

    async def ftp_DELE(self, session: Session, connection: IControlConnection, args: str) -> str:
        self._ensure_auth(session)
        # DELE moves no data but still requires PORT or PASV first
        self._ensure_channel(session)
        path = self._sandboxed(self.sandbox.resolve_file, session, args, "Permission denied.")
        try:
            await deferToThread(os.remove, path)
        except OSError as e:
            logger.error("Failed to delete %s: %s", path, e)
            raise FilesystemError("Permission denied.")
        return "250 Delete operation successful."

    # miscellaneous

    def ftp_NOOP(self, session: Session, connection: IControlConnection, args: str) -> str:
        return "200 NOOP ok."

    def ftp_SYST(self, session: Session, connection: IControlConnection, args: str) -> str:
        return "215 UNIX Type: L8"

    def ftp_QUIT(self, session: Session, connection: IControlConnection, args: str) -> None:
        connection.write_line("221 Goodbye.")
        connection.close()
