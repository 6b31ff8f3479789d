"""
Per-connection session state.

A :class:`Session` belongs to exactly one control connection. The
dispatcher looks it up in the :class:`SessionStore` by the connection
identity on every command (:meth:`SessionStore.get_or_create`) and drops it
when the connection goes away.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Union

from twisted.internet.defer import DeferredLock

if TYPE_CHECKING:
    from collections.abc import Hashable, Iterator

    from ftpdemo.datachannel import PassiveListener


logger = logging.getLogger(__name__)


class TransferMode(Enum):
    BINARY = "I"
    ASCII = "A"

    @property
    def label(self) -> str:
        return "binary" if self is TransferMode.BINARY else "ASCII"


class ActiveChannel:
    """The client listens at ``host:port``; we connect out for each transfer."""

    def __init__(self, host: str, port: int):
        self.host: str = host
        self.port: int = port

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, ActiveChannel):
            return NotImplemented
        return (self.host, self.port) == (other.host, other.port)

    def __repr__(self) -> str:
        return f"<ActiveChannel {self.host}:{self.port}>"


class PassiveChannel:
    """We listen with a one-shot listener; the client connects in."""

    def __init__(self, listener: PassiveListener):
        self.listener: PassiveListener = listener

    def close(self) -> None:
        self.listener.close()

    def __repr__(self) -> str:
        return f"<PassiveChannel {self.listener!r}>"


Channel = Union[ActiveChannel, PassiveChannel, None]


class Session:
    def __init__(self, identity: Hashable):
        self.identity: Hashable = identity
        self.user: str | None = None
        self.authenticated: bool = False
        self.cwd: str = "/"
        self.transfer_mode: TransferMode = TransferMode.BINARY
        self.transfer_lock: DeferredLock = DeferredLock()
        self._channel: Channel = None

    @property
    def channel(self) -> Channel:
        return self._channel

    @channel.setter
    def channel(self, channel: Channel) -> None:
        # at most one passive listener may be open per session
        if isinstance(self._channel, PassiveChannel) and self._channel is not channel:
            self._channel.close()
        self._channel = channel

    def close(self) -> None:
        self.channel = None

    def __repr__(self) -> str:
        return (
            f"<Session {self.identity!r} user={self.user!r} "
            f"authenticated={self.authenticated} cwd={self.cwd!r}>"
        )


class SessionStore:
    """Sessions of the open control connections, keyed by identity."""

    def __init__(self) -> None:
        self._sessions: dict[Hashable, Session] = {}

    def get_or_create(self, identity: Hashable) -> Session:
        session = self._sessions.get(identity)
        if session is None:
            session = self._sessions[identity] = Session(identity)
            logger.debug("Session created for %r", identity)
        return session

    def get(self, identity: Hashable) -> Session | None:
        return self._sessions.get(identity)

    def close(self, identity: Hashable) -> None:
        """Drop the session of a closed connection, closing its passive
        listener if any."""
        session = self._sessions.pop(identity, None)
        if session is not None:
            session.close()
            logger.debug("Session closed for %r", identity)

    def __contains__(self, identity: Any) -> bool:
        return identity in self._sessions

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))

    def __len__(self) -> int:
        return len(self._sessions)
