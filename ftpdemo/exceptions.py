"""
ftpdemo exceptions

Every per-command failure is an :class:`FTPReplyError`, which knows the reply
line it must be rendered as. The dispatcher catches them at the command
boundary, so none of them ever closes a control connection.
"""

from __future__ import annotations

from typing import Any

# Internal


class NotConfigured(Exception):
    """Indicates a missing or invalid configuration"""


class UsageError(Exception):
    """To indicate a command-line usage error"""

    def __init__(self, *a: Any, **kw: Any):
        self.print_help = kw.pop("print_help", True)
        super().__init__(*a, **kw)


# Protocol replies


class FTPReplyError(Exception):
    """Base class for failures that are reported to the client as a reply."""

    code: int = 500
    message: str = "Command failed."

    def __init__(self, message: str | None = None, code: int | None = None):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        super().__init__(self.message)

    def reply(self) -> str:
        return f"{self.code} {self.message}"


class ProtocolError(FTPReplyError):
    """Malformed command or argument"""

    code = 500


class AuthError(FTPReplyError):
    """Not logged in, already logged in, or bad credentials"""

    code = 530
    message = "Please login with USER and PASS."


class ChannelError(FTPReplyError):
    """No data channel negotiated, or it could not be established"""

    code = 425
    message = "Failed to establish connection."


class FilesystemError(FTPReplyError):
    """Not found, outside the sandbox, already exists or cannot be opened"""

    code = 550
    message = "Permission denied."


class OutsideRoot(FilesystemError):
    """Raised by the sandbox when a path escapes the root directory"""
