from __future__ import annotations

from ftpdemo.exceptions import UsageError


def arglist_to_dict(arglist: list[str]) -> dict[str, str]:
    """Convert a list of arguments like ['arg1=val1', 'arg2=val2', ...] to a
    dict
    """
    return dict(x.split("=", 1) for x in arglist)


def userlist_to_dict(userlist: list[str]) -> dict[str, str]:
    """Convert ``--user`` values like ['alice:secret', ...] to a
    user -> password dict
    """
    users = {}
    for entry in userlist:
        name, sep, password = entry.partition(":")
        if not sep or not name:
            raise UsageError(f"Invalid user {entry!r}, expected NAME:PASSWORD", print_help=False)
        users[name] = password
    return users


def parse_listen(listen: str) -> tuple[str, int]:
    """Split an ``IP:PORT`` string into its parts"""
    host, sep, port = listen.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise UsageError(f"Invalid listen address {listen!r}, expected IP:PORT", print_help=False)
    return host, int(port)
