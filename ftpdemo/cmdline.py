from __future__ import annotations

import argparse
import sys
from typing import TYPE_CHECKING

import ftpdemo
from ftpdemo.exceptions import NotConfigured, UsageError
from ftpdemo.server import FTPServer
from ftpdemo.settings import Settings
from ftpdemo.utils.conf import arglist_to_dict, parse_listen, userlist_to_dict
from ftpdemo.utils.log import configure_logging, log_ftpdemo_info, log_reactor_info

if TYPE_CHECKING:
    from collections.abc import Callable

    # typing.ParamSpec requires Python 3.10
    from typing_extensions import ParamSpec

    from ftpdemo.settings import BaseSettings

    _P = ParamSpec("_P")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ftpdemo",
        description="Serve a directory over FTP",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {ftpdemo.__version__}"
    )
    parser.add_argument(
        "--listen",
        metavar="IP:PORT",
        help="address to listen on for control connections (default: 127.0.0.1:2121)",
    )
    parser.add_argument(
        "--root", metavar="DIR", help="directory to serve (default: current directory)"
    )
    parser.add_argument(
        "--no-anonymous",
        dest="anonymous",
        action="store_false",
        default=None,
        help="refuse anonymous logins",
    )
    parser.add_argument(
        "--user",
        dest="users",
        action="append",
        default=[],
        metavar="NAME:PASSWORD",
        help="add a user account (may be repeated)",
    )
    parser.add_argument(
        "-s",
        "--set",
        action="append",
        default=[],
        metavar="NAME=VALUE",
        help="set/override setting (may be repeated)",
    )
    group = parser.add_argument_group(title="Logging options")
    group.add_argument("--logfile", metavar="FILE", help="log file. if omitted stderr will be used")
    group.add_argument(
        "-L",
        "--loglevel",
        metavar="LEVEL",
        help="log level (default: DEBUG)",
    )
    group.add_argument("--nolog", action="store_true", help="disable logging completely")
    return parser


def _apply_options(opts: argparse.Namespace, settings: BaseSettings) -> None:
    try:
        settings.update(arglist_to_dict(opts.set), priority="cmdline")
    except ValueError:
        raise UsageError("Invalid -s value, use -s NAME=VALUE", print_help=False)

    if opts.listen:
        host, port = parse_listen(opts.listen)
        settings.set("FTP_LISTEN_IP", host, priority="cmdline")
        settings.set("FTP_LISTEN_PORT", port, priority="cmdline")
    if opts.root:
        settings.set("FTP_ROOT_DIR", opts.root, priority="cmdline")
    if opts.anonymous is not None:
        settings.set("FTP_ANONYMOUS", opts.anonymous, priority="cmdline")
    if opts.users:
        users = settings.getdict("FTP_USERS")
        users.update(userlist_to_dict(opts.users))
        settings.set("FTP_USERS", users, priority="cmdline")

    if opts.logfile:
        settings.set("LOG_ENABLED", True, priority="cmdline")
        settings.set("LOG_FILE", opts.logfile, priority="cmdline")
    if opts.loglevel:
        settings.set("LOG_ENABLED", True, priority="cmdline")
        settings.set("LOG_LEVEL", opts.loglevel.upper(), priority="cmdline")
    if opts.nolog:
        settings.set("LOG_ENABLED", False, priority="cmdline")


def _run_print_help(
    parser: argparse.ArgumentParser,
    func: Callable[_P, None],
    *a: _P.args,
    **kw: _P.kwargs,
) -> None:
    try:
        func(*a, **kw)
    except UsageError as e:
        if str(e):
            parser.error(str(e))
        if e.print_help:
            parser.print_help()
        sys.exit(2)


def _serve(settings: BaseSettings) -> None:
    configure_logging(settings)
    log_ftpdemo_info(settings)
    log_reactor_info()
    try:
        server = FTPServer(settings)
    except NotConfigured as e:
        raise UsageError(str(e), print_help=False)
    server.run()


def execute(argv: list[str] | None = None, settings: BaseSettings | None = None) -> None:
    if argv is None:
        argv = sys.argv
    if settings is None:
        settings = Settings()

    parser = _build_parser()
    opts = parser.parse_args(argv[1:])
    _run_print_help(parser, _apply_options, opts, settings)
    _run_print_help(parser, _serve, settings)


if __name__ == "__main__":
    execute()
