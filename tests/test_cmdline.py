from __future__ import annotations

import sys
from pathlib import Path
from subprocess import PIPE, Popen
from unittest import mock

import pytest

import ftpdemo
from ftpdemo.cmdline import _apply_options, _build_parser, execute
from ftpdemo.exceptions import UsageError
from ftpdemo.settings import Settings
from ftpdemo.utils.conf import arglist_to_dict, parse_listen, userlist_to_dict


def _apply(*args: str) -> Settings:
    settings = Settings()
    opts = _build_parser().parse_args(args)
    _apply_options(opts, settings)
    return settings


class TestConfUtils:
    def test_arglist_to_dict(self):
        assert arglist_to_dict(["arg1=val1", "arg2=val2=x"]) == {
            "arg1": "val1",
            "arg2": "val2=x",
        }

    def test_userlist_to_dict(self):
        assert userlist_to_dict(["bob:secret", "eve:a:b", "nopass:"]) == {
            "bob": "secret",
            "eve": "a:b",
            "nopass": "",
        }

    @pytest.mark.parametrize("entry", ["bob", ":secret"])
    def test_userlist_invalid(self, entry):
        with pytest.raises(UsageError) as excinfo:
            userlist_to_dict([entry])
        assert not excinfo.value.print_help

    def test_parse_listen(self):
        assert parse_listen("127.0.0.1:2121") == ("127.0.0.1", 2121)
        assert parse_listen("0.0.0.0:0") == ("0.0.0.0", 0)

    @pytest.mark.parametrize("listen", ["127.0.0.1", ":2121", "127.0.0.1:", "host:port"])
    def test_parse_listen_invalid(self, listen):
        with pytest.raises(UsageError):
            parse_listen(listen)


class TestApplyOptions:
    def test_defaults_untouched(self):
        settings = _apply()
        assert settings.getpriority("FTP_LISTEN_PORT") == 0
        assert settings.getpriority("FTP_ANONYMOUS") == 0
        assert settings.getbool("LOG_ENABLED")

    def test_listen_and_root(self, tmp_path: Path):
        settings = _apply("--listen", "0.0.0.0:2100", "--root", str(tmp_path))
        assert settings["FTP_LISTEN_IP"] == "0.0.0.0"
        assert settings.getint("FTP_LISTEN_PORT") == 2100
        assert settings["FTP_ROOT_DIR"] == str(tmp_path)
        assert settings.getpriority("FTP_ROOT_DIR") == 40

    def test_users(self):
        settings = _apply("--no-anonymous", "--user", "bob:secret", "--user", "eve:x")
        assert not settings.getbool("FTP_ANONYMOUS")
        assert settings.getdict("FTP_USERS") == {"bob": "secret", "eve": "x"}

    def test_set(self):
        settings = _apply("-s", "FTP_PORT_HOST_CHECK=none", "--set", "FTP_LISTEN_PORT=21")
        assert settings["FTP_PORT_HOST_CHECK"] == "none"
        assert settings.getint("FTP_LISTEN_PORT") == 21

    def test_explicit_options_win_over_set(self):
        settings = _apply("-s", "FTP_LISTEN_PORT=21", "--listen", "127.0.0.1:2200")
        assert settings.getint("FTP_LISTEN_PORT") == 2200

    def test_invalid_set(self):
        with pytest.raises(UsageError, match="Invalid -s value"):
            _apply("-s", "FTP_LISTEN_PORT")

    def test_logging(self, tmp_path: Path):
        settings = _apply("--logfile", str(tmp_path / "log.txt"), "-L", "info")
        assert settings["LOG_FILE"] == str(tmp_path / "log.txt")
        assert settings["LOG_LEVEL"] == "INFO"
        assert _apply("--nolog").getbool("LOG_ENABLED") is False


class TestExecute:
    @mock.patch("ftpdemo.cmdline.configure_logging")
    @mock.patch("ftpdemo.cmdline.FTPServer")
    def test_serve(self, server_cls, configure_logging, tmp_path: Path):
        execute(["ftpdemo", "--root", str(tmp_path), "--listen", "127.0.0.1:2200"])
        settings = server_cls.call_args[0][0]
        assert settings["FTP_ROOT_DIR"] == str(tmp_path)
        assert settings.getint("FTP_LISTEN_PORT") == 2200
        configure_logging.assert_called_once_with(settings)
        server_cls.return_value.run.assert_called_once_with()

    @mock.patch("ftpdemo.cmdline.configure_logging")
    def test_missing_root(self, configure_logging, tmp_path: Path, capsys):
        with pytest.raises(SystemExit) as excinfo:
            execute(["ftpdemo", "--root", str(tmp_path / "missing")])
        assert excinfo.value.code == 2
        assert "does not exist" in capsys.readouterr().err

    def test_usage_error(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            execute(["ftpdemo", "--user", "nopassword"])
        assert excinfo.value.code == 2
        assert "expected NAME:PASSWORD" in capsys.readouterr().err

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as excinfo:
            execute(["ftpdemo", "--version"])
        assert excinfo.value.code == 0
        assert capsys.readouterr().out.strip() == f"ftpdemo {ftpdemo.__version__}"


def test_module_entry_point():
    proc = Popen(
        (sys.executable, "-m", "ftpdemo", "--version"), stdout=PIPE, stderr=PIPE
    )
    out, _ = proc.communicate()
    assert out.decode().strip() == f"ftpdemo {ftpdemo.__version__}"
