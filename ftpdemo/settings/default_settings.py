"""This module contains the default values for all settings used by ftpdemo.

If you add a setting here remember to:

* add it in alphabetical order, with the exception that enabling flags and
  other high-level settings for a group should come first in their group
  and pairs like host/port and user/password should be in the usual order
* group similar settings without leaving blank lines
"""

__all__ = [
    "FTP_ANONYMOUS",
    "FTP_DIRECTORY_LISTER",
    "FTP_LISTEN_IP",
    "FTP_LISTEN_PORT",
    "FTP_PASSIVE_BIND_ATTEMPTS",
    "FTP_PASSIVE_PORT_HIGH",
    "FTP_PORT_HOST_CHECK",
    "FTP_ROOT_DIR",
    "FTP_TRANSFER_CHUNK_SIZE",
    "FTP_USERS",
    "LOG_DATEFORMAT",
    "LOG_ENABLED",
    "LOG_ENCODING",
    "LOG_FILE",
    "LOG_FILE_APPEND",
    "LOG_FORMAT",
    "LOG_LEVEL",
    "LOG_SHORT_NAMES",
]

FTP_ANONYMOUS = True
FTP_DIRECTORY_LISTER = "ftpdemo.transfer.LsDirectoryLister"
FTP_LISTEN_IP = "127.0.0.1"
FTP_LISTEN_PORT = 2121
FTP_PASSIVE_BIND_ATTEMPTS = 10
# bounds of the high octet of a passive port, both inclusive
FTP_PASSIVE_PORT_HIGH = [100, 256]
# "require", "reject" or "none", see ftpdemo.dispatcher.parse_port
FTP_PORT_HOST_CHECK = "require"
FTP_ROOT_DIR = None  # defaults to the process working directory
FTP_TRANSFER_CHUNK_SIZE = 1024
FTP_USERS = {}

LOG_ENABLED = True
LOG_DATEFORMAT = "%Y-%m-%d %H:%M:%S"
LOG_ENCODING = "utf-8"
LOG_FILE = None
LOG_FILE_APPEND = True
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_LEVEL = "DEBUG"
LOG_SHORT_NAMES = False
