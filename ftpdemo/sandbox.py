"""
Filesystem sandbox.

Every path a client sends is resolved against the configured root directory
here, and nowhere else. A path is accepted only when its canonical form
(``.``, ``..`` and symlinks resolved) is the root itself or lies below it.
"""

from __future__ import annotations

import logging
import os

from ftpdemo.exceptions import FilesystemError, NotConfigured, OutsideRoot

logger = logging.getLogger(__name__)


class PathSandbox:
    def __init__(self, root: str | os.PathLike[str]):
        root = os.path.realpath(os.fspath(root))
        if not os.path.isdir(root):
            raise NotConfigured(f"Root directory {root!r} does not exist")
        self.root: str = root
        self._prefix: str = root.rstrip("/")

    @classmethod
    def from_settings(cls, settings):
        return cls(settings.get("FTP_ROOT_DIR") or os.getcwd())

    def _join(self, cwd: str, path: str) -> str:
        if path.startswith("/"):
            return self._prefix + path
        base = self._prefix
        if cwd.strip("/"):
            base += "/" + cwd.strip("/")
        return base + "/" + path

    def contains(self, path: str) -> bool:
        return path == self.root or path.startswith(self._prefix + "/")

    def _canonical(self, joined: str) -> str:
        resolved = os.path.realpath(joined)
        if not self.contains(resolved):
            logger.debug("Rejected path %s, resolves outside of %s", joined, self.root)
            raise OutsideRoot()
        return resolved

    def resolve(self, cwd: str, path: str) -> str:
        """Return the canonical absolute path of ``path``, which is taken
        relative to the session directory ``cwd`` unless it starts with
        ``/``. Raise :exc:`OutsideRoot` if it escapes the root."""
        return self._canonical(self._join(cwd, path))

    def to_virtual(self, path: str) -> str:
        """Strip the root from a canonical path, giving the path a client
        sees."""
        return path[len(self._prefix) :] or "/"

    def resolve_directory(self, cwd: str, path: str) -> str:
        if not path:
            raise FilesystemError()
        resolved = self.resolve(cwd, path)
        if not os.path.isdir(resolved):
            raise FilesystemError()
        return resolved

    def resolve_file(self, cwd: str, path: str) -> str:
        if not path:
            raise FilesystemError()
        resolved = self.resolve(cwd, path)
        if resolved == self.root or not os.path.isfile(resolved):
            raise FilesystemError()
        return resolved

    def resolve_new_file(self, cwd: str, path: str) -> str:
        """Resolve the target of an upload.

        The parent directory must resolve inside the root and the target
        must not exist yet. Existence is checked again at creation time, as
        the file is opened in exclusive mode.
        """
        if ".." in path:
            raise OutsideRoot()
        parent, name = os.path.split(self._join(cwd, path))
        if not name:
            raise FilesystemError()
        parent = self._canonical(parent)
        if not os.path.isdir(parent):
            raise FilesystemError()
        target = os.path.join(parent, name)
        if os.path.lexists(target):
            raise FilesystemError()
        return target
