from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def ftp_root(tmp_path: Path) -> Path:
    """A served directory with a file and a subdirectory, next to a file
    that must stay unreachable."""
    root = tmp_path / "root"
    (root / "pub").mkdir(parents=True)
    (root / "file.txt").write_bytes(b"hello world")
    (root / "pub" / "notes.txt").write_bytes(b"notes")
    (tmp_path / "secret.txt").write_bytes(b"secret")
    return root

