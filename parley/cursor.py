"""Resumption cursor persistence (single-token file)."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path


class CursorStore:
    """Stores one opaque token in a file.

    A missing or empty file means "no cursor". Writes go to a temporary file
    in the same directory and are renamed over the target, so readers see
    either the old or the new token.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> str:
        if not self.path.exists():
            return ""
        return self.path.read_text(encoding="utf-8", errors="replace").strip()

    def save(self, token: str) -> None:
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write((token or "").strip())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def clear(self) -> None:
        self.save("")
