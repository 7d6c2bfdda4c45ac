"""Command-related data structures."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel


class CommandOutput(BaseModel):
    """Internal result from running one command on one server.

    A non-zero ``exit_code`` is not an error by itself: some tools use it as
    a signal (``dnf check-update`` exits 100 when updates exist).
    """

    command: str
    stdout: str = ""
    stderr: str = ""
    exit_code: Optional[int] = 0
    elapsed_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0
