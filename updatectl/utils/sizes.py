"""Docker size strings <-> byte counts."""

from __future__ import annotations

import re
from typing import Optional

_KB = 1024
_MB = _KB * 1024
_GB = _MB * 1024

_UNITS = {"TB": _GB * 1024, "GB": _GB, "MB": _MB, "KB": _KB, "B": 1}
_SIZE_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+)\s*([KMGT]?B)?\s*$", re.I)
_RECLAIMED_RE = re.compile(r"(?:Total reclaimed space|reclaimed):\s*(\S+)", re.I)


def parse_docker_size(text: str) -> int:
    """Parse ``1.5GB`` / ``250MB`` / ``1.2kB`` / ``0B``; unknown input gives 0."""
    m = _SIZE_RE.match(text or "")
    if not m:
        return 0
    unit = (m.group(2) or "B").upper()
    return int(float(m.group(1)) * _UNITS[unit])


def parse_reclaimed_space(output: str) -> Optional[int]:
    """Byte count from prune output ("Total reclaimed space: 1.2GB"), if reported."""
    for line in output.splitlines():
        m = _RECLAIMED_RE.search(line)
        if m:
            return parse_docker_size(m.group(1))
    return None


def format_bytes(n: int) -> str:
    if n >= _GB:
        return f"{n / _GB:.2f}GB"
    if n >= _MB:
        return f"{n // _MB}MB"
    if n >= _KB:
        return f"{n // _KB}KB"
    return f"{n}B"


_THRESHOLD_RE = re.compile(r"^\s*([0-9]+)\s*([KMG])?B?\s*$", re.I)
_SUFFIXES = {"K": _KB, "M": _MB, "G": _GB}


def parse_size_threshold(text: str) -> int:
    """``100M`` / ``1G`` / ``500K`` / ``4096`` → bytes.

    Raises :class:`ValueError` for anything else.
    """
    m = _THRESHOLD_RE.match(text or "")
    if not m:
        raise ValueError(f"invalid size threshold: {text!r}")
    return int(m.group(1)) * _SUFFIXES.get((m.group(2) or "").upper(), 1)
