"""Mutating-command classifier.

Read-only paths (detection, dry runs, cleanup analysis) check every command
against these patterns before it is sent; cleanup execution additionally
refuses anything that would delete a volume.
"""

from __future__ import annotations

import re

from updatectl.utils.logging import get_logger

log = get_logger(__name__)

# ── volume deletion (never allowed, in any mode) ─────────────────────────
VOLUME_DELETE_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"\bdocker\s+volume\s+(rm|remove|prune)\b", re.I),
    re.compile(r"\bdocker\s+(system|container)\s+prune\b.*\s--volumes\b", re.I),
    re.compile(r"\bdocker\s+(rm|container\s+rm)\b.*\s(-v|--volumes)\b", re.I),
]

# ── state-changing commands ───────────────────────────────────────────────
MUTATING_PATTERNS: list[re.Pattern[str]] = [
    re.compile(r"(^|[\s;&|])sudo\b", re.I),
    re.compile(
        r"\bapt(-get)?\s+(-\S+\s+)*"
        r"(install|upgrade|full-upgrade|dist-upgrade|remove|purge|autoremove|update)\b",
        re.I,
    ),
    re.compile(
        r"\bdnf\s+(-\S+\s+)*"
        r"(upgrade|update|install|remove|erase|distro-sync|downgrade|reinstall)\b",
        re.I,
    ),
    re.compile(r"\bpacman\s+(-\S*[SRU]\S*)\b"),
    re.compile(r"\bdocker\s+(pull|restart|stop|start|kill|rm|rmi|run|create|update)\b", re.I),
    re.compile(r"\bdocker\s+(image|container|network|volume|builder|system)\s+(prune|rm)\b", re.I),
    re.compile(r"\bdocker\s+(buildx\s+)?prune\b", re.I),
    re.compile(r"(^|[\s;&|])(reboot|shutdown|poweroff)\b", re.I),
    re.compile(r"(^|[\s;&|])rm\s", re.I),
]


class CommandClassification:
    __slots__ = ("mutating", "reason")

    def __init__(self, mutating: bool, reason: str):
        self.mutating = mutating
        self.reason = reason

    def __bool__(self) -> bool:
        return self.mutating


def classify_command(command: str) -> CommandClassification:
    cmd = command.strip()
    if not cmd:
        return CommandClassification(False, "empty command")

    for pat in VOLUME_DELETE_PATTERNS:
        if pat.search(cmd):
            return CommandClassification(True, f"deletes volumes: {pat.pattern}")

    for pat in MUTATING_PATTERNS:
        if pat.search(cmd):
            return CommandClassification(True, f"mutating: {pat.pattern}")

    return CommandClassification(False, "read-only")


def is_mutating(command: str) -> bool:
    return classify_command(command).mutating


def deletes_volumes(command: str) -> bool:
    return any(pat.search(command) for pat in VOLUME_DELETE_PATTERNS)


class ReadOnlyViolation(RuntimeError):
    """A read-only code path tried to issue a state-changing command."""


def ensure_read_only(command: str) -> None:
    result = classify_command(command)
    if result.mutating:
        log.error("command_filter.blocked", command=command, reason=result.reason)
        raise ReadOnlyViolation(f"refusing mutating command in read-only mode: {command}")


def ensure_keeps_volumes(command: str) -> None:
    if deletes_volumes(command):
        log.error("command_filter.volume_delete_blocked", command=command)
        raise ReadOnlyViolation(f"refusing to delete volumes: {command}")
