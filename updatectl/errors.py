"""Exception hierarchy shared by every component.

Services raise these; the orchestrator captures them per server and the
webhook routers translate :class:`WebhookError` into HTTP status codes.
"""

from __future__ import annotations

from typing import Optional


class UpdatectlError(Exception):
    """Base class for all errors raised by this package."""


# ── server configuration ──────────────────────────────────────────────────

class ServerConfigError(UpdatectlError):
    pass


class MalformedServerSpec(ServerConfigError):
    def __init__(self, spec: str, reason: str = "") -> None:
        self.spec = spec
        detail = f": {reason}" if reason else ""
        super().__init__(f"Invalid server format '{spec}'{detail}")


class UnknownServer(ServerConfigError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown server: {name}")


class EmptyServerList(ServerConfigError):
    def __init__(self) -> None:
        super().__init__("No servers configured")


# ── remote execution ──────────────────────────────────────────────────────

class RemoteExecutionError(UpdatectlError):
    """A command could not be run (or completed unsuccessfully) on a host.

    ``transient`` marks failures worth retrying: refused or reset
    connections, timeouts and name-resolution failures.
    """

    transient: bool = False

    def __init__(self, host: str, message: str) -> None:
        self.host = host
        super().__init__(message)


class ConnectionFailed(RemoteExecutionError):
    def __init__(self, host: str, reason: str, *, transient: bool = True) -> None:
        self.reason = reason
        self.transient = transient
        super().__init__(host, f"SSH connection to {host} failed: {reason}")


class CommandTimeout(RemoteExecutionError):
    transient = True

    def __init__(self, host: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(host, f"Command on {host} timed out after {timeout:g}s")


class AuthenticationFailed(RemoteExecutionError):
    def __init__(self, host: str, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(host, f"SSH authentication failed for {host}{detail}")


class SshKeyNotFound(RemoteExecutionError):
    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__("", f"SSH key not found: {path}")


class CommandFailed(RemoteExecutionError):
    def __init__(
        self,
        host: str,
        command: str,
        exit_code: Optional[int],
        stderr: str = "",
    ) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        msg = f"'{command}' failed on {host} (exit {exit_code})"
        if stderr.strip():
            msg += f": {stderr.strip()[:300]}"
        super().__init__(host, msg)


# ── updates ───────────────────────────────────────────────────────────────

class UpdateError(UpdatectlError):
    pass


class NoPackageManager(UpdateError):
    def __init__(self, server: str) -> None:
        self.server = server
        super().__init__(
            f"No supported package manager found on {server} (apt, dnf, pacman)",
        )


class UpdateCheckFailed(UpdateError):
    pass


class UpdateApplyFailed(UpdateError):
    pass


class RegistryUnreachable(UpdateError):
    def __init__(self, image: str, reason: str = "") -> None:
        self.image = image
        detail = f": {reason}" if reason else ""
        super().__init__(f"Registry lookup failed for {image}{detail}")


# ── docker ────────────────────────────────────────────────────────────────

class DockerError(UpdatectlError):
    pass


class DockerUnavailable(DockerError):
    pass


class DockerResourceBusy(DockerError):
    pass


class DockerInvalidResponse(DockerError):
    pass


DAEMON_DOWN_MARKERS = (
    "cannot connect to the docker daemon",
    "is the docker daemon running",
    "permission denied while trying to connect",
)


def docker_failure(command: str, server: str, stderr: str) -> DockerError:
    """Pick the :class:`DockerError` subclass matching a failed docker call."""
    detail = f"{command} failed on {server}: {stderr.strip()[:300]}"
    text = stderr.lower()
    if any(marker in text for marker in DAEMON_DOWN_MARKERS):
        return DockerUnavailable(detail)
    if "in use" in text or "conflict" in text:
        return DockerResourceBusy(detail)
    return DockerError(detail)



# ── webhook ───────────────────────────────────────────────────────────────

class WebhookError(UpdatectlError):
    status_code = 500


class Unauthorized(WebhookError):
    status_code = 401

    def __init__(self) -> None:
        super().__init__("Invalid token")


class BadRequest(WebhookError):
    status_code = 400


# ── notifications ─────────────────────────────────────────────────────────

class NotificationError(UpdatectlError):
    def __init__(self, backend: str, reason: str) -> None:
        self.backend = backend
        super().__init__(f"{backend} notification failed: {reason}")
