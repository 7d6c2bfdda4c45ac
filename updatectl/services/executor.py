"""Run shell commands on the local host or over SSH.

Local commands use an asyncio subprocess. Remote commands use paramiko with
key-only authentication inside a thread pool so the event loop is never
blocked. One SSH session per call; nothing is pooled.
"""

from __future__ import annotations

import asyncio
import os
import shlex
import socket
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence, Union

import paramiko

from updatectl.config import Settings, settings
from updatectl.errors import (
    AuthenticationFailed,
    CommandFailed,
    CommandTimeout,
    ConnectionFailed,
    RemoteExecutionError,
    SshKeyNotFound,
)
from updatectl.models.commands import CommandOutput
from updatectl.models.server import LocalHost, RemoteHost, Server
from updatectl.services.retry import RetryPolicy, retry_async
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

Command = Union[str, Sequence[str]]

_POLL_INTERVAL = 0.05


def render_command(command: Command) -> str:
    """Shell text for *command*; argv lists are quoted element by element."""
    if isinstance(command, str):
        return command
    return shlex.join(command)


class RemoteExecutor:
    """Executes commands against :class:`Server` targets with timeout and retry."""

    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        ssh_key: Optional[str] = None,
        retry: RetryPolicy | None = None,
        max_workers: int = 16,
    ) -> None:
        self._cfg = cfg or settings
        self._ssh_key = ssh_key or self._cfg.ssh_key_path
        self._retry = retry or RetryPolicy.from_settings(self._cfg)
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ssh",
        )

    @property
    def ssh_key(self) -> Optional[str]:
        return self._ssh_key

    def default_timeout(self, target: Server) -> float:
        if target.is_local:
            return self._cfg.local_command_timeout_seconds
        return self._cfg.command_timeout_seconds

    # ── public ────────────────────────────────────────────────────────

    async def execute(
        self,
        target: Server,
        command: Command,
        timeout: Optional[float] = None,
    ) -> CommandOutput:
        """Run *command* on *target*.

        Transient failures (refused/reset connections, timeouts, DNS) are
        retried with exponential backoff. A non-zero exit status is returned,
        not raised.
        """
        timeout = timeout or self.default_timeout(target)
        text = render_command(command)

        async def attempt() -> CommandOutput:
            if isinstance(target.connection, LocalHost):
                return await self._run_local(command, timeout)
            return await self._run_remote(target.connection, text, timeout)

        log.debug("executor.run", server=target.name, command=text, timeout=timeout)
        out = await retry_async(
            attempt, policy=self._retry, operation=f"{target.name}: {text}",
        )
        log.debug(
            "executor.done",
            server=target.name,
            command=text,
            exit_code=out.exit_code,
            elapsed=round(out.elapsed_time, 3),
        )
        return out

    async def run_checked(
        self,
        target: Server,
        command: Command,
        timeout: Optional[float] = None,
    ) -> CommandOutput:
        """Like :meth:`execute` but raise :class:`CommandFailed` on non-zero exit."""
        out = await self.execute(target, command, timeout)
        if not out.ok:
            raise CommandFailed(
                target.display_host, out.command, out.exit_code, out.stderr or out.stdout,
            )
        return out

    async def command_exists(self, target: Server, path: str) -> bool:
        out = await self.execute(
            target, ["sh", "-c", f"test -x {shlex.quote(path)} && echo found"],
        )
        return out.ok and "found" in out.stdout

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ── local ─────────────────────────────────────────────────────────

    async def _run_local(self, command: Command, timeout: float) -> CommandOutput:
        argv = ["sh", "-c", command] if isinstance(command, str) else list(command)
        text = render_command(command)
        started = time.monotonic()
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            return CommandOutput(
                command=text,
                stderr=f"{argv[0]}: command not found",
                exit_code=127,
                elapsed_time=time.monotonic() - started,
            )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            log.warning("executor.local_timeout", command=text, timeout=timeout)
            raise CommandTimeout("local", timeout) from None
        return CommandOutput(
            command=text,
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
            exit_code=proc.returncode,
            elapsed_time=time.monotonic() - started,
        )

    # ── remote ────────────────────────────────────────────────────────

    async def _run_remote(
        self, conn: RemoteHost, command: str, timeout: float,
    ) -> CommandOutput:
        if self._ssh_key and not os.path.isfile(os.path.expanduser(self._ssh_key)):
            raise SshKeyNotFound(self._ssh_key)
        loop = asyncio.get_running_loop()
        started = time.monotonic()
        stdout, stderr, code = await loop.run_in_executor(
            self._executor,
            _ssh_exec_sync,
            conn,
            command,
            self._ssh_key,
            self._cfg.ssh_connect_timeout_seconds,
            timeout,
        )
        return CommandOutput(
            command=command,
            stdout=stdout,
            stderr=stderr,
            exit_code=code,
            elapsed_time=time.monotonic() - started,
        )


# ── module-level sync helpers (executor-friendly) ─────────────────────────

def _connect(
    conn: RemoteHost, key_path: Optional[str], connect_timeout: float,
) -> paramiko.SSHClient:
    client = paramiko.SSHClient()
    client.load_system_host_keys()
    # Same effect as StrictHostKeyChecking=accept-new
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
    try:
        client.connect(
            hostname=conn.host,
            username=conn.user,
            key_filename=os.path.expanduser(key_path) if key_path else None,
            look_for_keys=key_path is None,
            allow_agent=False,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
        )
    except Exception as exc:
        client.close()
        raise classify_ssh_error(conn.ssh_target, exc, connect_timeout) from exc
    return client


def _ssh_exec_sync(
    conn: RemoteHost,
    command: str,
    key_path: Optional[str],
    connect_timeout: float,
    timeout: float,
) -> tuple[str, str, Optional[int]]:
    client = _connect(conn, key_path, connect_timeout)
    try:
        transport = client.get_transport()
        if transport is None:
            raise ConnectionFailed(conn.ssh_target, "no transport after connect")
        chan = transport.open_session(timeout=connect_timeout)
        chan.exec_command(command)

        deadline = time.monotonic() + timeout
        out: list[bytes] = []
        err: list[bytes] = []
        while not chan.exit_status_ready():
            if chan.recv_ready():
                out.append(chan.recv(65535))
            elif chan.recv_stderr_ready():
                err.append(chan.recv_stderr(65535))
            elif time.monotonic() > deadline:
                # Closing the channel is best effort; the remote process may linger
                chan.close()
                raise CommandTimeout(conn.ssh_target, timeout)
            else:
                time.sleep(_POLL_INTERVAL)
        while chan.recv_ready():
            out.append(chan.recv(65535))
        while chan.recv_stderr_ready():
            err.append(chan.recv_stderr(65535))
        code = chan.recv_exit_status()
        return (
            b"".join(out).decode(errors="replace"),
            b"".join(err).decode(errors="replace"),
            code if code >= 0 else None,
        )
    except RemoteExecutionError:
        raise
    except Exception as exc:
        raise classify_ssh_error(conn.ssh_target, exc, timeout) from exc
    finally:
        client.close()


def classify_ssh_error(
    host: str, exc: BaseException, timeout: float,
) -> RemoteExecutionError:
    """Map paramiko/socket failures onto the error taxonomy."""
    if isinstance(exc, RemoteExecutionError):
        return exc
    if isinstance(exc, (paramiko.AuthenticationException, paramiko.PasswordRequiredException)):
        return AuthenticationFailed(host, str(exc))
    if isinstance(exc, socket.gaierror):
        return ConnectionFailed(host, f"name resolution failed: {exc}")
    if isinstance(exc, paramiko.ssh_exception.NoValidConnectionsError):
        return ConnectionFailed(host, "connection refused")
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return CommandTimeout(host, timeout)
    if isinstance(exc, (ConnectionRefusedError, ConnectionResetError, ConnectionAbortedError)):
        return ConnectionFailed(host, str(exc) or type(exc).__name__)
    text = str(exc)
    if "Connection reset" in text or "Connection refused" in text:
        return ConnectionFailed(host, text)
    if "Permission denied" in text:
        return AuthenticationFailed(host, text)
    return ConnectionFailed(host, text or type(exc).__name__, transient=False)


# ── Singleton instance ────────────────────────────────────────────────────

remote_executor = RemoteExecutor()
