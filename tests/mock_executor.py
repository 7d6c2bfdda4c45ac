"""Mock executor for testing without real hosts.

Provides canned apt/docker outputs keyed by command prefix, records every
command it is asked to run, and can make individual servers fail or stall.
"""

from __future__ import annotations

import asyncio
import json
from typing import Optional, Union

from updatectl.config import Settings
from updatectl.models.commands import CommandOutput
from updatectl.models.server import Server
from updatectl.services.executor import Command, render_command

# ── Canned outputs ────────────────────────────────────────────────────────

APT_UPGRADABLE = """\
Listing... Done
curl/jammy-updates 7.81.0-1ubuntu1.16 amd64 [upgradable from: 7.81.0-1ubuntu1.15]
bash/jammy-updates 5.1-6ubuntu1.1 amd64 [upgradable from: 5.1-6ubuntu1]
"""

DOCKER_IMAGES_JSON = "\n".join(
    json.dumps(row) for row in [
        {"Repository": "nginx", "Tag": "latest", "ID": "a1b2c3", "Size": "187MB"},
        {"Repository": "redis", "Tag": "7", "ID": "d4e5f6", "Size": "138MB"},
        {"Repository": "<none>", "Tag": "<none>", "ID": "0badc0de", "Size": "200MB"},
        {"Repository": "nginx", "Tag": "latest", "ID": "a1b2c3", "Size": "187MB"},
    ]
) + "\n"

DOCKER_IMAGES_PLAIN = "nginx:latest\nredis:7\n<none>:<none>\n"

DANGLING_IMAGES_JSON = "\n".join(
    json.dumps({"ID": f"sha{i}", "Repository": "<none>", "Tag": "<none>", "Size": size})
    for i, size in enumerate(["200MB", "200MB", "100MB"])
) + "\n"

NETWORKS_JSON = "\n".join(
    json.dumps({"ID": nid, "Name": name, "Driver": driver})
    for nid, name, driver in [
        ("n0", "bridge", "bridge"),
        ("n1", "host", "host"),
        ("n2", "none", "null"),
        ("n3", "old_frontend", "bridge"),
        ("n4", "old_backend", "bridge"),
        ("n5", "app_default", "bridge"),
    ]
) + "\n"

SYSTEM_DF_JSON = json.dumps({
    "BuildCache": [
        {"ID": "bc1", "CacheType": "regular", "Size": "1.5GB", "InUse": False, "Shared": False},
        {"ID": "bc2", "CacheType": "regular", "Size": "512MB", "InUse": True, "Shared": False},
    ],
    "Volumes": [
        {"Name": "pgdata", "Driver": "local", "Mountpoint": "/var/lib/docker/volumes/pgdata/_data",
         "Size": "2GB", "Links": 1},
        {"Name": "scratch", "Driver": "local", "Mountpoint": "/var/lib/docker/volumes/scratch/_data",
         "Size": "10MB", "Links": 0},
    ],
}) + "\n"

PS_ALL_JSON = "\n".join(
    json.dumps(row) for row in [
        {"ID": "c1", "Names": "web", "State": "running", "Status": "Up 3 days",
         "CreatedAt": "2024-01-15 10:30:45 +0000 UTC"},
        {"ID": "c2", "Names": "old_job", "State": "exited", "Status": "Exited (0) 3 months ago",
         "CreatedAt": "2020-01-15 10:30:45 +0000 UTC"},
        {"ID": "c3", "Names": "recent_job", "State": "exited", "Status": "Exited (0) 1 hour ago",
         "CreatedAt": "2099-01-01 00:00:00 +0000 UTC"},
    ]
) + "\n"

LOG_INSPECT_OUTPUT = (
    'c1|/web|/var/lib/docker/containers/c1/c1-json.log|{"max-size":"10m"}\n'
    "c2|/old_job|/var/lib/docker/containers/c2/c2-json.log|{}\n"
    "c4|/chatty|/var/lib/docker/containers/c4/c4-json.log|{}\n"
    "c3|/recent_job||{}\n"
)

LOG_STAT_OUTPUT = """\
157286400 /var/lib/docker/containers/c1/c1-json.log
1048576 /var/lib/docker/containers/c2/c2-json.log
524288000 /var/lib/docker/containers/c4/c4-json.log
"""

IMAGE_PRUNE_OUTPUT = """\
Deleted Images:
deleted: sha256:1111
deleted: sha256:2222
deleted: sha256:3333

Total reclaimed space: 500MB
"""

NETWORK_PRUNE_OUTPUT = """\
Deleted Networks:
old_frontend
old_backend
"""

_CANNED: dict[str, str] = {
    "apt list --upgradable": APT_UPGRADABLE,
    "docker images --format '{{json .}}'": DOCKER_IMAGES_JSON,
    "docker images --format '{{.Repository}}:{{.Tag}}'": DOCKER_IMAGES_PLAIN,
    "docker image inspect nginx:latest": "nginx@sha256:aaa\n",
    "docker image inspect redis:7": "redis@sha256:bbb\n",
    "docker image ls --filter dangling=true": DANGLING_IMAGES_JSON,
    "docker network ls": NETWORKS_JSON,
    "docker network inspect old_frontend": "{}\n",
    "docker network inspect old_backend": "null\n",
    "docker network inspect app_default": '{"abc": {"Name": "web"}}\n',
    "docker system df": SYSTEM_DF_JSON,
    "docker ps -a --filter volume=pgdata": "db|Up 2 days\n",
    "docker ps -a --format '{{json .}}'": PS_ALL_JSON,
    "docker ps -aq": "c1\nc2\nc3\nc4\n",
    "docker inspect --format": LOG_INSPECT_OUTPUT,
    "stat -c": LOG_STAT_OUTPUT,
    "docker image prune -f": IMAGE_PRUNE_OUTPUT,
    "docker network prune -f": NETWORK_PRUNE_OUTPUT,
    "docker ps --format '{{.Names}}:{{.Image}}' --filter ancestor=nginx:latest": (
        "web:nginx:latest\nupdatectl_webhook:nginx:latest\n"
    ),
}

Canned = Union[str, CommandOutput]

WEBHOOK_SECRET = "s3cret-token-that-is-long-enough-for-prod"


def make_settings(**overrides) -> Settings:
    """Three-server settings that ignore any local .env file."""
    values = {
        "update_servers": "web:admin@10.0.0.5,db:admin@10.0.0.6,nas:local",
        "updatectl_webhook_secret": WEBHOOK_SECRET,
        "updatectl_gotify_key": "",
        "updatectl_ntfy_topic": "",
        "retry_initial_delay_ms": 1,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)



# ── Mock executor ────────────────────────────────────────────────────────


class MockExecutor:
    """Drop-in replacement for RemoteExecutor using canned outputs."""

    def __init__(self) -> None:
        self.sent_commands: list[tuple[str, str]] = []
        self.binaries: dict[str, set[str]] = {}
        self.default_binaries = {"/usr/bin/apt", "/usr/bin/docker"}
        self.failures: dict[str, Exception] = {}
        self.delays: dict[str, float] = {}
        self._extra: dict[tuple[str, str], Canned] = {}
        self._sequences: dict[tuple[str, str], list[str]] = {}

    # ── configuration ─────────────────────────────────────────────────

    def add_response(
        self,
        prefix: str,
        output: Canned,
        server: str = "*",
        exit_code: int = 0,
        stderr: str = "",
    ) -> None:
        """Add or override a canned response for commands starting with *prefix*."""
        if isinstance(output, str):
            output = CommandOutput(
                command=prefix, stdout=output, stderr=stderr, exit_code=exit_code,
            )
        self._extra[(server, prefix)] = output

    def add_sequence(self, prefix: str, *outputs: str, server: str = "*") -> None:
        """Successive calls get successive outputs; the last one repeats."""
        self._sequences[(server, prefix)] = list(outputs)

    def set_binaries(self, server: str, *paths: str) -> None:
        self.binaries[server] = set(paths)

    def fail(self, server: str, exc: Exception) -> None:
        self.failures[server] = exc

    def commands_for(self, server: str) -> list[str]:
        return [cmd for srv, cmd in self.sent_commands if srv == server]

    # ── lookup ────────────────────────────────────────────────────────

    def _lookup(self, server: str, command: str) -> CommandOutput:
        for (srv, prefix), outputs in self._sequences.items():
            if srv in (server, "*") and command.startswith(prefix):
                text = outputs.pop(0) if len(outputs) > 1 else outputs[0]
                return CommandOutput(command=command, stdout=text)
        best: Optional[tuple[int, Canned]] = None
        for (srv, prefix), out in self._extra.items():
            if srv in (server, "*") and command.startswith(prefix):
                rank = len(prefix) + (1_000_000 if srv == server else 0)
                if best is None or rank > best[0]:
                    best = (rank, out)
        if best is not None:
            return best[1].model_copy(update={"command": command})
        for prefix in sorted(_CANNED, key=len, reverse=True):
            if command.startswith(prefix):
                return CommandOutput(command=command, stdout=_CANNED[prefix])
        return CommandOutput(command=command)

    # ── RemoteExecutor interface ──────────────────────────────────────

    async def execute(
        self, target: Server, command: Command, timeout: Optional[float] = None,
    ) -> CommandOutput:
        text = render_command(command)
        self.sent_commands.append((target.name, text))
        if target.name in self.delays:
            await asyncio.sleep(self.delays[target.name])
        if target.name in self.failures:
            raise self.failures[target.name]
        if text.startswith("sh -c 'test -x "):
            path = text[len("sh -c 'test -x "):].split(" ", 1)[0]
            present = self.binaries.get(target.name, self.default_binaries)
            found = path in present
            return CommandOutput(
                command=text, stdout="found\n" if found else "", exit_code=0 if found else 1,
            )
        return self._lookup(target.name, text)

    async def run_checked(
        self, target: Server, command: Command, timeout: Optional[float] = None,
    ) -> CommandOutput:
        return await self.execute(target, command, timeout)

    async def command_exists(self, target: Server, path: str) -> bool:
        out = await self.execute(target, ["sh", "-c", f"test -x {path} && echo found"])
        return out.ok and "found" in out.stdout


class StaticDigests:
    """Digest source returning fixed registry digests; raises for unknown images."""

    def __init__(self, digests: dict[str, Optional[str]]) -> None:
        self.digests = digests
        self.queried: list[str] = []

    async def remote_digest(self, target: Server, image: str) -> Optional[str]:
        self.queried.append(image)
        value = self.digests[image]
        if isinstance(value, Exception):
            raise value
        return value


class RecordingSink:
    """Notification sink that remembers what it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def notify(self, title: str, message: str, **kwargs) -> dict[str, bool]:
        self.sent.append((title, message))
        return {"recording": True}
