"""Server list parsing and name resolution.

Grammar, one entry per comma-separated item::

    name:user@host     named remote server
    user@host          remote server named after its host
    name:local         named alias for this machine (``localhost`` works too)
    local              this machine, under the configured local name

Pure parsing: no network I/O, safe to call from any thread.
"""

from __future__ import annotations

from typing import Iterable, Iterator

from updatectl.config import Settings, settings
from updatectl.errors import EmptyServerList, MalformedServerSpec, UnknownServer
from updatectl.models.server import Server

LOCAL_ALIASES = frozenset({"local", "localhost"})


def is_local_alias(text: str) -> bool:
    return text.strip().lower() in LOCAL_ALIASES


def _remote(name: str, target: str, spec: str) -> Server:
    user, sep, host = target.partition("@")
    user, host = user.strip(), host.strip()
    if not sep or not user or not host or "@" in host:
        raise MalformedServerSpec(spec, "expected user@host")
    return Server.remote(name=name or host, user=user, host=host)


def parse_server_spec(
    entry: str,
    *,
    local_name: str = "localhost",
    local_display: str = "local",
) -> Server:
    """Parse one registry entry into a :class:`Server`."""
    spec = entry.strip()
    if not spec:
        raise MalformedServerSpec(entry, "empty entry")

    parts = spec.split(":")
    if len(parts) == 1:
        if is_local_alias(spec):
            return Server.local(local_name, local_display)
        return _remote("", spec, spec)

    if len(parts) == 2:
        name, target = parts[0].strip(), parts[1].strip()
        if not name:
            raise MalformedServerSpec(spec, "missing name before ':'")
        if is_local_alias(target):
            return Server.local(name, local_display)
        return _remote(name, target, spec)

    raise MalformedServerSpec(spec, "too many ':' separators")


def parse_servers(
    spec: str,
    *,
    local_name: str = "localhost",
    local_display: str = "local",
) -> list[Server]:
    """Parse a comma-separated list; later duplicates replace earlier ones."""
    by_name: dict[str, Server] = {}
    for entry in spec.split(","):
        if not entry.strip():
            continue
        server = parse_server_spec(
            entry, local_name=local_name, local_display=local_display,
        )
        by_name[server.name] = server
    return list(by_name.values())


class ServerRegistry:
    """Configured servers, in configuration order, keyed by name."""

    def __init__(
        self,
        servers: Iterable[Server] = (),
        *,
        local_name: str = "localhost",
        local_display: str = "local",
    ) -> None:
        self._local_name = local_name
        self._local_display = local_display
        self._servers: dict[str, Server] = {}
        for server in servers:
            self._servers[server.name] = server

    @classmethod
    def parse(cls, spec: str, cfg: Settings | None = None) -> ServerRegistry:
        cfg = cfg or settings
        servers = parse_servers(
            spec,
            local_name=cfg.update_local_name,
            local_display=cfg.update_local_display,
        )
        return cls(
            servers,
            local_name=cfg.update_local_name,
            local_display=cfg.update_local_display,
        )

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> ServerRegistry:
        """Registry from ``UPDATE_SERVERS``; just this machine when unset."""
        cfg = cfg or settings
        if cfg.update_servers.strip():
            return cls.parse(cfg.update_servers, cfg)
        return cls(
            [Server.local(cfg.update_local_name, cfg.update_local_display)],
            local_name=cfg.update_local_name,
            local_display=cfg.update_local_display,
        )

    # ── lookup ────────────────────────────────────────────────────────

    @property
    def local_server(self) -> Server:
        return Server.local(self._local_name, self._local_display)

    def resolve(self, name_or_spec: str, *, allow_adhoc: bool = True) -> Server:
        """Resolve a configured name, a local keyword, or an ad-hoc spec.

        With ``allow_adhoc=False`` only configured names and local keywords
        resolve; anything else raises :class:`UnknownServer`.
        """
        key = name_or_spec.strip()
        if is_local_alias(key):
            return self.local_server
        if key in self._servers:
            return self._servers[key]
        if allow_adhoc and ("@" in key or ":" in key):
            return parse_server_spec(
                key, local_name=self._local_name, local_display=self._local_display,
            )
        raise UnknownServer(key)

    def resolve_many(self, names: str | Iterable[str]) -> list[Server]:
        """Resolve several entries, keeping request order and dropping repeats."""
        if isinstance(names, str):
            names = names.split(",")
        resolved: dict[str, Server] = {}
        for name in names:
            if not name.strip():
                continue
            server = self.resolve(name)
            resolved.setdefault(server.name, server)
        if not resolved:
            raise EmptyServerList()
        return list(resolved.values())

    def all(self) -> list[Server]:
        if not self._servers:
            raise EmptyServerList()
        return list(self._servers.values())

    def names(self) -> list[str]:
        return list(self._servers)

    def __iter__(self) -> Iterator[Server]:
        return iter(self._servers.values())

    def __len__(self) -> int:
        return len(self._servers)

    def __contains__(self, name: object) -> bool:
        return name in self._servers
