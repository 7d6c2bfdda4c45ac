"""Notification sink: Gotify and ntfy over httpx.

Backends without credentials are skipped. Delivery failures are logged and
never raised to the caller.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol, Sequence
from urllib.parse import urlencode

import httpx

from updatectl.config import Settings, settings
from updatectl.errors import NotificationError
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

MAX_NTFY_ACTIONS = 4


class NotificationBackend(Protocol):
    name: str

    @property
    def enabled(self) -> bool: ...

    async def send(
        self,
        client: httpx.AsyncClient,
        title: str,
        message: str,
        actions: Sequence[dict[str, Any]] = (),
    ) -> None: ...


class GotifyBackend:
    name = "gotify"

    def __init__(self, cfg: Settings) -> None:
        self._url = cfg.gotify_url
        self._token = cfg.gotify_token()

    @property
    def enabled(self) -> bool:
        return bool(self._token)

    async def send(self, client, title, message, actions=()) -> None:
        resp = await client.post(
            self._url,
            headers={"X-Gotify-Key": self._token or ""},
            json={"title": title, "message": message, "priority": 5},
        )
        if resp.status_code >= 400:
            raise NotificationError(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}")


class NtfyBackend:
    name = "ntfy"

    def __init__(self, cfg: Settings) -> None:
        self._url = cfg.ntfy_url.rstrip("/")
        self._topic = cfg.updatectl_ntfy_topic
        self._auth = cfg.ntfy_auth

    @property
    def enabled(self) -> bool:
        return bool(self._topic)

    async def send(self, client, title, message, actions=()) -> None:
        payload: dict[str, Any] = {
            "topic": self._topic,
            "title": title,
            "message": message,
            "priority": 4,
            "markdown": True,
        }
        if actions:
            payload["actions"] = list(actions)[:MAX_NTFY_ACTIONS]
        headers = {"Authorization": f"Bearer {self._auth}"} if self._auth else {}
        resp = await client.post(self._url, headers=headers, json=payload)
        if resp.status_code >= 400:
            raise NotificationError(self.name, f"HTTP {resp.status_code}: {resp.text[:200]}")


def webhook_actions(
    server: str,
    cfg: Settings | None = None,
    *,
    os_updates: bool = False,
    docker_updates: bool = False,
) -> list[dict[str, Any]]:
    """ntfy buttons that call back into the webhook server for *server*."""
    cfg = cfg or settings
    base = cfg.updatectl_webhook_url.rstrip("/")
    secret = cfg.updatectl_webhook_secret
    if not base or not secret:
        return []

    def action(label: str, path: str) -> dict[str, Any]:
        query = urlencode({"server": server, "token": secret})
        return {
            "action": "http",
            "label": label,
            "url": f"{base}{path}?{query}",
            "method": "POST",
            "clear": True,
        }

    actions = []
    if os_updates:
        actions.append(action(f"Update OS ({server})", "/webhook/update/os"))
    if docker_updates:
        actions.append(action(f"Update Docker ({server})", "/webhook/update/docker/all"))
    actions.append(action(f"Cleanup ({server})", "/webhook/cleanup/safe"))
    return actions[:MAX_NTFY_ACTIONS]


class NotificationSink:
    """Delivers a title/body pair to every enabled backend."""

    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        backends: Sequence[NotificationBackend] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._backends = list(backends) if backends is not None else [
            GotifyBackend(self._cfg),
            NtfyBackend(self._cfg),
        ]
        self._transport = transport

    @property
    def backends(self) -> list[NotificationBackend]:
        return list(self._backends)

    async def notify(
        self,
        title: str,
        message: str,
        *,
        backends: Optional[Sequence[str]] = None,
        actions: Sequence[dict[str, Any]] = (),
    ) -> dict[str, bool]:
        """Send to the named backends (all enabled ones by default).

        Returns backend name → delivered.
        """
        delivered: dict[str, bool] = {}
        selected = [
            b for b in self._backends
            if b.enabled and (backends is None or b.name in backends)
        ]
        if not selected:
            log.debug("notify.no_backends", title=title)
            return delivered

        async with httpx.AsyncClient(
            timeout=self._cfg.http_timeout_seconds, transport=self._transport,
        ) as client:
            for backend in selected:
                try:
                    await backend.send(client, title, message, actions)
                    delivered[backend.name] = True
                    log.info("notify.sent", backend=backend.name, title=title)
                except (httpx.HTTPError, NotificationError) as exc:
                    delivered[backend.name] = False
                    log.warning("notify.failed", backend=backend.name, title=title, error=str(exc))
        return delivered
