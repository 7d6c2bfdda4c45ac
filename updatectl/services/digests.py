"""Registry manifest digests, fetched without pulling the image.

The default source asks the registry's v2 API for the tag's manifest digest
(``HEAD /v2/<repo>/manifests/<tag>``), following a Bearer token challenge for
anonymous pulls.
"""

from __future__ import annotations

import re
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel

from updatectl.config import Settings, settings
from updatectl.errors import RegistryUnreachable
from updatectl.models.server import Server
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

DOCKER_HUB_REGISTRY = "registry-1.docker.io"

MANIFEST_ACCEPT = ", ".join([
    "application/vnd.oci.image.index.v1+json",
    "application/vnd.docker.distribution.manifest.list.v2+json",
    "application/vnd.oci.image.manifest.v1+json",
    "application/vnd.docker.distribution.manifest.v2+json",
])

_CHALLENGE_RE = re.compile(r'(\w+)="([^"]*)"')


class ImageRef(BaseModel):
    registry: str
    repository: str
    tag: str

    @property
    def name(self) -> str:
        return f"{self.repository}:{self.tag}"


def parse_image_ref(ref: str) -> ImageRef:
    """Split ``[registry/]repo[:tag]`` the way the docker CLI does."""
    ref = ref.strip()
    if "@" in ref:
        raise ValueError(f"digest-pinned reference has no tag to compare: {ref}")
    name, tag = ref, "latest"
    slash = ref.rfind("/")
    colon = ref.rfind(":")
    if colon > slash:
        name, tag = ref[:colon], ref[colon + 1:]

    first, sep, rest = name.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        registry, repository = first, rest
    else:
        registry, repository = DOCKER_HUB_REGISTRY, name
    if registry in ("docker.io", "index.docker.io"):
        registry = DOCKER_HUB_REGISTRY
    if registry == DOCKER_HUB_REGISTRY and "/" not in repository:
        repository = f"library/{repository}"
    return ImageRef(registry=registry, repository=repository, tag=tag)


class DigestSource(Protocol):
    async def remote_digest(self, target: Server, image: str) -> Optional[str]:
        """Registry digest for *image*'s tag, or ``None`` when unknown."""
        ...


class RegistryDigestSource:
    """Query the image's registry over HTTPS with httpx."""

    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self._cfg.http_timeout_seconds,
            transport=self._transport,
            follow_redirects=True,
        )

    async def remote_digest(self, target: Server, image: str) -> Optional[str]:
        ref = parse_image_ref(image)
        url = f"https://{ref.registry}/v2/{ref.repository}/manifests/{ref.tag}"
        headers = {"Accept": MANIFEST_ACCEPT}
        async with self._client() as client:
            try:
                resp = await client.head(url, headers=headers)
                if resp.status_code == 401:
                    token = await self._token(client, resp, ref)
                    if token:
                        headers["Authorization"] = f"Bearer {token}"
                        resp = await client.head(url, headers=headers)
            except httpx.HTTPError as exc:
                raise RegistryUnreachable(image, str(exc)) from exc
        if resp.status_code != 200:
            raise RegistryUnreachable(image, f"HTTP {resp.status_code}")
        return resp.headers.get("Docker-Content-Digest")

    async def _token(
        self, client: httpx.AsyncClient, resp: httpx.Response, ref: ImageRef,
    ) -> Optional[str]:
        challenge = resp.headers.get("WWW-Authenticate", "")
        if not challenge.lower().startswith("bearer"):
            return None
        params = dict(_CHALLENGE_RE.findall(challenge))
        realm = params.pop("realm", None)
        if not realm:
            return None
        params.setdefault("scope", f"repository:{ref.repository}:pull")
        token_resp = await client.get(realm, params=params)
        if token_resp.status_code != 200:
            return None
        body = token_resp.json()
        return body.get("token") or body.get("access_token")

