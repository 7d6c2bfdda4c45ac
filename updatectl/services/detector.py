"""Read-only update detection: OS packages and container image digests."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from updatectl.config import Settings, settings
from updatectl.errors import docker_failure
from updatectl.models.commands import CommandOutput
from updatectl.models.server import Server
from updatectl.models.updates import (
    DockerUpdateInfo,
    ImageUpdate,
    OsUpdateInfo,
    UpdateReport,
)
from updatectl.services.command_filter import ensure_read_only
from updatectl.services.digests import DigestSource, RegistryDigestSource
from updatectl.services.executor import (
    Command,
    RemoteExecutor,
    remote_executor,
    render_command,
)
from updatectl.services.package_managers import PackageManager, detect_package_manager
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

DOCKER_BINARY = "/usr/bin/docker"


def is_outdated(local: Optional[str], remote: Optional[str]) -> bool:
    """Stale only when both digests are known and differ."""
    return bool(local) and bool(remote) and local != remote


def parse_image_list(output: str) -> list[str]:
    """``repo:tag`` refs from ``docker images --format '{{json .}}'``, deduped."""
    refs: list[str] = []
    seen: set[str] = set()
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            row = json.loads(line)
        except json.JSONDecodeError:
            log.debug("detector.bad_image_row", line=line[:200])
            continue
        repo, tag = row.get("Repository", ""), row.get("Tag", "")
        if not repo or not tag or "<none>" in (repo, tag):
            continue
        ref = f"{repo}:{tag}"
        if ref not in seen:
            seen.add(ref)
            refs.append(ref)
    return refs


def pick_repo_digest(output: str, image: str) -> Optional[str]:
    """Digest from ``RepoDigests`` output (``repo@sha256:...`` entries)."""
    repo = image.rsplit(":", 1)[0] if ":" in image.rsplit("/", 1)[-1] else image
    candidates = [
        entry.strip()
        for entry in output.replace(",", "\n").splitlines()
        if "@" in entry and entry.strip() not in ("<no value>", "")
    ]
    if not candidates:
        return None
    for entry in candidates:
        if entry.split("@", 1)[0] == repo:
            return entry.split("@", 1)[1]
    return candidates[0].split("@", 1)[1]


class UpdateDetector:
    """Determines whether a server's packages or images are stale.

    Never issues a mutating command: every command goes through
    :func:`ensure_read_only` first.
    """

    def __init__(
        self,
        executor: RemoteExecutor | None = None,
        digest_source: DigestSource | None = None,
        cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._executor = executor or remote_executor
        self._digests = digest_source or RegistryDigestSource(self._cfg)

    async def _read(
        self, target: Server, command: Command, timeout: Optional[float] = None,
    ) -> CommandOutput:
        ensure_read_only(render_command(command))
        return await self._executor.execute(target, command, timeout)

    # ── OS ────────────────────────────────────────────────────────────

    async def package_manager(self, target: Server) -> PackageManager:
        return await detect_package_manager(self._executor, target)

    async def detect_os(
        self, target: Server, manager: PackageManager | None = None,
    ) -> OsUpdateInfo:
        pm = manager or await self.package_manager(target)
        ensure_read_only(render_command(pm.check_command))
        packages = await pm.list_upgradable(self._executor, target)
        return OsUpdateInfo(manager=pm.kind, packages_outdated=packages)

    # ── Docker ────────────────────────────────────────────────────────

    async def has_docker(self, target: Server) -> bool:
        return await self._executor.command_exists(target, DOCKER_BINARY)

    async def list_images(self, target: Server) -> list[str]:
        out = await self._read(
            target,
            ["docker", "images", "--format", "{{json .}}"],
            self._cfg.docker_timeout_seconds,
        )
        if not out.ok:
            raise docker_failure("docker images", target.name, out.stderr)
        return parse_image_list(out.stdout)

    async def local_digest(self, target: Server, image: str) -> Optional[str]:
        out = await self._read(
            target,
            ["docker", "image", "inspect", image, "--format", "{{join .RepoDigests \",\"}}"],
            self._cfg.docker_timeout_seconds,
        )
        if not out.ok:
            return None
        return pick_repo_digest(out.stdout, image)

    async def _check_image(self, target: Server, image: str) -> Optional[ImageUpdate]:
        try:
            local = await self.local_digest(target, image)
            if not local:
                log.debug("detector.no_local_digest", server=target.name, image=image)
                return None
            remote = await self._digests.remote_digest(target, image)
        except Exception as exc:
            # Registry trouble (auth, rate limit, network) means "no update"
            log.info(
                "detector.digest_unavailable",
                server=target.name,
                image=image,
                error=str(exc),
            )
            return None
        if not is_outdated(local, remote):
            return None
        return ImageUpdate(image=image, local_digest=local, remote_digest=remote)

    async def detect_docker(self, target: Server) -> DockerUpdateInfo:
        images = await self.list_images(target)
        checked = await asyncio.gather(*(self._check_image(target, i) for i in images))
        outdated = [u for u in checked if u is not None]
        log.info(
            "detector.docker_checked",
            server=target.name,
            images=len(images),
            outdated=len(outdated),
        )
        return DockerUpdateInfo(images_checked=len(images), images_outdated=outdated)

    # ── combined ──────────────────────────────────────────────────────

    async def detect(self, target: Server) -> UpdateReport:
        """Both halves; one failing half is recorded, not raised.

        Raises only when the OS half failed and there is no Docker result to
        report instead.
        """
        report = UpdateReport(server=target.name)
        os_exc: Exception | None = None
        try:
            report.os = await self.detect_os(target)
        except Exception as exc:
            os_exc = exc
            report.os_error = str(exc)
            log.warning("detector.os_failed", server=target.name, error=str(exc))

        try:
            if await self.has_docker(target):
                report.docker = await self.detect_docker(target)
        except Exception as exc:
            report.docker_error = str(exc)
            log.warning("detector.docker_failed", server=target.name, error=str(exc))

        if os_exc is not None and report.docker is None:
            raise os_exc
        return report
