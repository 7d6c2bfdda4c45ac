"""Apply OS package upgrades and Docker image updates."""

from __future__ import annotations

from typing import Iterable, Optional

from updatectl.config import WEBHOOK_CONTAINER_MARKER, Settings, settings
from updatectl.errors import UpdateApplyFailed
from updatectl.models.server import Server
from updatectl.models.updates import DockerApplyResult, OsApplyResult
from updatectl.services.detector import UpdateDetector
from updatectl.services.executor import RemoteExecutor, remote_executor
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

RESTART_POLICIES = ("all-except-webhook", "all", "none")


def should_restart(container: str, policy: str, excluded: Iterable[str]) -> bool:
    """Exclusions match by substring; the webhook's own container is spared
    under the default policy so an update cannot kill the process running it.
    """
    if any(ex and ex in container for ex in excluded):
        return False
    if policy == "none":
        return False
    if policy == "all":
        return True
    # anything unrecognised behaves like all-except-webhook
    return WEBHOOK_CONTAINER_MARKER not in container


def parse_container_names(output: str) -> list[str]:
    names = []
    for line in output.splitlines():
        name = line.split(":", 1)[0].strip()
        if name:
            names.append(name)
    return names


class UpdateApplier:
    def __init__(
        self,
        executor: RemoteExecutor | None = None,
        detector: UpdateDetector | None = None,
        cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._executor = executor or remote_executor
        self._detector = detector or UpdateDetector(self._executor, cfg=self._cfg)
        if self._cfg.updatectl_restart_policy not in RESTART_POLICIES:
            log.warning(
                "applier.unknown_restart_policy",
                policy=self._cfg.updatectl_restart_policy,
                known=RESTART_POLICIES,
            )

    # ── OS ────────────────────────────────────────────────────────────

    async def apply_os(self, target: Server, dry_run: bool = False) -> OsApplyResult:
        pm = await self._detector.package_manager(target)
        info = await self._detector.detect_os(target, pm)
        result = OsApplyResult(
            server=target.name,
            manager=pm.kind,
            dry_run=dry_run,
            packages=info.packages_outdated,
        )
        if dry_run:
            result.message = (
                f"{info.count} packages would be updated"
                if info.count
                else "No updates available"
            )
            return result

        log.info("applier.os_upgrade", server=target.name, manager=pm.kind.value, pending=info.count)
        await pm.full_upgrade(self._executor, target)

        remaining = await pm.list_upgradable(self._executor, target)
        result.remaining = len(remaining)
        if remaining:
            result.message = (
                f"⚠️ {len(remaining)} updates still available "
                "(may require reboot or manual intervention)"
            )
        else:
            result.message = "✅ Up to date"
        return result

    # ── Docker ────────────────────────────────────────────────────────

    async def _all_images(self, target: Server) -> list[str]:
        out = await self._executor.execute(
            target,
            ["docker", "images", "--format", "{{.Repository}}:{{.Tag}}"],
            self._cfg.docker_timeout_seconds,
        )
        if not out.ok:
            raise UpdateApplyFailed(f"docker images failed on {target.name}: {out.stderr.strip()}")
        images: list[str] = []
        for line in out.stdout.splitlines():
            line = line.strip()
            if line and "<none>" not in line and line not in images:
                images.append(line)
        return images

    async def _containers_using(self, target: Server, image: str) -> list[str]:
        out = await self._executor.execute(
            target,
            ["docker", "ps", "--format", "{{.Names}}:{{.Image}}", "--filter", f"ancestor={image}"],
            self._cfg.docker_timeout_seconds,
        )
        if not out.ok:
            raise UpdateApplyFailed(out.stderr.strip() or f"docker ps exited {out.exit_code}")
        return parse_container_names(out.stdout)

    async def apply_docker(
        self,
        target: Server,
        images: Optional[Iterable[str]] = None,
        dry_run: bool = False,
    ) -> DockerApplyResult:
        """Pull *images* (all local images when ``None``) and restart their containers.

        Restart failures are reported, not retried.
        """
        selected = [i.strip() for i in images if i.strip()] if images is not None else None
        result = DockerApplyResult(server=target.name, dry_run=dry_run)

        if dry_run:
            info = await self._detector.detect_docker(target)
            outdated = [u.image for u in info.images_outdated]
            if selected is not None:
                outdated = [i for i in outdated if i in selected]
            result.images = outdated
            result.message = (
                f"{len(outdated)} images would be updated"
                if outdated
                else "No image updates available"
            )
            return result

        image_list = selected if selected is not None else await self._all_images(target)
        result.images = image_list
        if not image_list:
            result.message = "No images found"
            return result

        policy = self._cfg.updatectl_restart_policy
        excluded = self._cfg.restart_exclusions(target.name)

        for image in image_list:
            pull = await self._executor.execute(
                target, ["docker", "pull", image], self._cfg.command_timeout_seconds,
            )
            if not pull.ok:
                reason = pull.stderr.strip()[:300] or f"exit {pull.exit_code}"
                log.warning("applier.pull_failed", server=target.name, image=image, error=reason)
                result.pull_failures[image] = reason
                continue
            result.pulled.append(image)
            log.info("applier.pulled", server=target.name, image=image)

            try:
                containers = await self._containers_using(target, image)
            except Exception as exc:
                log.warning("applier.ps_failed", server=target.name, image=image, error=str(exc))
                continue

            for container in containers:
                if not should_restart(container, policy, excluded):
                    log.info("applier.restart_skipped", server=target.name, container=container, policy=policy)
                    result.excluded.append(container)
                    continue
                restart = await self._executor.execute(
                    target, ["docker", "restart", container], self._cfg.docker_timeout_seconds,
                )
                if restart.ok:
                    result.restarted.append(container)
                    log.info("applier.restarted", server=target.name, container=container)
                else:
                    reason = restart.stderr.strip()[:300] or f"exit {restart.exit_code}"
                    result.restart_failures[container] = reason
                    log.warning("applier.restart_failed", server=target.name, container=container, error=reason)

        result.message = docker_summary(result, policy)
        if not result.pulled:
            raise UpdateApplyFailed(f"{target.name}: {result.message}")
        return result


def docker_summary(result: DockerApplyResult, policy: str) -> str:
    parts = [f"Updated {len(result.pulled)} images"]
    if result.pull_failures:
        parts.append(f"{len(result.pull_failures)} failed")
    if result.restarted:
        parts.append(f"restarted {len(result.restarted)} containers")
    if result.restart_failures:
        parts.append(f"{len(result.restart_failures)} restart failures")
    if result.excluded:
        if policy == "none":
            parts.append("no containers restarted (policy: none)")
        else:
            parts.append("some containers excluded from restart")
    return ", ".join(parts)
