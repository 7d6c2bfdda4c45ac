"""Docker cleanup: tiered analysis and profile-driven pruning.

``analyze`` only reads. ``execute`` prunes the categories the profile allows,
and only when the caller passes ``confirm=True``; otherwise it returns the
same report ``analyze`` would. Volumes are reported but never removed.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional

from updatectl.config import Settings, settings
from updatectl.errors import (
    DockerError,
    DockerInvalidResponse,
    DockerUnavailable,
    docker_failure,
)
from updatectl.models.cleanup import (
    CleanupCategory,
    CleanupItem,
    CleanupPlan,
    CleanupProfile,
    CleanupResult,
    ImagePruneResult,
    ResourceKind,
    VolumeInfo,
    VolumeReport,
)
from updatectl.models.commands import CommandOutput
from updatectl.models.server import Server
from updatectl.services.command_filter import ensure_keeps_volumes, ensure_read_only
from updatectl.services.executor import Command, RemoteExecutor, remote_executor, render_command
from updatectl.utils.logging import get_logger
from updatectl.utils.sizes import parse_docker_size, parse_reclaimed_space

log = get_logger(__name__)

BUILTIN_NETWORKS = frozenset({"bridge", "host", "none", "docker_gwbridge", "ingress"})
TOP_VOLUMES = 10


# ── parsing helpers ───────────────────────────────────────────────────────

def json_lines(output: str) -> list[dict[str, Any]]:
    rows = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            rows.append(json.loads(line))
        except json.JSONDecodeError:
            log.debug("cleanup.bad_json_line", line=line[:200])
    return rows


def parse_docker_timestamp(text: str) -> Optional[datetime]:
    """``2024-01-15 10:30:45 +0200 CEST`` → aware datetime in UTC.

    A missing offset is read as UTC.
    """
    fields = (text or "").split()
    if len(fields) < 2:
        return None
    stamp = f"{fields[0]} {fields[1].split('.', 1)[0]}"
    offset = fields[2] if len(fields) > 2 and fields[2][:1] in "+-" else "+0000"
    try:
        parsed = datetime.strptime(f"{stamp} {offset}", "%Y-%m-%d %H:%M:%S %z")
    except ValueError:
        return None
    return parsed.astimezone(timezone.utc)


def _truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def count_listed(output: str, header: str) -> int:
    """Entries listed under e.g. ``Deleted Networks:`` in prune output."""
    count, inside = 0, False
    for line in output.splitlines():
        text = line.strip()
        if text.startswith(header):
            inside = True
            continue
        if inside:
            if not text or text.startswith("Total reclaimed space"):
                break
            count += 1
    return count


class CleanupPlanner:
    """Analyzes and (on request) prunes Docker resources on a server."""

    def __init__(
        self,
        executor: RemoteExecutor | None = None,
        cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._executor = executor or remote_executor

    async def _read(self, target: Server, command: Command) -> CommandOutput:
        ensure_read_only(render_command(command))
        out = await self._executor.execute(target, command, self._cfg.docker_timeout_seconds)
        if not out.ok:
            raise docker_failure(render_command(command), target.name, out.stderr)
        return out

    async def _prune(self, target: Server, command: Command) -> CommandOutput:
        ensure_keeps_volumes(render_command(command))
        out = await self._executor.execute(target, command, self._cfg.command_timeout_seconds)
        if not out.ok:
            raise docker_failure(render_command(command), target.name, out.stderr)
        return out

    # ── analysis ──────────────────────────────────────────────────────

    async def _dangling_images(self, target: Server) -> list[CleanupItem]:
        out = await self._read(
            target,
            ["docker", "image", "ls", "--filter", "dangling=true", "--format", "{{json .}}"],
        )
        return [
            CleanupItem(
                id=row.get("ID", ""),
                size_bytes=parse_docker_size(row.get("Size", "")),
                detail=row.get("CreatedSince", ""),
            )
            for row in json_lines(out.stdout)
        ]

    async def _unused_networks(self, target: Server) -> list[CleanupItem]:
        out = await self._read(target, ["docker", "network", "ls", "--format", "{{json .}}"])
        candidates = [
            row for row in json_lines(out.stdout)
            if row.get("Name") and row["Name"] not in BUILTIN_NETWORKS
        ]

        async def attached(name: str) -> bool:
            res = await self._read(
                target,
                ["docker", "network", "inspect", name, "--format", "{{json .Containers}}"],
            )
            text = res.stdout.strip()
            return text not in ("", "{}", "null")

        in_use = await asyncio.gather(*(attached(row["Name"]) for row in candidates))
        return [
            CleanupItem(id=row.get("ID", ""), name=row["Name"], detail=row.get("Driver", ""))
            for row, used in zip(candidates, in_use)
            if not used
        ]

    async def _system_df(self, target: Server) -> dict[str, Any]:
        out = await self._read(target, ["docker", "system", "df", "-v", "--format", "{{json .}}"])
        rows = json_lines(out.stdout)
        if out.stdout.strip() and not rows:
            raise DockerInvalidResponse(f"unparseable docker system df output on {target.name}")
        return rows[0] if rows else {}

    @staticmethod
    def _build_cache(df: dict[str, Any]) -> list[CleanupItem]:
        return [
            CleanupItem(
                id=row.get("ID", ""),
                name=row.get("CacheType") or row.get("Type", ""),
                size_bytes=parse_docker_size(str(row.get("Size", ""))),
                detail="shared" if _truthy(row.get("Shared")) else "",
            )
            for row in df.get("BuildCache") or []
            if not _truthy(row.get("InUse"))
        ]

    async def _volumes(self, target: Server, df: dict[str, Any]) -> VolumeReport:
        vols = [
            VolumeInfo(
                name=row.get("Name", ""),
                driver=row.get("Driver", ""),
                mountpoint=row.get("Mountpoint", ""),
                size_bytes=parse_docker_size(str(row.get("Size", ""))),
                links=int(row.get("Links") or 0),
            )
            for row in df.get("Volumes") or []
            if row.get("Name")
        ]
        report = VolumeReport(count=len(vols), total_bytes=sum(v.size_bytes for v in vols))
        largest = sorted(vols, key=lambda v: v.size_bytes, reverse=True)[:TOP_VOLUMES]
        for vol in largest:
            out = await self._read(
                target,
                ["docker", "ps", "-a", "--filter", f"volume={vol.name}",
                 "--format", "{{.Names}}|{{.Status}}"],
            )
            for line in out.stdout.splitlines():
                name, _, status = line.partition("|")
                if name.strip():
                    vol.containers_using.append(name.strip())
                    if vol.last_used is None or status.startswith("Up"):
                        vol.last_used = status.strip()
        report.largest = largest
        return report

    async def _stale_containers(self, target: Server, age_days: int) -> list[CleanupItem]:
        out = await self._read(target, ["docker", "ps", "-a", "--format", "{{json .}}"])
        now = datetime.now(timezone.utc)
        items = []
        for row in json_lines(out.stdout):
            if row.get("State", "").lower() == "running":
                continue
            created = parse_docker_timestamp(row.get("CreatedAt", ""))
            if created is None or (now - created).days < age_days:
                continue
            items.append(
                CleanupItem(
                    id=row.get("ID", ""),
                    name=row.get("Names", ""),
                    detail=row.get("Status", ""),
                ),
            )
        return items

    async def _large_logs(self, target: Server, threshold: int) -> list[CleanupItem]:
        """json-file logs at or over *threshold* bytes, largest first.

        Sizes come from ``stat`` on the paths ``docker inspect`` reports, so
        the remote user needs read access to Docker's container directory.
        """
        ids = (await self._read(target, ["docker", "ps", "-aq", "--no-trunc"])).stdout.split()
        if not ids:
            return []
        out = await self._read(
            target,
            ["docker", "inspect", "--format",
             "{{.Id}}|{{.Name}}|{{.LogPath}}|{{json .HostConfig.LogConfig.Config}}", *ids],
        )
        containers: dict[str, tuple[str, str, bool]] = {}
        for line in out.stdout.splitlines():
            cid, name, path, config = (line.split("|", 3) + ["", "", ""])[:4]
            if path.strip():
                rotated = "max-size" in config or "max-file" in config
                containers[path.strip()] = (cid.strip(), name.strip().lstrip("/"), rotated)
        if not containers:
            return []

        stat = ["stat", "-c", "%s %n", *containers]
        ensure_read_only(render_command(stat))
        res = await self._executor.execute(target, stat, self._cfg.docker_timeout_seconds)
        items = []
        for line in res.stdout.splitlines():
            size, _, path = line.partition(" ")
            if path not in containers or not size.isdigit():
                continue
            total = int(size)
            if total < threshold:
                continue
            cid, name, rotated = containers[path]
            items.append(
                CleanupItem(
                    id=cid,
                    name=name,
                    size_bytes=total,
                    detail="rotated" if rotated else "no rotation",
                ),
            )
        if not res.ok and not res.stdout.strip():
            raise DockerError(
                f"cannot read container log sizes on {target.name}: {res.stderr.strip()[:300]}",
            )
        return sorted(items, key=lambda i: i.size_bytes, reverse=True)

    async def analyze(
        self,
        target: Server,
        profile: CleanupProfile = CleanupProfile.conservative,
    ) -> CleanupPlan:
        if not await self._executor.command_exists(target, "/usr/bin/docker"):
            raise DockerUnavailable(f"docker not found on {target.name}")

        age_days = self._cfg.dockermon_cleanup_stopped_age_days
        plan = CleanupPlan(
            server=target.name,
            profile=profile,
            stale_age_days=age_days,
            log_size_threshold_bytes=self._cfg.log_size_threshold_bytes,
        )
        failures: list[Exception] = []

        async def fill(category: CleanupCategory, coro) -> None:
            try:
                category.items = await coro
            except Exception as exc:
                failures.append(exc)
                category.error = str(exc)
                log.warning("cleanup.analyze_failed", server=target.name, kind=category.kind.value, error=str(exc))

        await fill(plan.dangling_images, self._dangling_images(target))
        await fill(plan.unused_networks, self._unused_networks(target))
        await fill(plan.stale_containers, self._stale_containers(target, age_days))
        await fill(plan.large_logs, self._large_logs(target, plan.log_size_threshold_bytes))
        try:
            df = await self._system_df(target)
            plan.build_cache.items = self._build_cache(df)
            plan.volumes = await self._volumes(target, df)
        except Exception as exc:
            failures.append(exc)
            plan.build_cache.error = str(exc)
            plan.volumes.error = str(exc)
            log.warning("cleanup.system_df_failed", server=target.name, error=str(exc))

        # four category reads plus system df
        if len(failures) == 5:
            raise next((e for e in failures if isinstance(e, DockerUnavailable)), failures[0])

        log.info(
            "cleanup.analyzed",
            server=target.name,
            profile=profile.value,
            dangling=plan.dangling_images.count,
            networks=plan.unused_networks.count,
            build_cache_bytes=plan.build_cache_bytes,
            stale=plan.stale_containers.count,
            large_logs=plan.large_logs.count,
            volumes=plan.volumes.count,
        )
        return plan

    # ── execution ─────────────────────────────────────────────────────

    async def execute(
        self,
        target: Server,
        profile: CleanupProfile = CleanupProfile.conservative,
        confirm: bool = False,
    ) -> CleanupResult:
        """Prune what *profile* allows; report only unless *confirm* is set."""
        plan = await self.analyze(target, profile)
        result = CleanupResult(server=target.name, profile=profile, plan=plan)
        if not confirm:
            return result

        result.executed = True
        attempted = 0
        for category in plan.executable():
            if category.error:
                attempted += 1
                result.errors.append(f"{category.kind.value}: not analyzed: {category.error}")
                continue
            if not category.items:
                continue
            attempted += 1
            try:
                await self._remove(target, category, plan, result)
            except Exception as exc:
                result.errors.append(f"{category.kind.value}: {exc}")
                log.warning("cleanup.prune_failed", server=target.name, kind=category.kind.value, error=str(exc))

        if attempted and len(result.errors) == attempted:
            raise DockerError(f"cleanup failed on {target.name}: {'; '.join(result.errors)}")
        log.info("cleanup.executed", server=target.name, profile=profile.value, summary=result.summary())
        return result

    async def _remove(
        self,
        target: Server,
        category: CleanupCategory,
        plan: CleanupPlan,
        result: CleanupResult,
    ) -> None:
        kind = category.kind
        if kind is ResourceKind.dangling_images:
            out = await self._prune(target, ["docker", "image", "prune", "-f"])
            result.dangling_images_removed = category.count
        elif kind is ResourceKind.unused_networks:
            out = await self._prune(target, ["docker", "network", "prune", "-f"])
            result.networks_removed = count_listed(out.stdout, "Deleted Networks") or category.count
        elif kind is ResourceKind.build_cache:
            out = await self._prune(target, ["docker", "builder", "prune", "-f"])
            result.build_cache_removed = category.count
        elif kind is ResourceKind.stale_containers:
            hours = plan.stale_age_days * 24
            out = await self._prune(
                target,
                ["docker", "container", "prune", "-f", "--filter", f"until={hours}h"],
            )
            result.containers_removed = count_listed(out.stdout, "Deleted Containers") or category.count
        else:
            raise ValueError(f"{kind.value} is never removed automatically")

        reclaimed = parse_reclaimed_space(out.stdout)
        result.reclaimed_bytes += category.total_bytes if reclaimed is None else reclaimed

    async def prune_unused_images(self, target: Server) -> ImagePruneResult:
        """Remove every image no container uses (``docker image prune -a``)."""
        out = await self._prune(target, ["docker", "image", "prune", "-a", "-f"])
        removed = sum(
            1 for line in out.stdout.splitlines()
            if line.startswith("deleted:") or line.startswith("untagged:")
        )
        result = ImagePruneResult(
            server=target.name,
            images_removed=removed,
            reclaimed_bytes=parse_reclaimed_space(out.stdout) or 0,
        )
        log.info("cleanup.pruned_unused_images", server=target.name, summary=result.summary())
        return result
