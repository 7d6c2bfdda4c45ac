"""Human-readable text for CLI output and notifications."""

from __future__ import annotations

from typing import Any

from updatectl.models.cleanup import CleanupPlan, CleanupResult, ImagePruneResult
from updatectl.models.jobs import AggregateResult, Operation, ServerOutcome
from updatectl.models.updates import (
    DockerApplyResult,
    DockerUpdateInfo,
    OsApplyResult,
    OsUpdateInfo,
    UpdateReport,
)
from updatectl.utils.sizes import format_bytes

_TITLES = {
    Operation.apply_os: ("OS update complete", "OS update failed"),
    Operation.apply_docker: ("Docker update complete", "Docker update failed"),
    Operation.cleanup: ("Docker Cleanup: Complete", "Docker Cleanup: Failed"),
    Operation.prune_unused_images: (
        "Docker Cleanup: Unused images pruned",
        "Docker Cleanup: Unused image prune failed",
    ),
    Operation.detect: ("Update check complete", "Update check failed"),
    Operation.detect_os: ("OS update check complete", "OS update check failed"),
    Operation.detect_docker: ("Docker update check complete", "Docker update check failed"),
}


def notification_title(operation: Operation, server: str, ok: bool, *, single_image: bool = False) -> str:
    done, failed = _TITLES[operation]
    if single_image:
        done, failed = "Docker image update complete", "Docker image update failed"
    return f"{server} - {done if ok else failed}"


def notification_body(message: str, ok: bool) -> str:
    return f"✅ {message}" if ok else f"❌ Error: {message}"


def _os_line(info: OsUpdateInfo) -> str:
    if not info.count:
        return f"OS ({info.manager.value}): up to date"
    shown = ", ".join(info.packages_outdated[:10])
    more = f" (+{info.count - 10} more)" if info.count > 10 else ""
    return f"OS ({info.manager.value}): {info.count} updates: {shown}{more}"


def _docker_line(info: DockerUpdateInfo) -> str:
    if not info.images_outdated:
        return f"Docker: {info.images_checked} images up to date"
    names = ", ".join(u.image for u in info.images_outdated)
    return f"Docker: {len(info.images_outdated)} image updates: {names}"


def _plan_line(plan: CleanupPlan) -> str:
    parts = [
        f"{plan.dangling_images.count} dangling images ({format_bytes(plan.dangling_images.total_bytes)})",
        f"{plan.unused_networks.count} unused networks",
        f"build cache {format_bytes(plan.build_cache_bytes)}",
        f"{plan.stale_containers.count} stopped containers >{plan.stale_age_days}d",
        f"{plan.large_logs.count} container logs >={format_bytes(plan.log_size_threshold_bytes)}",
        f"{plan.volumes.count} volumes ({format_bytes(plan.volumes.total_bytes)}, never removed)",
    ]
    return "; ".join(parts)


def describe(value: Any) -> str:
    """One-line description of a per-server result value."""
    if isinstance(value, OsApplyResult):
        return f"OS: {value.message}"
    if isinstance(value, DockerApplyResult):
        return f"Docker: {value.message}"
    if isinstance(value, OsUpdateInfo):
        return _os_line(value)
    if isinstance(value, DockerUpdateInfo):
        return _docker_line(value)
    if isinstance(value, UpdateReport):
        lines = []
        if value.os is not None:
            lines.append(_os_line(value.os))
        elif value.os_error:
            lines.append(f"OS: error: {value.os_error}")
        if value.docker is not None:
            lines.append(_docker_line(value.docker))
        elif value.docker_error:
            lines.append(f"Docker: error: {value.docker_error}")
        return " | ".join(lines) or "nothing checked"
    if isinstance(value, CleanupResult):
        if value.executed or value.plan is None:
            return value.summary()
        return f"{value.summary()} | {_plan_line(value.plan)}"
    if isinstance(value, CleanupPlan):
        return _plan_line(value)
    if isinstance(value, ImagePruneResult):
        return value.summary()
    return str(value)


def outcome_line(outcome: ServerOutcome) -> str:
    if outcome.ok:
        return f"✅ {outcome.server}: {describe(outcome.value)}"
    return f"❌ {outcome.server}: {outcome.error}"


def check_summary(result: AggregateResult) -> str:
    n = len(result.results)
    stale = [
        r for r in result.succeeded
        if isinstance(r.value, UpdateReport) and r.value.has_updates
    ]
    if stale:
        return f"📦 Updates available ({n} servers)"
    if result.failed:
        return f"⚠️ Update check completed with errors ({n} servers)"
    return f"✅ All systems up to date ({n} servers)"


def final_tally(result: AggregateResult, dry_run: bool = False) -> str:
    prefix = "[DRY-RUN] " if dry_run else ""
    n = len(result.results)
    if result.all_ok:
        return f"{prefix}✅ Updates completed successfully ({n} servers)"
    return f"{prefix}⚠️ Updates completed with errors ({len(result.failed)} of {n} servers failed)"
