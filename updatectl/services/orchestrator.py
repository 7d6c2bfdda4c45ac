"""Fan one operation out across servers and collect per-server outcomes.

One task per target, no shared mutable state between them, and no
concurrency cap beyond the number of targets. A failing server fills its
own result slot; siblings keep running. Results come back in target order.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Sequence

from updatectl.config import Settings, settings
from updatectl.models.cleanup import CleanupProfile
from updatectl.models.jobs import AggregateResult, Operation, ServerOutcome
from updatectl.models.server import Server
from updatectl.services.applier import UpdateApplier
from updatectl.services.cleanup import CleanupPlanner
from updatectl.services.detector import UpdateDetector
from updatectl.services.executor import RemoteExecutor, remote_executor
from updatectl.utils.logging import get_logger

log = get_logger(__name__)

TargetFn = Callable[[Server], Awaitable[Any]]


async def _capture(operation: Operation, target: Server, fn: TargetFn) -> ServerOutcome:
    started = time.monotonic()
    try:
        value = await fn(target)
    except Exception as exc:
        elapsed = time.monotonic() - started
        log.warning(
            "orchestrator.server_failed",
            operation=operation.value,
            server=target.name,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return ServerOutcome(
            server=target.name,
            error=str(exc) or type(exc).__name__,
            error_type=type(exc).__name__,
            exception=exc,
            elapsed_time=elapsed,
        )
    return ServerOutcome(
        server=target.name, value=value, elapsed_time=time.monotonic() - started,
    )


async def gather_outcomes(
    operation: Operation, targets: Sequence[Server], fn: TargetFn,
) -> AggregateResult:
    """Run *fn* for every target concurrently; outcomes keep target order."""
    tasks = [
        asyncio.create_task(_capture(operation, t, fn), name=f"{operation.value}:{t.name}")
        for t in targets
    ]
    outcomes = await asyncio.gather(*tasks)
    result = AggregateResult(operation=operation, results=list(outcomes))
    log.info(
        "orchestrator.done",
        operation=operation.value,
        servers=len(targets),
        failed=len(result.failed),
    )
    return result


class Orchestrator:
    def __init__(
        self,
        executor: RemoteExecutor | None = None,
        *,
        detector: UpdateDetector | None = None,
        applier: UpdateApplier | None = None,
        cleanup: CleanupPlanner | None = None,
        cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._executor = executor or remote_executor
        self.detector = detector or UpdateDetector(self._executor, cfg=self._cfg)
        self.applier = applier or UpdateApplier(self._executor, self.detector, self._cfg)
        self.cleanup = cleanup or CleanupPlanner(self._executor, self._cfg)

    def _handler(self, operation: Operation, params: dict[str, Any]) -> TargetFn:
        dry_run = bool(params.get("dry_run", False))

        if operation is Operation.detect:
            return self.detector.detect
        if operation is Operation.detect_os:
            return self.detector.detect_os
        if operation is Operation.detect_docker:
            return self.detector.detect_docker
        if operation is Operation.apply_os:
            return lambda t: self.applier.apply_os(t, dry_run=dry_run)
        if operation is Operation.apply_docker:
            images = params.get("images")
            return lambda t: self.applier.apply_docker(t, images=images, dry_run=dry_run)
        if operation is Operation.cleanup:
            profile = CleanupProfile(params.get("profile", CleanupProfile.conservative))
            confirm = bool(params.get("execute", False)) and not dry_run
            return lambda t: self.cleanup.execute(t, profile, confirm=confirm)
        if operation is Operation.prune_unused_images:
            if dry_run:
                return lambda t: self.cleanup.analyze(t, CleanupProfile.conservative)
            return self.cleanup.prune_unused_images
        raise ValueError(f"unsupported operation: {operation}")

    async def run_one(self, operation: Operation, target: Server, **params: Any) -> Any:
        """Run *operation* on a single target, letting errors propagate."""
        return await self._handler(operation, params)(target)

    async def run(
        self, operation: Operation, targets: Sequence[Server], **params: Any,
    ) -> AggregateResult:
        log.info(
            "orchestrator.start",
            operation=operation.value,
            servers=[t.name for t in targets],
            dry_run=bool(params.get("dry_run", False)),
        )
        return await gather_outcomes(operation, targets, self._handler(operation, params))
