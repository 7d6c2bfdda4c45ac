"""Webhook dispatch: authenticate, resolve one server, run detached.

Accepted requests become :class:`OrchestrationJob` objects driven by a
background task. The HTTP caller gets 202 immediately; the outcome is only
visible through the notification sink, which is called exactly once per
job when it reaches a terminal state.

Two jobs for the same server may run at the same time; nothing serializes
them.
"""

from __future__ import annotations

import asyncio
import hmac
from typing import Any, Optional

from updatectl.config import Settings, settings
from updatectl.errors import BadRequest, ServerConfigError, Unauthorized
from updatectl.models.jobs import JobState, Operation, OrchestrationJob
from updatectl.models.server import Server
from updatectl.services.notifier import NotificationSink
from updatectl.services.orchestrator import Orchestrator
from updatectl.services.registry import ServerRegistry
from updatectl.services.reporting import describe, notification_body, notification_title
from updatectl.utils.logging import get_logger

log = get_logger(__name__)


def tokens_match(provided: Optional[str], expected: str) -> bool:
    """Constant-time comparison; an unset secret matches nothing."""
    if not expected or provided is None:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


class WebhookDispatcher:
    def __init__(
        self,
        cfg: Settings | None = None,
        *,
        registry: ServerRegistry | None = None,
        orchestrator: Orchestrator | None = None,
        sink: NotificationSink | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self.registry = registry or ServerRegistry.from_settings(self._cfg)
        self.orchestrator = orchestrator or Orchestrator(cfg=self._cfg)
        self.sink = sink or NotificationSink(self._cfg)
        self._tasks: dict[str, asyncio.Task] = {}
        if not self._cfg.updatectl_webhook_secret:
            log.warning("webhook.no_secret", detail="all webhook requests will be rejected")
        elif self._cfg.webhook_secret_is_weak:
            log.warning("webhook.weak_secret", length=len(self._cfg.updatectl_webhook_secret))

    # ── request validation ────────────────────────────────────────────

    def authenticate(self, token: Optional[str], request_id: str) -> None:
        if not tokens_match(token, self._cfg.updatectl_webhook_secret):
            log.warning(
                "webhook.unauthorized",
                request_id=request_id,
                token_length=len(token or ""),
            )
            raise Unauthorized()

    def resolve(self, server: Optional[str]) -> Server:
        if not server or not server.strip():
            raise BadRequest("Missing server parameter")
        try:
            return self.registry.resolve(server, allow_adhoc=False)
        except ServerConfigError as exc:
            raise BadRequest(f"Unknown server: {server}") from exc

    # ── jobs ──────────────────────────────────────────────────────────

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def submit(self, operation: Operation, server: Server, **params: Any) -> OrchestrationJob:
        """Create a job and start it in the background; returns at once."""
        job = OrchestrationJob(operation=operation, server=server, params=params)
        task = asyncio.get_running_loop().create_task(self._run(job), name=f"job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        log.info(
            "webhook.job_accepted",
            job_id=job.id,
            operation=operation.value,
            server=server.name,
        )
        return job

    async def _run(self, job: OrchestrationJob) -> OrchestrationJob:
        job.transition(JobState.running)
        log.info("webhook.job_running", job_id=job.id, server=job.server.name)
        try:
            value = await self.orchestrator.run_one(job.operation, job.server, **job.params)
            job.message = describe(value)
            job.transition(JobState.completed)
        except Exception as exc:
            job.error = str(exc) or type(exc).__name__
            job.transition(JobState.failed)
            log.warning("webhook.job_failed", job_id=job.id, server=job.server.name, error=job.error)
        else:
            log.info("webhook.job_completed", job_id=job.id, server=job.server.name, message=job.message)

        ok = job.state is JobState.completed
        title = notification_title(
            job.operation,
            job.server.name,
            ok,
            single_image=job.operation is Operation.apply_docker and bool(job.params.get("images")),
        )
        await self.sink.notify(title, notification_body(job.message if ok else job.error or "", ok))
        return job

    async def drain(self) -> None:
        """Wait for every running job (shutdown and tests)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)


_dispatcher: WebhookDispatcher | None = None


def get_dispatcher() -> WebhookDispatcher:
    """FastAPI dependency; built on first use from the global settings."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = WebhookDispatcher()
    return _dispatcher
