"""Orchestration job and aggregate result models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from updatectl.models.server import Server


class Operation(str, Enum):
    detect = "detect"
    detect_os = "detect_os"
    detect_docker = "detect_docker"
    apply_os = "apply_os"
    apply_docker = "apply_docker"
    cleanup = "cleanup"
    prune_unused_images = "prune_unused_images"


class JobState(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.pending: frozenset({JobState.running, JobState.failed}),
    JobState.running: frozenset({JobState.completed, JobState.failed}),
    JobState.completed: frozenset(),
    JobState.failed: frozenset(),
}


class InvalidTransition(RuntimeError):
    pass


class OrchestrationJob(BaseModel):
    """A detached unit of webhook work; states only move forward."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    operation: Operation
    server: Server
    params: dict[str, Any] = Field(default_factory=dict)
    state: JobState = JobState.pending
    message: str = ""
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def terminal(self) -> bool:
        return self.state in (JobState.completed, JobState.failed)

    def transition(self, new: JobState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise InvalidTransition(f"job {self.id}: {self.state.value} -> {new.value}")
        self.state = new
        if self.terminal:
            self.finished_at = datetime.now(timezone.utc)


class ServerOutcome(BaseModel):
    """One server's slot in a batch result: a value or an error, never both."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    server: str
    value: Optional[Any] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    exception: Optional[BaseException] = Field(default=None, exclude=True)
    elapsed_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        value = self.value
        if isinstance(value, BaseModel):
            value = value.model_dump(mode="json")
        return {
            "server": self.server,
            "ok": self.ok,
            "value": value,
            "error": self.error,
            "error_type": self.error_type,
            "elapsed_time": round(self.elapsed_time, 3),
        }


class AggregateResult(BaseModel):
    operation: Operation
    results: list[ServerOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> list[ServerOutcome]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[ServerOutcome]:
        return [r for r in self.results if not r.ok]

    @property
    def all_ok(self) -> bool:
        return not self.failed

    def get(self, server: str) -> Optional[ServerOutcome]:
        for r in self.results:
            if r.server == server:
                return r
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": self.operation.value,
            "ok": self.all_ok,
            "results": [r.to_dict() for r in self.results],
        }
