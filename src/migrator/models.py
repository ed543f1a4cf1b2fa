"""Result and progress records produced by a migration run."""

from __future__ import annotations

import enum
from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class FailureKind(enum.StrEnum):
    """Why a task, phase or plan did not succeed."""

    VALIDATION = "validation"
    EXECUTION = "execution"
    LISTENER_VETO = "listener_veto"
    CANCELLED = "cancelled"
    UNEXPECTED = "unexpected"
    NOT_FOUND = "not_found"


class ProgressStatus(enum.StrEnum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EngineState(enum.StrEnum):
    """Lifecycle of a MigrationEngine run."""

    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


def _duration(start: datetime | None, end: datetime | None) -> timedelta:
    if start is None or end is None:
        return timedelta(0)
    return end - start


class BlockResult(BaseModel):
    """Outcome of executing (or skipping) a single block."""

    model_config = ConfigDict(frozen=True)

    success: bool
    message: str = ""
    output_variables: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    error_details: str | None = None
    skipped: bool = False
    execution_time_ms: int = 0

    @classmethod
    def succeeded(cls, message: str = "", **kwargs: Any) -> BlockResult:
        return cls(success=True, message=message, **kwargs)

    @classmethod
    def failure(cls, message: str, error_details: str | None = None, **kwargs: Any) -> BlockResult:
        return cls(success=False, message=message, error_details=error_details, **kwargs)

    @classmethod
    def skipped_result(cls, message: str) -> BlockResult:
        return cls(success=True, message=message, skipped=True)


class TaskResult(BaseModel):
    """Outcome of running every block of one task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    task_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    block_results: list[BlockResult] = Field(default_factory=list)
    failure_block: str | None = None
    failure_reason: str | None = None
    failure_kind: FailureKind | None = None

    @property
    def duration(self) -> timedelta:
        return _duration(self.start_time, self.end_time)

    @property
    def block_count(self) -> int:
        return len(self.block_results)

    @property
    def successful_block_count(self) -> int:
        return sum(1 for r in self.block_results if r.success)

    @property
    def failed_block_count(self) -> int:
        return sum(1 for r in self.block_results if not r.success)

    @property
    def skipped_block_count(self) -> int:
        return sum(1 for r in self.block_results if r.skipped)

    @property
    def total_execution_time_ms(self) -> int:
        return sum(r.execution_time_ms for r in self.block_results)


class PhaseResult(BaseModel):
    """Outcome of one phase: the results of the tasks that actually ran."""

    model_config = ConfigDict(frozen=True)

    phase_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    task_results: list[TaskResult] = Field(default_factory=list)
    skipped_task_ids: list[str] = Field(default_factory=list)
    failure_task: str | None = None
    failure_reason: str | None = None
    failure_kind: FailureKind | None = None

    @property
    def duration(self) -> timedelta:
        return _duration(self.start_time, self.end_time)

    @property
    def task_count(self) -> int:
        return len(self.task_results)

    @property
    def successful_task_count(self) -> int:
        return sum(1 for r in self.task_results if r.success)


class ExecutionResult(BaseModel):
    """Outcome of a whole plan run (or a single phase/task run)."""

    model_config = ConfigDict(frozen=True)

    plan_name: str
    success: bool
    start_time: datetime
    end_time: datetime
    phase_results: list[PhaseResult] = Field(default_factory=list)
    failure_phase: str | None = None
    failure_reason: str | None = None
    failure_kind: FailureKind | None = None

    @property
    def duration(self) -> timedelta:
        return _duration(self.start_time, self.end_time)

    @property
    def total_tasks(self) -> int:
        return sum(p.task_count for p in self.phase_results)

    @property
    def successful_tasks(self) -> int:
        return sum(p.successful_task_count for p in self.phase_results)

    @property
    def failed_tasks(self) -> int:
        return self.total_tasks - self.successful_tasks

    def task_result(self, task_id: str) -> TaskResult | None:
        """Find the result recorded for ``task_id``, if it ran."""
        for phase in self.phase_results:
            for result in phase.task_results:
                if result.task_id == task_id:
                    return result
        return None


class ProgressInfo(BaseModel):
    """Point-in-time view of a run, safe to hand to another thread."""

    model_config = ConfigDict(frozen=True)

    plan_name: str
    execution_id: str
    current_phase: str | None = None
    current_task: str | None = None
    total_phases: int = 0
    completed_phases: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    start_time: datetime | None = None
    last_update_time: datetime | None = None
    status: ProgressStatus = ProgressStatus.PENDING

    @property
    def completion_percentage(self) -> float:
        if self.total_tasks == 0:
            return 0.0
        return self.completed_tasks * 100.0 / self.total_tasks

    @property
    def remaining_tasks(self) -> int:
        return self.total_tasks - self.completed_tasks


class Checkpoint(BaseModel):
    """Snapshot from which a plan run can be resumed."""

    model_config = ConfigDict(frozen=True)

    plan_name: str
    last_completed_phase: str | None = None
    last_completed_task: str | None = None
    current_phase: str | None = None
    current_task: str | None = None
    completed_tasks: list[str] = Field(default_factory=list)
    context_variables: dict[str, Any] = Field(default_factory=dict)
    checkpoint_time: datetime = Field(default_factory=datetime.now)
    valid: bool = True

    @property
    def is_resumable(self) -> bool:
        return self.valid and self.current_phase is not None


# ---------------------------------------------------------------------------
# Execution history
# ---------------------------------------------------------------------------


class TaskRecord(BaseModel):
    task_id: str
    task_name: str
    success: bool
    duration_ms: int = 0
    blocks: int = 0
    error: str | None = None


class PhaseRecord(BaseModel):
    """One entry of a plan's execution history: a phase as it ran once."""

    phase_name: str
    success: bool
    timestamp: datetime = Field(default_factory=datetime.now)
    duration_ms: int = 0
    tasks_completed: int = 0
    tasks_failed: int = 0
    tasks_skipped: int = 0
    summary: str = ""
    task_details: list[TaskRecord] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: PhaseResult) -> PhaseRecord:
        details = [
            TaskRecord(
                task_id=r.task_id,
                task_name=r.task_name,
                success=r.success,
                duration_ms=int(r.duration.total_seconds() * 1000),
                blocks=r.block_count,
                error=r.failure_reason,
            )
            for r in result.task_results
        ]
        completed = sum(1 for d in details if d.success)
        return cls(
            phase_name=result.phase_name,
            success=result.success,
            timestamp=result.end_time,
            duration_ms=int(result.duration.total_seconds() * 1000),
            tasks_completed=completed,
            tasks_failed=len(details) - completed,
            tasks_skipped=len(result.skipped_task_ids),
            summary=result.failure_reason or "",
            task_details=details,
        )


class PlanHistory(BaseModel):
    """Everything recorded about one plan across runs."""

    plan_name: str
    plan_version: str = ""
    status: ProgressStatus = ProgressStatus.PENDING
    started_at: datetime | None = None
    last_executed: datetime | None = None
    completed_phases: list[str] = Field(default_factory=list)
    failed_phases: list[str] = Field(default_factory=list)
    records: list[PhaseRecord] = Field(default_factory=list)

    def add_record(self, record: PhaseRecord, *, finished: bool = True) -> None:
        """Append ``record``; ``finished`` is False when only some of the phase's tasks ran."""
        self.records.append(record)
        self.last_executed = record.timestamp
        if not record.success:
            if record.phase_name not in self.failed_phases:
                self.failed_phases.append(record.phase_name)
            return
        if record.phase_name in self.failed_phases:
            self.failed_phases.remove(record.phase_name)
        if finished and record.phase_name not in self.completed_phases:
            self.completed_phases.append(record.phase_name)

    def last(self, n: int | None = None) -> list[PhaseRecord]:
        """The ``n`` most recent records, newest first.

        Without ``n``, every record in the order it was written.
        """
        if not n:
            return list(self.records)
        return self.records[::-1][:n]


class HistoryLog(BaseModel):
    """Contents of ``<state_dir>/history.json``: per-plan histories for one project."""

    project_root: str = ""
    last_updated: datetime | None = None
    plans: dict[str, PlanHistory] = Field(default_factory=dict)

    def plan(self, plan_name: str, version: str = "") -> PlanHistory:
        history = self.plans.get(plan_name)
        if history is None:
            history = self.plans[plan_name] = PlanHistory(
                plan_name=plan_name, plan_version=version
            )
        elif version:
            history.plan_version = version
        return history
