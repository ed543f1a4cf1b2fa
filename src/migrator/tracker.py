"""Thread-safe record of how far a plan run has got."""

from __future__ import annotations

import copy
import logging
import threading
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime

from migrator.context import MigrationContext
from migrator.models import BlockResult, Checkpoint, ProgressInfo, ProgressStatus

logger = logging.getLogger(__name__)


@dataclass
class PhaseProgress:
    name: str
    start_time: datetime
    end_time: datetime | None = None
    success: bool = False


@dataclass
class TaskProgress:
    task_id: str
    name: str
    phase: str | None
    start_time: datetime
    end_time: datetime | None = None
    success: bool = False
    block_results: list[BlockResult] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.end_time is not None and self.success

    @property
    def failed(self) -> bool:
        return self.end_time is not None and not self.success


class ProgressTracker:
    """Observer of engine state, written by the engine thread only.

    Every read and write takes the same lock so a monitoring thread can poll
    ``get_progress()`` while a run is in flight. Task records are keyed by
    task id, which is what resume matching uses.
    """

    def __init__(self, plan_name: str) -> None:
        self.execution_id = str(uuid.uuid4())
        self.plan_name = plan_name
        self._lock = threading.RLock()
        self._phases: dict[str, PhaseProgress] = {}
        self._tasks: dict[str, TaskProgress] = {}
        self._plan_start: datetime | None = None
        self._last_update = datetime.now()
        self._current_phase: str | None = None
        self._current_task: str | None = None

    def _touch(self) -> None:
        self._last_update = datetime.now()

    # -- recording ---------------------------------------------------------

    def record_plan_start(self, plan_name: str | None = None) -> None:
        with self._lock:
            if plan_name:
                self.plan_name = plan_name
            self._plan_start = datetime.now()
            self._touch()
        logger.info("Started migration plan: %s (execution ID: %s)", self.plan_name, self.execution_id)

    def record_plan_complete(self, success: bool) -> None:
        with self._lock:
            self._touch()
        logger.info("Completed migration plan: %s - success: %s", self.plan_name, success)

    def record_phase_start(self, phase_name: str) -> None:
        with self._lock:
            self._current_phase = phase_name
            self._phases[phase_name] = PhaseProgress(phase_name, datetime.now())
            self._touch()
        logger.info("Started phase: %s", phase_name)

    def record_phase_complete(self, phase_name: str, success: bool) -> None:
        with self._lock:
            progress = self._phases.get(phase_name)
            if progress is not None:
                progress.end_time = datetime.now()
                progress.success = success
            self._touch()
        logger.info("Completed phase: %s - success: %s", phase_name, success)

    def record_task_start(self, task_id: str, task_name: str | None = None) -> None:
        with self._lock:
            self._current_task = task_id
            self._tasks[task_id] = TaskProgress(
                task_id, task_name or task_id, self._current_phase, datetime.now()
            )
            self._touch()
        logger.info("Started task: %s", task_name or task_id)

    def record_task_complete(self, task_id: str, success: bool) -> None:
        with self._lock:
            progress = self._tasks.get(task_id)
            if progress is not None:
                progress.end_time = datetime.now()
                progress.success = success
            if self._current_task == task_id:
                self._current_task = None
            self._touch()
        logger.info("Completed task: %s - success: %s", task_id, success)

    def record_block_results(self, task_id: str, results: Iterable[BlockResult]) -> None:
        with self._lock:
            progress = self._tasks.get(task_id)
            if progress is not None:
                progress.block_results.extend(results)
            self._touch()

    # -- queries -----------------------------------------------------------

    @property
    def current_phase(self) -> str | None:
        with self._lock:
            return self._current_phase

    @property
    def current_task(self) -> str | None:
        with self._lock:
            return self._current_task

    def block_results(self, task_id: str) -> list[BlockResult]:
        with self._lock:
            progress = self._tasks.get(task_id)
            return list(progress.block_results) if progress else []

    def completed_task_ids(self) -> set[str]:
        with self._lock:
            return {tid for tid, tp in self._tasks.items() if tp.succeeded}

    def status(self) -> ProgressStatus:
        with self._lock:
            if any(tp.failed for tp in self._tasks.values()):
                return ProgressStatus.FAILED
            if self._current_task is not None:
                return ProgressStatus.IN_PROGRESS
            if self._tasks and all(tp.succeeded for tp in self._tasks.values()):
                return ProgressStatus.COMPLETED
            return ProgressStatus.PENDING

    def get_progress(self) -> ProgressInfo:
        with self._lock:
            return ProgressInfo(
                plan_name=self.plan_name,
                execution_id=self.execution_id,
                current_phase=self._current_phase,
                current_task=self._current_task,
                total_phases=len(self._phases),
                completed_phases=sum(1 for p in self._phases.values() if p.end_time is not None),
                total_tasks=len(self._tasks),
                completed_tasks=sum(1 for t in self._tasks.values() if t.succeeded),
                failed_tasks=sum(1 for t in self._tasks.values() if t.failed),
                start_time=self._plan_start,
                last_update_time=self._last_update,
                status=self.status(),
            )

    def can_resume(self) -> bool:
        with self._lock:
            return bool(self._tasks) and self._current_phase is not None

    def get_last_checkpoint(self, context: MigrationContext) -> Checkpoint:
        """Build a checkpoint from tracked state and a copy of the context variables."""
        with self._lock:
            if not (self._tasks and self._current_phase is not None):
                return Checkpoint(plan_name=self.plan_name, valid=False)

            last_phase = last_task = None
            completed: list[str] = []
            for tp in self._tasks.values():
                if tp.succeeded:
                    last_phase, last_task = tp.phase, tp.task_id
                    completed.append(tp.task_id)

            return Checkpoint(
                plan_name=self.plan_name,
                last_completed_phase=last_phase,
                last_completed_task=last_task,
                current_phase=self._current_phase,
                current_task=self._current_task,
                completed_tasks=completed,
                context_variables=copy.deepcopy(context.all_variables()),
                checkpoint_time=self._last_update,
                valid=True,
            )

    def restore(self, checkpoint: Checkpoint) -> None:
        """Seed completed tasks from a checkpoint taken by an earlier run."""
        if not checkpoint.valid:
            logger.warning("Ignoring invalid checkpoint for plan %s", checkpoint.plan_name)
            return
        with self._lock:
            when = checkpoint.checkpoint_time
            for task_id in checkpoint.completed_tasks:
                phase = checkpoint.last_completed_phase if task_id == checkpoint.last_completed_task else None
                self._tasks[task_id] = TaskProgress(
                    task_id, task_id, phase, when, end_time=when, success=True
                )
            self._current_phase = checkpoint.current_phase or checkpoint.last_completed_phase
            self._touch()
        logger.info(
            "Restored checkpoint for %s: %d completed tasks",
            checkpoint.plan_name,
            len(checkpoint.completed_tasks),
        )
