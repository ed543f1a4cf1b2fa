"""Top-level orchestrator: walks a plan phase by phase, task by task.

State machine::

    IDLE → RUNNING ⇄ PAUSED → COMPLETED | FAILED | CANCELLED

Pause and cancel are cooperative: they are observed only at phase and task
boundaries, so a running block always finishes first. The control methods
may be called from any thread; everything else runs on the caller's thread.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Set
from datetime import datetime

from migrator.context import MigrationContext
from migrator.executor import TaskExecutor
from migrator.listeners import ExecutionListener
from migrator.models import (
    Checkpoint,
    EngineState,
    ExecutionResult,
    FailureKind,
    PhaseResult,
    ProgressInfo,
    TaskResult,
)
from migrator.plan import Phase, Plan, Task
from migrator.tracker import ProgressTracker

logger = logging.getLogger(__name__)

CANCELLED = "Cancelled by user"
STOPPED_BY_LISTENER = "Stopped by listener"
UNKNOWN = "unknown"
BANNER = "=" * 40


class MigrationEngine:
    """Executes migration plans and exposes pause/resume/cancel controls.

    Each engine owns its listeners and its ProgressTracker; create one engine
    per plan run.
    """

    def __init__(
        self,
        plan_name: str = "",
        *,
        executor: TaskExecutor | None = None,
        tracker: ProgressTracker | None = None,
    ) -> None:
        self.listeners: list[ExecutionListener] = []
        self._executor = executor or TaskExecutor()
        self._executor.listeners = self.listeners
        self._tracker = tracker or ProgressTracker(plan_name)
        self._control = threading.Condition()
        self._pause_requested = False
        self._cancel_requested = False
        self._state = EngineState.IDLE

    # -- listeners ---------------------------------------------------------

    def add_listener(self, listener: ExecutionListener | None) -> None:
        if listener is not None:
            self.listeners.append(listener)

    def remove_listener(self, listener: ExecutionListener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def clear_listeners(self) -> None:
        self.listeners.clear()

    # -- controls ----------------------------------------------------------

    @property
    def state(self) -> EngineState:
        with self._control:
            return self._state

    def _set_state(self, state: EngineState) -> None:
        with self._control:
            self._state = state

    def pause_execution(self) -> None:
        """Pause at the next phase/task boundary."""
        logger.info("Pause requested")
        with self._control:
            self._pause_requested = True
            self._control.notify_all()

    def resume_execution(self) -> None:
        logger.info("Resuming execution")
        with self._control:
            self._pause_requested = False
            self._control.notify_all()

    def cancel_execution(self) -> None:
        """Stop at the next phase/task boundary. Overrides a pending pause."""
        logger.warning("Cancellation requested")
        with self._control:
            self._cancel_requested = True
            self._pause_requested = False
            self._control.notify_all()

    def reset_flags(self) -> None:
        with self._control:
            self._pause_requested = False
            self._cancel_requested = False
            self._control.notify_all()

    @property
    def pause_requested(self) -> bool:
        with self._control:
            return self._pause_requested

    @property
    def cancel_requested(self) -> bool:
        with self._control:
            return self._cancel_requested

    def _at_boundary(self) -> bool:
        """Block while paused. Returns False if the run has been cancelled."""
        with self._control:
            if self._pause_requested and not self._cancel_requested:
                logger.info("Migration paused - waiting for resume...")
                self._state = EngineState.PAUSED
                self._control.wait_for(lambda: not self._pause_requested or self._cancel_requested)
                if not self._cancel_requested:
                    logger.info("Migration resumed")
                    self._state = EngineState.RUNNING
            return not self._cancel_requested

    # -- progress ----------------------------------------------------------

    @property
    def progress_tracker(self) -> ProgressTracker:
        return self._tracker

    def get_progress(self) -> ProgressInfo:
        return self._tracker.get_progress()

    def can_resume(self) -> bool:
        return self._tracker.can_resume()

    def get_last_checkpoint(self, context: MigrationContext) -> Checkpoint:
        return self._tracker.get_last_checkpoint(context)

    def restore_checkpoint(
        self, checkpoint: Checkpoint, context: MigrationContext | None = None
    ) -> None:
        """Seed this engine from a checkpoint saved by an earlier process."""
        self._tracker.restore(checkpoint)
        if context is not None and checkpoint.valid:
            context.set_variables(checkpoint.context_variables, resolve=False)

    # -- plan execution ----------------------------------------------------

    def execute_plan(self, plan: Plan, context: MigrationContext) -> ExecutionResult:
        """Run every phase of ``plan`` in order, stopping at the first failure."""
        logger.info(BANNER)
        logger.info("Starting migration plan: %s", plan.name)
        if plan.description:
            logger.info("Description: %s", plan.description)
        logger.info("Phases: %d", len(plan.phases))
        logger.info(BANNER)
        return self._run_plan(plan, context, completed=None)

    def resume_from_checkpoint(self, plan: Plan, context: MigrationContext) -> ExecutionResult:
        """Re-run ``plan`` skipping every task that already completed successfully.

        Without a checkpoint this is the same as ``execute_plan``.
        """
        logger.info(BANNER)
        logger.info("Resuming migration plan from checkpoint: %s", plan.name)
        logger.info(BANNER)

        if not self.can_resume():
            logger.warning("No checkpoint found, executing full plan")
            return self._run_plan(plan, context, completed=None)

        checkpoint = self.get_last_checkpoint(context)
        logger.info("Found checkpoint from: %s", checkpoint.checkpoint_time)
        logger.info("Last completed task: %s", checkpoint.last_completed_task)

        completed = self._tracker.completed_task_ids()
        logger.info("Skipping %d already completed tasks", len(completed))
        return self._run_plan(plan, context, completed=frozenset(completed))

    def _run_plan(
        self, plan: Plan, context: MigrationContext, completed: Set[str] | None
    ) -> ExecutionResult:
        start = datetime.now()
        phase_results: list[PhaseResult] = []
        self._set_state(EngineState.RUNNING)

        try:
            self._tracker.record_plan_start(plan.name)
            for listener in self.listeners:
                listener.on_plan_start(plan, context)

            for idx, phase in enumerate(plan.phases, start=1):
                if completed is not None and all(t.id in completed for t in phase.tasks):
                    logger.info("Skipping completed phase: %s", phase.name)
                    continue

                if not self._at_boundary():
                    logger.warning("Migration cancelled by user")
                    result = self._plan_failed(
                        plan, phase.name, CANCELLED, FailureKind.CANCELLED, phase_results, start
                    )
                    return self._finish(plan, result)

                logger.info("Executing phase %d/%d: %s", idx, len(plan.phases), phase.name)
                for listener in self.listeners:
                    listener.on_phase_start(phase, context)

                phase_result = self._execute_phase(phase, context, completed or frozenset())
                phase_results.append(phase_result)

                if not self._fire_phase_complete(phase, phase_result):
                    logger.warning("Execution stopped by listener after phase: %s", phase.name)
                    result = self._plan_failed(
                        plan,
                        phase.name,
                        STOPPED_BY_LISTENER,
                        FailureKind.LISTENER_VETO,
                        phase_results,
                        start,
                    )
                    return self._finish(plan, result)

                if not phase_result.success:
                    logger.error("Phase failed: %s - %s", phase.name, phase_result.failure_reason)
                    result = self._plan_failed(
                        plan,
                        phase.name,
                        phase_result.failure_reason or "",
                        phase_result.failure_kind,
                        phase_results,
                        start,
                    )
                    return self._finish(plan, result)

                logger.info("Phase completed successfully: %s", phase.name)

            result = ExecutionResult(
                plan_name=plan.name,
                success=True,
                start_time=start,
                end_time=datetime.now(),
                phase_results=phase_results,
            )
            logger.info(BANNER)
            logger.info("Migration plan completed successfully: %s", plan.name)
            logger.info("Total phases: %d", len(phase_results))
            logger.info("Total tasks: %d", result.total_tasks)
            logger.info("Duration: %s", result.duration)
            logger.info(BANNER)
            return self._finish(plan, result)

        except Exception as exc:
            logger.exception("Unexpected error executing migration plan: %s", plan.name)
            return self._crashed(plan, UNKNOWN, exc, phase_results, start)

    def _execute_phase(
        self, phase: Phase, context: MigrationContext, completed: Set[str]
    ) -> PhaseResult:
        logger.info("Phase: %s (%d tasks)", phase.name, len(phase.tasks))
        start = datetime.now()
        task_results: list[TaskResult] = []
        skipped: list[str] = []

        def _failed(task_name: str, reason: str, kind: FailureKind | None) -> PhaseResult:
            self._tracker.record_phase_complete(phase.name, False)
            return PhaseResult(
                phase_name=phase.name,
                success=False,
                start_time=start,
                end_time=datetime.now(),
                task_results=task_results,
                skipped_task_ids=skipped,
                failure_task=task_name,
                failure_reason=reason,
                failure_kind=kind,
            )

        try:
            self._tracker.record_phase_start(phase.name)
            tasks = self._executor.resolve_dependencies(phase.tasks)

            for idx, task in enumerate(tasks, start=1):
                if task.id in completed:
                    logger.info("Skipping completed task %d/%d: %s", idx, len(tasks), task.name)
                    skipped.append(task.id)
                    continue

                if not self._at_boundary():
                    logger.warning("Phase cancelled by user")
                    return _failed(task.name, CANCELLED, FailureKind.CANCELLED)

                logger.info("Executing task %d/%d: %s (%s)", idx, len(tasks), task.name, task.id)
                result = self._run_task(task, context)
                task_results.append(result)

                if not result.success:
                    logger.error("Task failed: %s - %s", task.name, result.failure_reason)
                    return _failed(task.name, result.failure_reason or "", result.failure_kind)

            self._tracker.record_phase_complete(phase.name, True)
            logger.info("Phase completed successfully: %s (%d tasks)", phase.name, len(task_results))
            return PhaseResult(
                phase_name=phase.name,
                success=True,
                start_time=start,
                end_time=datetime.now(),
                task_results=task_results,
                skipped_task_ids=skipped,
            )

        except Exception as exc:
            logger.exception("Unexpected error executing phase: %s", phase.name)
            return _failed(UNKNOWN, f"Unexpected error: {exc}", FailureKind.UNEXPECTED)

    def _run_task(self, task: Task, context: MigrationContext) -> TaskResult:
        self._tracker.record_task_start(task.id, task.name)
        result = self._executor.execute_task(task, context)
        self._tracker.record_task_complete(task.id, result.success)
        self._tracker.record_block_results(task.id, result.block_results)
        return result

    # -- single phase / task ----------------------------------------------

    def execute_phase_by_id(
        self, plan: Plan, phase_id: str, context: MigrationContext
    ) -> ExecutionResult:
        """Run a single phase, matched by id or (case-insensitively) by name."""
        logger.info(BANNER)
        logger.info("Executing single phase: %s", phase_id)
        logger.info("From plan: %s", plan.name)
        logger.info(BANNER)
        start = datetime.now()

        phase = plan.find_phase(phase_id)
        if phase is None:
            logger.error("Phase not found: %s", phase_id)
            self._set_state(EngineState.FAILED)
            return self._plan_failed(
                plan, phase_id, f"Phase not found: {phase_id}", FailureKind.NOT_FOUND, [], start
            )

        self._set_state(EngineState.RUNNING)
        try:
            self._tracker.record_plan_start(plan.name)
            for listener in self.listeners:
                listener.on_plan_start(plan, context)

            if not self._at_boundary():
                result = self._plan_failed(
                    plan, phase.name, CANCELLED, FailureKind.CANCELLED, [], start
                )
                return self._finish(plan, result)

            for listener in self.listeners:
                listener.on_phase_start(phase, context)
            phase_result = self._execute_phase(phase, context, frozenset())
            return self._finish_single(plan, phase, phase_result, phase_id, start)

        except Exception as exc:
            logger.exception("Unexpected error executing phase: %s", phase_id)
            return self._crashed(plan, phase_id, exc, [], start)

    def execute_task_by_id(
        self, plan: Plan, task_id: str, context: MigrationContext
    ) -> ExecutionResult:
        """Run a single task, wrapped in its parent phase's events."""
        logger.info(BANNER)
        logger.info("Executing single task: %s", task_id)
        logger.info("From plan: %s", plan.name)
        logger.info(BANNER)
        start = datetime.now()

        found = plan.find_task(task_id)
        if found is None:
            logger.error("Task not found: %s", task_id)
            self._set_state(EngineState.FAILED)
            return self._plan_failed(
                plan, task_id, f"Task not found: {task_id}", FailureKind.NOT_FOUND, [], start
            )
        phase, task = found

        self._set_state(EngineState.RUNNING)
        try:
            self._tracker.record_plan_start(plan.name)
            for listener in self.listeners:
                listener.on_plan_start(plan, context)

            if not self._at_boundary():
                result = self._plan_failed(
                    plan, phase.name, CANCELLED, FailureKind.CANCELLED, [], start
                )
                return self._finish(plan, result)

            for listener in self.listeners:
                listener.on_phase_start(phase, context)

            logger.info("Executing task: %s from phase: %s", task.name, phase.name)
            self._tracker.record_phase_start(phase.name)
            task_result = self._run_task(task, context)
            self._tracker.record_phase_complete(phase.name, task_result.success)

            phase_result = PhaseResult(
                phase_name=phase.name,
                success=task_result.success,
                start_time=start,
                end_time=datetime.now(),
                task_results=[task_result],
                failure_task=None if task_result.success else task.name,
                failure_reason=task_result.failure_reason,
                failure_kind=task_result.failure_kind,
            )
            return self._finish_single(plan, phase, phase_result, task_id, start)

        except Exception as exc:
            logger.exception("Unexpected error executing task: %s", task_id)
            return self._crashed(plan, task_id, exc, [], start)

    def _finish_single(
        self,
        plan: Plan,
        phase: Phase,
        phase_result: PhaseResult,
        unit_id: str,
        start: datetime,
    ) -> ExecutionResult:
        if not self._fire_phase_complete(phase, phase_result):
            logger.warning("Execution stopped by listener after phase: %s", phase.name)
            result = self._plan_failed(
                plan, unit_id, STOPPED_BY_LISTENER, FailureKind.LISTENER_VETO, [phase_result], start
            )
        elif phase_result.success:
            logger.info("Completed successfully: %s", unit_id)
            result = ExecutionResult(
                plan_name=plan.name,
                success=True,
                start_time=start,
                end_time=datetime.now(),
                phase_results=[phase_result],
            )
        else:
            logger.error("Failed: %s - %s", unit_id, phase_result.failure_reason)
            result = self._plan_failed(
                plan,
                unit_id,
                phase_result.failure_reason or "",
                phase_result.failure_kind,
                [phase_result],
                start,
            )
        return self._finish(plan, result)

    # -- helpers -----------------------------------------------------------

    def _fire_phase_complete(self, phase: Phase, result: PhaseResult) -> bool:
        for listener in self.listeners:
            if not listener.on_phase_complete(phase, result):
                return False
        return True

    def _finish(self, plan: Plan, result: ExecutionResult) -> ExecutionResult:
        self._tracker.record_plan_complete(result.success)
        for listener in self.listeners:
            listener.on_plan_complete(plan, result)
        if result.success:
            self._set_state(EngineState.COMPLETED)
        elif result.failure_kind == FailureKind.CANCELLED:
            self._set_state(EngineState.CANCELLED)
        else:
            self._set_state(EngineState.FAILED)
        return result

    def _plan_failed(
        self,
        plan: Plan,
        failure_phase: str,
        reason: str,
        kind: FailureKind | None,
        phase_results: list[PhaseResult],
        start: datetime,
    ) -> ExecutionResult:
        return ExecutionResult(
            plan_name=plan.name,
            success=False,
            start_time=start,
            end_time=datetime.now(),
            phase_results=phase_results,
            failure_phase=failure_phase,
            failure_reason=reason,
            failure_kind=kind,
        )

    def _crashed(
        self,
        plan: Plan,
        failure_phase: str,
        exc: Exception,
        phase_results: list[PhaseResult],
        start: datetime,
    ) -> ExecutionResult:
        self._tracker.record_plan_complete(False)
        self._set_state(EngineState.FAILED)
        return self._plan_failed(
            plan,
            failure_phase,
            f"Unexpected error: {exc}",
            FailureKind.UNEXPECTED,
            phase_results,
            start,
        )
