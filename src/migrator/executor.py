"""Runs the blocks of a single task against the shared context."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from datetime import datetime

from migrator.context import MigrationContext
from migrator.listeners import ExecutionListener
from migrator.models import BlockResult, FailureKind, TaskResult
from migrator.plan import Block, Task

logger = logging.getLogger(__name__)

LISTENER_STOP = "listener-stop"

Confirm = Callable[[Block], bool]


def prompt_to_continue(block: Block) -> bool:
    """Default step-by-step gate: wait for Enter on stdin."""
    try:
        input(f"\n[STEP-BY-STEP] Press Enter to execute next block: {block.name} ({block.type})")
    except EOFError:
        logger.warning("Failed to read user input, continuing execution")
    return True


class TaskExecutor:
    """Executes tasks block by block.

    For each block: fire ``on_block_start``, skip it if ``enable_if`` is
    false, wait for confirmation in step-by-step mode, validate, execute (or
    simulate in dry-run), merge output variables into the context, fire
    ``on_block_complete``. The first failing block ends the task.
    """

    def __init__(
        self,
        listeners: list[ExecutionListener] | None = None,
        confirm: Confirm | None = None,
    ) -> None:
        self.listeners: list[ExecutionListener] = listeners if listeners is not None else []
        self.confirm: Confirm = confirm or prompt_to_continue

    def resolve_dependencies(self, tasks: Sequence[Task]) -> list[Task]:
        """Return tasks in execution order.

        Tasks carry no dependency declarations, so this is declaration order.
        """
        logger.debug("Tasks will execute in definition order: %d tasks", len(tasks))
        return list(tasks)

    def validate_task(self, task: Task) -> bool:
        """Pre-flight check: every block of ``task`` passes ``validate()``."""
        for block in task.blocks:
            if not block.validate():
                logger.error("Block validation failed in task %s: %s", task.name, block.name)
                return False
        return True

    def stop_on_block_failure(self, task: Task) -> bool:
        return True

    # -- execution ---------------------------------------------------------

    def execute_task(self, task: Task, context: MigrationContext) -> TaskResult:
        logger.info("Executing task: %s", task.name)
        start = datetime.now()
        results: list[BlockResult] = []

        for listener in self.listeners:
            listener.on_task_start(task, context)

        current: Block | None = None
        try:
            for idx, block in enumerate(task.blocks, start=1):
                current = block
                logger.debug(
                    "Executing block %d/%d: %s (%s)", idx, len(task.blocks), block.name, block.type
                )
                stopped = self._run_block(task, block, context, results, start)
                if stopped is not None:
                    self._fire_task_complete(task, stopped, veto=False)
                    return stopped
            current = None
        except Exception as exc:
            logger.exception("Unexpected error executing task: %s", task.name)
            result = self._failed(
                task,
                current.name if current is not None else "unknown",
                f"Unexpected error: {exc}",
                FailureKind.UNEXPECTED,
                results,
                start,
            )
            self._fire_task_complete(task, result, veto=False)
            return result

        result = TaskResult(
            task_id=task.id,
            task_name=task.name,
            success=True,
            start_time=start,
            end_time=datetime.now(),
            block_results=results,
        )
        logger.info("Task completed successfully: %s (%d blocks)", task.name, len(results))

        if not self._fire_task_complete(task, result):
            logger.warning("Task execution stopped by listener: %s", task.name)
            return self._failed(
                task, LISTENER_STOP, "Stopped by listener", FailureKind.LISTENER_VETO, results, start
            )
        return result

    def _run_block(
        self,
        task: Task,
        block: Block,
        context: MigrationContext,
        results: list[BlockResult],
        start: datetime,
    ) -> TaskResult | None:
        """Run one block; returns the failed task result when the task must stop."""
        for listener in self.listeners:
            listener.on_block_start(block, context)

        if not block.is_enabled(context):
            logger.info(
                "Skipping block (condition not met): %s - enable_if: %s", block.name, block.enable_if
            )
            skipped = BlockResult.skipped_result(f"Skipped - condition not met: {block.enable_if}")
            results.append(skipped)
            self._fire_block_complete(block, skipped)
            return None

        if context.step_by_step and not context.dry_run and not self.confirm(block):
            return self._failed(
                task, block.name, "Cancelled by user", FailureKind.CANCELLED, results, start
            )

        if not block.validate():
            message = f"Block validation failed: {block.name}"
            logger.error(message)
            failed = BlockResult.failure(message)
            results.append(failed)
            self._fire_block_complete(block, failed)
            return self._failed(
                task, block.name, "Validation failed", FailureKind.VALIDATION, results, start
            )

        result = self._execute_block(block, context)
        results.append(result)

        if result.output_variables:
            # Outputs are stored verbatim; ${...} in command or AI output is data.
            context.set_variables(result.output_variables, resolve=False)
            logger.debug("Updated context with %d output variables", len(result.output_variables))

        self._fire_block_complete(block, result)

        if not result.success:
            logger.error("Block execution failed: %s - %s", block.name, result.message)
            if self.stop_on_block_failure(task):
                return self._failed(
                    task, block.name, result.message, FailureKind.EXECUTION, results, start
                )
            logger.warning("Continuing task execution despite block failure")
            return None

        logger.debug("Block completed: %s (%dms)", block.name, result.execution_time_ms)
        return None

    def _execute_block(self, block: Block, context: MigrationContext) -> BlockResult:
        if context.dry_run:
            logger.info("[DRY-RUN] Simulating block: %s (%s)", block.name, block.type)
            return BlockResult.succeeded(f"[DRY-RUN] Would execute {block.type} block: {block.name}")

        t0 = time.monotonic()
        result = block.execute(context)
        if not result.execution_time_ms:
            elapsed = int((time.monotonic() - t0) * 1000)
            result = result.model_copy(update={"execution_time_ms": elapsed})
        return result

    # -- helpers -----------------------------------------------------------

    def _failed(
        self,
        task: Task,
        failure_block: str,
        reason: str,
        kind: FailureKind,
        results: list[BlockResult],
        start: datetime,
    ) -> TaskResult:
        return TaskResult(
            task_id=task.id,
            task_name=task.name,
            success=False,
            start_time=start,
            end_time=datetime.now(),
            block_results=list(results),
            failure_block=failure_block,
            failure_reason=reason,
            failure_kind=kind,
        )

    def _fire_block_complete(self, block: Block, result: BlockResult) -> None:
        for listener in self.listeners:
            listener.on_block_complete(block, result)

    def _fire_task_complete(self, task: Task, result: TaskResult, *, veto: bool = True) -> bool:
        """Notify listeners; with ``veto``, stop at the first one that returns False."""
        for listener in self.listeners:
            if not listener.on_task_complete(task, result) and veto:
                return False
        return True
