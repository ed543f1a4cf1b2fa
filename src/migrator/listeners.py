"""Execution listeners: observers of the engine's lifecycle events.

Events fire in this order for every run::

    on_plan_start
      on_phase_start
        on_task_start
          on_block_start / on_block_complete   (per block)
        on_task_complete                        (may veto)
      on_phase_complete                         (may veto)
    on_plan_complete

Listeners must not mutate the context from inside a hook.
"""

# ruff: noqa: T201

from __future__ import annotations

import sys
from datetime import timedelta
from typing import TYPE_CHECKING, TextIO

if TYPE_CHECKING:
    from migrator.context import MigrationContext
    from migrator.models import BlockResult, ExecutionResult, PhaseResult, TaskResult
    from migrator.plan import Block, Phase, Plan, Task


class ExecutionListener:
    """No-op base class. Override the hooks you care about.

    ``on_task_complete`` and ``on_phase_complete`` return whether execution
    should continue; returning ``False`` turns a successful unit into a
    failure ("Stopped by listener").
    """

    def on_plan_start(self, plan: Plan, context: MigrationContext) -> None:
        pass

    def on_plan_complete(self, plan: Plan, result: ExecutionResult) -> None:
        pass

    def on_phase_start(self, phase: Phase, context: MigrationContext) -> None:
        pass

    def on_phase_complete(self, phase: Phase, result: PhaseResult) -> bool:
        return True

    def on_task_start(self, task: Task, context: MigrationContext) -> None:
        pass

    def on_task_complete(self, task: Task, result: TaskResult) -> bool:
        return True

    def on_block_start(self, block: Block, context: MigrationContext) -> None:
        pass

    def on_block_complete(self, block: Block, result: BlockResult) -> None:
        pass


PLAN_SEPARATOR = "═" * 67
PHASE_SEPARATOR = "─" * 67
SUCCESS_ICON = "✓"
FAILURE_ICON = "✗"
RUNNING_ICON = "▶"


def format_duration(duration: timedelta) -> str:
    seconds = int(duration.total_seconds())
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m {seconds % 60}s"
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


class ConsoleProgressListener(ExecutionListener):
    """Prints a human-readable progress log of the run."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream or sys.stdout
        self._total_tasks = 0
        self._completed_tasks = 0

    def _print(self, line: str = "") -> None:
        print(line, file=self._stream)

    def on_plan_start(self, plan: Plan, context: MigrationContext) -> None:
        self._total_tasks = plan.task_count
        self._completed_tasks = 0
        self._print()
        self._print(PLAN_SEPARATOR)
        self._print(f"  MIGRATION PLAN: {plan.name}")
        if plan.description:
            self._print(f"  {plan.description}")
        self._print(f"  Phases: {len(plan.phases)}")
        if context.dry_run:
            self._print("  Mode: dry-run")
        self._print(PLAN_SEPARATOR)

    def on_plan_complete(self, plan: Plan, result: ExecutionResult) -> None:
        self._print()
        self._print(PLAN_SEPARATOR)
        if result.success:
            self._print(f"  {SUCCESS_ICON} MIGRATION COMPLETED SUCCESSFULLY")
        else:
            self._print(f"  {FAILURE_ICON} MIGRATION FAILED")
            self._print(f"  Failed in phase: {result.failure_phase}")
            self._print(f"  Reason: {result.failure_reason}")
        self._print(f"  Duration: {format_duration(result.duration)}")
        self._print(f"  Tasks: {result.successful_tasks}/{result.total_tasks} successful")
        self._print(PLAN_SEPARATOR)

    def on_phase_start(self, phase: Phase, context: MigrationContext) -> None:
        self._print()
        self._print(PHASE_SEPARATOR)
        self._print(f"  {RUNNING_ICON} PHASE: {phase.name}")
        if phase.description:
            self._print(f"  {phase.description}")
        self._print(f"  Tasks: {len(phase.tasks)}")
        self._print(PHASE_SEPARATOR)

    def on_phase_complete(self, phase: Phase, result: PhaseResult) -> bool:
        if result.success:
            self._print(f"  {SUCCESS_ICON} Phase '{phase.name}' completed successfully")
            self._print(f"    Duration: {format_duration(result.duration)}")
            self._print(f"    Tasks: {result.successful_task_count}/{result.task_count}")
        else:
            self._print(f"  {FAILURE_ICON} Phase '{phase.name}' failed")
            self._print(f"    Failed task: {result.failure_task}")
            self._print(f"    Reason: {result.failure_reason}")
        return True

    def on_task_start(self, task: Task, context: MigrationContext) -> None:
        self._print(f"    {RUNNING_ICON} {task.name}")

    def on_task_complete(self, task: Task, result: TaskResult) -> bool:
        self._completed_tasks += 1
        if result.success:
            progress = self._completed_tasks * 100 / self._total_tasks if self._total_tasks else 100
            ms = int(result.duration.total_seconds() * 1000)
            self._print(
                f"      {SUCCESS_ICON} {task.name} [{progress:.0f}%] ({ms}ms, {result.block_count} blocks)"
            )
        else:
            self._print(f"      {FAILURE_ICON} {task.name} FAILED")
            self._print(f"        Reason: {result.failure_reason}")
        return True

    def on_block_complete(self, block: Block, result: BlockResult) -> None:
        if result.success:
            if result.skipped:
                self._print(f"        - {block.name}: {result.message}")
            return
        self._print(f"        {FAILURE_ICON} Block failed: {block.name}")
        self._print(f"          {result.message}")
        if result.error_details and result.error_details.strip():
            self._print("          Details:")
            for line in result.error_details.splitlines():
                self._print(f"            {line}")
