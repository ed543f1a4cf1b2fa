"""Test doubles shared by the engine and executor tests."""

from __future__ import annotations

from collections.abc import Callable

from migrator.context import MigrationContext
from migrator.expression import evaluate
from migrator.listeners import ExecutionListener
from migrator.models import BlockResult
from migrator.plan import BlockType, Phase, Plan, Task


class FakeBlock:
    """Block that records its executions and returns a canned result."""

    type = BlockType.CUSTOM

    def __init__(
        self,
        name: str,
        *,
        outputs: dict | None = None,
        fail: bool = False,
        valid: bool = True,
        enable_if: str = "",
        raises: Exception | None = None,
        log: list[str] | None = None,
        on_execute: Callable[[MigrationContext], None] | None = None,
    ) -> None:
        self.name = name
        self.enable_if = enable_if
        self.outputs = outputs or {}
        self.fail = fail
        self.valid = valid
        self.raises = raises
        self.log = log if log is not None else []
        self.on_execute = on_execute
        self.calls = 0
        self.seen: list[str | None] = []

    def validate(self) -> bool:
        return self.valid

    def is_enabled(self, context: MigrationContext) -> bool:
        return evaluate(self.enable_if, context)

    def execute(self, context: MigrationContext) -> BlockResult:
        self.calls += 1
        self.log.append(self.name)
        self.seen.append(context.substitute("${x}"))
        if self.on_execute is not None:
            self.on_execute(context)
        if self.raises is not None:
            raise self.raises
        if self.fail:
            return BlockResult.failure(f"{self.name} failed", "boom")
        return BlockResult.succeeded(f"{self.name} ok", output_variables=self.outputs)

    def describe(self) -> str:
        return f"**{self.name}** (Fake)\n"


class RecordingListener(ExecutionListener):
    """Collects every lifecycle event as ``(event, name)`` tuples."""

    def __init__(self, *, veto_task: str | None = None, veto_phase: str | None = None) -> None:
        self.events: list[tuple[str, str]] = []
        self.veto_task = veto_task
        self.veto_phase = veto_phase
        self.plan_result = None

    def on_plan_start(self, plan, context):
        self.events.append(("plan_start", plan.name))

    def on_plan_complete(self, plan, result):
        self.events.append(("plan_complete", plan.name))
        self.plan_result = result

    def on_phase_start(self, phase, context):
        self.events.append(("phase_start", phase.name))

    def on_phase_complete(self, phase, result):
        self.events.append(("phase_complete", phase.name))
        return phase.name != self.veto_phase

    def on_task_start(self, task, context):
        self.events.append(("task_start", task.id))

    def on_task_complete(self, task, result):
        self.events.append(("task_complete", task.id))
        return task.id != self.veto_task

    def on_block_start(self, block, context):
        self.events.append(("block_start", block.name))

    def on_block_complete(self, block, result):
        self.events.append(("block_complete", block.name))

    def names(self, event: str) -> list[str]:
        return [name for kind, name in self.events if kind == event]


def make_plan(*phases: tuple[str, list[tuple[str, list[FakeBlock]]]], name: str = "demo") -> Plan:
    """Build a plan from ``(phase_name, [(task_id, [blocks])])`` tuples."""
    return Plan(
        name=name,
        phases=[
            Phase(
                name=phase_name,
                id=phase_name.lower(),
                tasks=[Task(id=task_id, blocks=blocks) for task_id, blocks in tasks],
            )
            for phase_name, tasks in phases
        ],
    )
