"""Tests for TaskExecutor block gating."""

from __future__ import annotations

from helpers import FakeBlock, RecordingListener

from migrator.context import MigrationContext
from migrator.executor import TaskExecutor
from migrator.models import BlockResult, FailureKind
from migrator.plan import Task


def test_resolve_dependencies_keeps_declaration_order():
    tasks = [Task(id=i, blocks=[FakeBlock("b")]) for i in ("c", "a", "b")]
    assert [t.id for t in TaskExecutor().resolve_dependencies(tasks)] == ["c", "a", "b"]


def test_validate_task():
    executor = TaskExecutor()
    assert executor.validate_task(Task(id="t", blocks=[FakeBlock("a"), FakeBlock("b")]))
    assert not executor.validate_task(Task(id="t", blocks=[FakeBlock("a"), FakeBlock("b", valid=False)]))


def test_step_by_step_declined_cancels_task(tmp_path):
    context = MigrationContext(tmp_path, step_by_step=True)
    block = FakeBlock("B1")
    executor = TaskExecutor(confirm=lambda b: False)

    result = executor.execute_task(Task(id="T1", blocks=[block]), context)

    assert not result.success
    assert result.failure_reason == "Cancelled by user"
    assert result.failure_kind == FailureKind.CANCELLED
    assert result.failure_block == "B1"
    assert block.calls == 0


def test_step_by_step_confirmed_runs_block(tmp_path):
    context = MigrationContext(tmp_path, step_by_step=True)
    asked: list[str] = []
    block = FakeBlock("B1")
    executor = TaskExecutor(confirm=lambda b: asked.append(b.name) or True)

    result = executor.execute_task(Task(id="T1", blocks=[block]), context)

    assert result.success
    assert asked == ["B1"]
    assert block.calls == 1


def test_step_by_step_not_asked_in_dry_run(tmp_path):
    context = MigrationContext(tmp_path, step_by_step=True, dry_run=True)
    asked: list[str] = []
    executor = TaskExecutor(confirm=lambda b: asked.append(b.name) or True)

    result = executor.execute_task(Task(id="T1", blocks=[FakeBlock("B1")]), context)

    assert result.success
    assert asked == []


def test_block_outputs_merge_into_context(context: MigrationContext):
    block = FakeBlock("B1", outputs={"beans": ["a", "b"], "count": 2})

    TaskExecutor().execute_task(Task(id="T1", blocks=[block]), context)

    assert context.get_variable("beans") == ["a", "b"]
    assert context.get_variable("count") == 2


def test_block_outputs_stored_verbatim(context: MigrationContext):
    context.set_variable("project_name", "orders")
    block = FakeBlock("B1", outputs={"code": '@Value("${project_name}") String name;'})

    TaskExecutor().execute_task(Task(id="T1", blocks=[block]), context)

    assert context.get_variable("code") == '@Value("${project_name}") String name;'


def test_first_failed_block_ends_task(context: MigrationContext):
    later = FakeBlock("B2")
    listener = RecordingListener()
    executor = TaskExecutor(listeners=[listener])

    result = executor.execute_task(
        Task(id="T1", blocks=[FakeBlock("B1", fail=True), later]), context
    )

    assert result.failure_block == "B1"
    assert result.block_count == 1
    assert later.calls == 0
    assert listener.names("task_complete") == ["T1"]


def test_failed_block_outputs_still_merge(context: MigrationContext):
    class FailingWithOutputs(FakeBlock):
        def execute(self, ctx):
            return BlockResult.failure("nope", output_variables={"exit_code": 3})

    result = TaskExecutor().execute_task(Task(id="T1", blocks=[FailingWithOutputs("B1")]), context)

    assert not result.success
    assert result.failure_reason == "nope"
    assert context.get_variable("exit_code") == 3


def test_block_complete_fires_for_validation_failure(context: MigrationContext):
    listener = RecordingListener()
    executor = TaskExecutor(listeners=[listener])

    executor.execute_task(Task(id="T1", blocks=[FakeBlock("B1", valid=False)]), context)

    assert listener.events == [
        ("task_start", "T1"),
        ("block_start", "B1"),
        ("block_complete", "B1"),
        ("task_complete", "T1"),
    ]


def test_task_veto_ignored_for_failed_task(context: MigrationContext):
    listener = RecordingListener(veto_task="T1")
    executor = TaskExecutor(listeners=[listener])

    result = executor.execute_task(Task(id="T1", blocks=[FakeBlock("B1", fail=True)]), context)

    assert result.failure_kind == FailureKind.EXECUTION
    assert result.failure_block == "B1"


def test_execution_time_recorded(context: MigrationContext):
    result = TaskExecutor().execute_task(Task(id="T1", blocks=[FakeBlock("B1")]), context)

    assert result.end_time >= result.start_time
    assert result.block_results[0].execution_time_ms >= 0
