"""Execution engine for multi-phase code migration plans."""

from migrator.context import MigrationContext
from migrator.engine import MigrationEngine
from migrator.errors import ExpressionError, MigratorError, PlanError
from migrator.executor import TaskExecutor
from migrator.listeners import ConsoleProgressListener, ExecutionListener
from migrator.loader import load_plan, load_plan_text, register_block_type
from migrator.models import (
    BlockResult,
    Checkpoint,
    EngineState,
    ExecutionResult,
    FailureKind,
    PhaseResult,
    ProgressInfo,
    TaskResult,
)
from migrator.plan import Block, BlockType, Phase, Plan, Task
from migrator.tracker import ProgressTracker

__all__ = [
    "Block",
    "BlockResult",
    "BlockType",
    "Checkpoint",
    "ConsoleProgressListener",
    "EngineState",
    "ExecutionListener",
    "ExecutionResult",
    "ExpressionError",
    "FailureKind",
    "MigrationContext",
    "MigrationEngine",
    "MigratorError",
    "PhaseResult",
    "Plan",
    "PlanError",
    "Phase",
    "ProgressInfo",
    "ProgressTracker",
    "Task",
    "TaskExecutor",
    "TaskResult",
    "load_plan",
    "load_plan_text",
    "register_block_type",
]
