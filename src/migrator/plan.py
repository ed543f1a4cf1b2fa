"""In-memory plan model: Plan → Phase → Task → Block.

Plans are assembled once (usually by ``migrator.loader``) and never mutated
afterwards; the engine only reads them.
"""

from __future__ import annotations

import enum
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from migrator.errors import PlanError

if TYPE_CHECKING:
    from migrator.context import MigrationContext
    from migrator.models import BlockResult


class BlockType(enum.StrEnum):
    COMMAND = "command"
    GIT = "git"
    FILE_OPERATION = "file_operation"
    AI_PROMPT = "ai_prompt"
    CUSTOM = "custom"


@runtime_checkable
class Block(Protocol):
    """What the engine needs from an executable step."""

    name: str
    type: BlockType
    enable_if: str

    def validate(self) -> bool: ...

    def is_enabled(self, context: MigrationContext) -> bool: ...

    def execute(self, context: MigrationContext) -> BlockResult: ...

    def describe(self) -> str: ...


@dataclass(frozen=True)
class Task:
    id: str
    name: str = ""
    description: str = ""
    blocks: Sequence[Block] = ()

    def __post_init__(self) -> None:
        if not self.id:
            raise PlanError("Task ID is required")
        if not self.name:
            object.__setattr__(self, "name", self.id)
        object.__setattr__(self, "blocks", tuple(self.blocks))
        if not self.blocks:
            raise PlanError(f"Task {self.id!r} must have at least one block")


@dataclass(frozen=True)
class Phase:
    name: str
    tasks: Sequence[Task] = ()
    description: str = ""
    order: int = 0
    id: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise PlanError("Phase name is required")
        object.__setattr__(self, "tasks", tuple(self.tasks))
        if not self.tasks:
            raise PlanError(f"Phase {self.name!r} must have at least one task")

    def matches(self, phase_id: str) -> bool:
        """True if ``phase_id`` names this phase by id or, failing that, by name."""
        wanted = phase_id.lower()
        return (bool(self.id) and self.id.lower() == wanted) or self.name.lower() == wanted


@dataclass(frozen=True)
class Plan:
    name: str
    phases: Sequence[Phase] = ()
    description: str = ""
    version: str = ""
    variables: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise PlanError("Plan name is required")
        object.__setattr__(self, "phases", tuple(self.phases))
        object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

        seen: set[str] = set()
        for task in self.tasks():
            if task.id in seen:
                raise PlanError(f"Duplicate task id {task.id!r} in plan {self.name!r}")
            seen.add(task.id)

    def tasks(self) -> Iterator[Task]:
        for phase in self.phases:
            yield from phase.tasks

    @property
    def task_count(self) -> int:
        return sum(len(p.tasks) for p in self.phases)

    def find_phase(self, phase_id: str) -> Phase | None:
        for phase in self.phases:
            if phase.matches(phase_id):
                return phase
        return None

    def find_task(self, task_id: str) -> tuple[Phase, Task] | None:
        for phase in self.phases:
            for task in phase.tasks:
                if task.id == task_id:
                    return phase, task
        return None
