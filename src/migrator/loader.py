"""YAML plan loading and discovery.

Plan files live in the target project at ``.migrator/plans/<name>.yaml``::

    migration-plan:
      name: ejb-to-spring
      variables: {source_dir: src}
      includes: [common.yaml]
      phases:
        - id: prepare
          name: Prepare
          tasks:
            - id: branch
              blocks:
                - type: git
                  name: create-branch
                  args: ["checkout -b migration"]
                  idempotent: true
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from migrator.blocks import AiPromptBlock, CommandBlock, FileOperationBlock, GitCommandBlock
from migrator.errors import PlanError
from migrator.plan import Block, BlockType, Phase, Plan, Task

logger = logging.getLogger(__name__)

PLANS_DIR = Path(".migrator") / "plans"

# ---------------------------------------------------------------------------
# YAML plan models
# ---------------------------------------------------------------------------


class BlockSpec(BaseModel):
    """One block entry. Any key beyond the common ones is passed to the block."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: str
    name: str
    enable_if: str = Field(default="", alias="enable-if")
    description: str = ""

    @property
    def props(self) -> dict[str, Any]:
        return {k.replace("-", "_"): v for k, v in (self.model_extra or {}).items()}


class TaskSpec(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    blocks: list[BlockSpec]


class PhaseSpec(BaseModel):
    id: str = ""
    name: str
    description: str = ""
    tasks: list[TaskSpec]


class PlanSpec(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    name: str
    version: str = ""
    description: str = ""
    includes: list[str] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    phases: list[PhaseSpec] = Field(default_factory=list)


class PlanFile(BaseModel):
    migration_plan: PlanSpec = Field(alias="migration-plan")


# ---------------------------------------------------------------------------
# Block factories
# ---------------------------------------------------------------------------

BlockFactory = Callable[..., Block]

BLOCK_FACTORIES: dict[str, BlockFactory] = {
    BlockType.COMMAND: CommandBlock,
    BlockType.GIT: GitCommandBlock,
    BlockType.FILE_OPERATION: FileOperationBlock,
    BlockType.AI_PROMPT: AiPromptBlock,
}


def register_block_type(type_name: str, factory: BlockFactory) -> None:
    """Make ``type: <type_name>`` available in plan files.

    ``factory`` is called with ``name``, ``enable_if``, ``description`` and
    every extra key of the block entry as keyword arguments.
    """
    if type_name in BLOCK_FACTORIES:
        logger.warning("Replacing block factory for type %r", type_name)
    BLOCK_FACTORIES[type_name] = factory


def build_block(spec: BlockSpec) -> Block:
    factory = BLOCK_FACTORIES.get(spec.type)
    if factory is None:
        known = ", ".join(sorted(BLOCK_FACTORIES))
        raise PlanError(f"Unknown block type {spec.type!r} in block {spec.name!r} (known: {known})")
    try:
        return factory(
            name=spec.name, enable_if=spec.enable_if, description=spec.description, **spec.props
        )
    except TypeError as exc:
        raise PlanError(f"Invalid properties for {spec.type} block {spec.name!r}: {exc}") from exc


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _parse(text: str, source: str) -> PlanSpec:
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise PlanError(f"Invalid YAML in {source}: {exc}") from exc
    if not isinstance(raw, dict) or "migration-plan" not in raw:
        raise PlanError(f"{source}: expected a top-level 'migration-plan' mapping")
    try:
        return PlanFile.model_validate(raw).migration_plan
    except ValidationError as exc:
        raise PlanError(f"Invalid plan {source}: {exc}") from exc


def _read(path: Path) -> str:
    try:
        return path.read_text()
    except OSError as exc:
        raise PlanError(f"Cannot read plan file {path}: {exc}") from exc


def _merge_includes(spec: PlanSpec, base_dir: Path | None) -> PlanSpec:
    """Append included phases; included variables never override the plan's own."""
    if not spec.includes:
        return spec
    if base_dir is None:
        raise PlanError(f"Plan {spec.name!r} has includes but no base directory to resolve them")

    phases = list(spec.phases)
    variables: dict[str, Any] = {}
    for include in spec.includes:
        path = base_dir / include
        logger.info("Including plan file: %s", path)
        included = _parse(_read(path), str(path))
        if included.includes:
            logger.warning("Nested includes in %s are ignored", path)
        phases.extend(included.phases)
        for key, value in included.variables.items():
            variables.setdefault(key, value)
    variables.update(spec.variables)
    return spec.model_copy(update={"phases": phases, "variables": variables, "includes": []})


def build_plan(spec: PlanSpec) -> Plan:
    """Turn a validated PlanSpec into the immutable runtime Plan."""
    phases = []
    for order, phase_spec in enumerate(spec.phases, start=1):
        tasks = [
            Task(
                id=t.id,
                name=t.name,
                description=t.description,
                blocks=[build_block(b) for b in t.blocks],
            )
            for t in phase_spec.tasks
        ]
        phases.append(
            Phase(
                name=phase_spec.name,
                tasks=tasks,
                description=phase_spec.description,
                order=order,
                id=phase_spec.id,
            )
        )
    return Plan(
        name=spec.name,
        phases=phases,
        description=spec.description,
        version=spec.version,
        variables=spec.variables,
    )


def load_plan_text(text: str, base_dir: Path | None = None, *, source: str = "<string>") -> Plan:
    spec = _merge_includes(_parse(text, source), base_dir)
    plan = build_plan(spec)
    logger.debug("Loaded plan %s: %d phases, %d tasks", plan.name, len(plan.phases), plan.task_count)
    return plan


def load_plan(path: Path) -> Plan:
    """Parse a YAML plan file (and its includes) into a Plan."""
    path = Path(path)
    return load_plan_text(_read(path), path.parent, source=str(path))


def discover_plan(work_dir: Path) -> Path | None:
    """Find a plan file in the work directory or env var.

    Search order:
    1. MIGRATOR_PLAN env var (absolute path, relative path, or bare name)
    2. Only .yaml file in .migrator/plans/ (if exactly one exists)
    """
    env_path = os.environ.get("MIGRATOR_PLAN")
    if env_path:
        p = Path(env_path)
        if not p.is_absolute():
            # Bare name like "ejb-to-spring" → look in .migrator/plans/
            candidate = work_dir / PLANS_DIR / env_path
            if not candidate.suffix:
                candidate = candidate.with_suffix(".yaml")
            if candidate.exists():
                return candidate
            p = work_dir / env_path
        if p.exists():
            return p

    plans_dir = work_dir / PLANS_DIR
    if plans_dir.is_dir():
        yamls = sorted(plans_dir.glob("*.yaml")) + sorted(plans_dir.glob("*.yml"))
        if len(yamls) == 1:
            return yamls[0]
        if len(yamls) > 1:
            names = [y.name for y in yamls]
            logger.warning("Multiple plans found: %s, set MIGRATOR_PLAN to pick one", names)

    return None
