"""Render a plan as a Markdown document for review before running it."""

from __future__ import annotations

import logging
from pathlib import Path

from migrator.plan import Plan

logger = logging.getLogger(__name__)


def plan_to_markdown(plan: Plan) -> str:
    lines = [f"# {plan.name}", ""]
    if plan.version:
        lines += [f"**Version:** {plan.version}", ""]
    if plan.description:
        lines += [plan.description.strip(), ""]

    if plan.variables:
        lines += ["## Variables", ""]
        lines += [f"- `{key}`: `{value}`" for key, value in plan.variables.items()]
        lines.append("")

    lines += ["## Phases", ""]
    for idx, phase in enumerate(plan.phases, start=1):
        lines.append(f"{idx}. {phase.name} ({len(phase.tasks)} tasks)")
    lines.append("")

    for idx, phase in enumerate(plan.phases, start=1):
        lines += [f"## Phase {idx}: {phase.name}", ""]
        if phase.description:
            lines += [phase.description.strip(), ""]
        for task in phase.tasks:
            lines += [f"### {task.name} (`{task.id}`)", ""]
            if task.description:
                lines += [task.description.strip(), ""]
            for block in task.blocks:
                lines.append(block.describe().rstrip())
                lines.append("")

    return "\n".join(lines).rstrip() + "\n"


def write_markdown(plan: Plan, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(plan_to_markdown(plan))
    logger.info("Wrote plan documentation to %s", path)
    return path
