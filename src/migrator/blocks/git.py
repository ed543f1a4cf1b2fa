"""Git command block with idempotent re-run handling."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from migrator.blocks._process import CommandOutcome, run_command
from migrator.blocks.base import BaseBlock
from migrator.blocks.command import DEFAULT_TIMEOUT_SECONDS
from migrator.context import MigrationContext
from migrator.models import BlockResult
from migrator.plan import BlockType

logger = logging.getLogger(__name__)


def is_idempotent_error(outcome: CommandOutcome) -> bool:
    """True for git failures that mean "already done" on a re-run."""
    output = outcome.output.lower()
    if outcome.exit_code == 128 and "already exists" in output:
        return True
    if outcome.exit_code == 1 and "nothing to commit" in output:
        return True
    return "already on" in output or "up to date" in output or "up-to-date" in output


class GitCommandBlock(BaseBlock):
    """Runs one or more ``git <args>`` commands in sequence.

    With ``idempotent=True`` a failure that only says the work is already done
    (branch exists, nothing to commit, already on branch) counts as success,
    so a resumed plan can re-run the block safely.
    """

    type = BlockType.GIT
    label = "Git"

    def __init__(
        self,
        name: str,
        args: str | Sequence[str],
        *,
        working_directory: str | None = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        idempotent: bool = False,
        enable_if: str = "",
        description: str = "",
    ) -> None:
        super().__init__(name, enable_if=enable_if, description=description)
        self.args = [args] if isinstance(args, str) else list(args)
        self.working_directory = working_directory
        self.timeout_seconds = timeout_seconds
        self.idempotent = idempotent

    def validate(self) -> bool:
        if not super().validate():
            return False
        if not self.args or any(not a or not a.strip() for a in self.args):
            logger.error("Git arguments cannot be empty: %s", self.name)
            return False
        if self.timeout_seconds <= 0:
            logger.error("Timeout must be positive: %s", self.name)
            return False
        return True

    def execute(self, context: MigrationContext) -> BlockResult:
        cwd = self._resolve_dir(context, self.working_directory)
        outputs: list[str] = []
        total_ms = 0

        for idx, raw in enumerate(self.args, start=1):
            command = f"git {context.substitute(raw)}"
            logger.info("Git command %d/%d: %s", idx, len(self.args), command)
            outcome = run_command(["sh", "-c", command], cwd, timeout=self.timeout_seconds)
            total_ms += outcome.duration_ms
            outputs.append(outcome.output)

            if outcome.timed_out:
                return BlockResult.failure(
                    f"Git command timeout after {self.timeout_seconds} seconds",
                    f"Command: {command}",
                    execution_time_ms=total_ms,
                )
            if outcome.exit_code == 0:
                continue
            if self.idempotent and is_idempotent_error(outcome):
                logger.info("Git command returned expected error (idempotent mode): %s", command)
                continue
            return BlockResult.failure(
                f"Git command failed with exit code {outcome.exit_code}",
                outcome.output,
                output_variables={
                    "exit_code": outcome.exit_code,
                    "command": command,
                    "output": outcome.output,
                },
                execution_time_ms=total_ms,
            )

        return BlockResult.succeeded(
            "Git command(s) executed successfully",
            output_variables={"command_count": len(self.args), "output": "\n".join(outputs)},
            execution_time_ms=total_ms,
        )

    def _describe_fields(self) -> list[str]:
        lines = [f"- Command: `git {a}`" for a in self.args]
        if self.working_directory:
            lines.append(f"- Working Directory: `{self.working_directory}`")
        if self.idempotent:
            lines.append("- Idempotent: yes")
        return lines
