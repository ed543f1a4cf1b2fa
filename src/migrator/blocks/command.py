"""Shell command block."""

from __future__ import annotations

import logging

from migrator.blocks._process import run_command
from migrator.blocks.base import BaseBlock
from migrator.context import MigrationContext
from migrator.models import BlockResult
from migrator.plan import BlockType

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300


class CommandBlock(BaseBlock):
    """Runs ``command`` through ``sh -c`` with ``${var}`` substitution.

    Output variables: ``exit_code``, ``command``, ``<output_variable>`` (the
    merged stdout/stderr) and ``output_lines``.
    """

    type = BlockType.COMMAND
    label = "Command"

    def __init__(
        self,
        name: str,
        command: str,
        *,
        working_directory: str | None = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        output_variable: str = "output",
        enable_if: str = "",
        description: str = "",
    ) -> None:
        super().__init__(name, enable_if=enable_if, description=description)
        self.command = command
        self.working_directory = working_directory
        self.timeout_seconds = timeout_seconds
        self.output_variable = output_variable or "output"

    def validate(self) -> bool:
        if not super().validate():
            return False
        if not self.command or not self.command.strip():
            logger.error("Command cannot be empty: %s", self.name)
            return False
        if self.timeout_seconds <= 0:
            logger.error("Timeout must be positive: %s", self.name)
            return False
        return True

    def execute(self, context: MigrationContext) -> BlockResult:
        command = context.substitute(self.command) or ""
        cwd = self._resolve_dir(context, self.working_directory)
        outcome = run_command(["sh", "-c", command], cwd, timeout=self.timeout_seconds)

        if outcome.timed_out:
            return BlockResult.failure(
                f"Command timeout after {self.timeout_seconds} seconds",
                f"Command: {command}",
                execution_time_ms=outcome.duration_ms,
            )

        outputs = {
            "exit_code": outcome.exit_code,
            "command": command,
            self.output_variable: outcome.output,
            "output_lines": outcome.lines,
        }
        if outcome.exit_code == 0:
            return BlockResult.succeeded(
                "Command executed successfully",
                output_variables=outputs,
                execution_time_ms=outcome.duration_ms,
            )
        return BlockResult.failure(
            f"Command failed with exit code {outcome.exit_code}",
            outcome.output,
            output_variables=outputs,
            execution_time_ms=outcome.duration_ms,
        )

    def _describe_fields(self) -> list[str]:
        lines = [f"- Command: `{self.command}`"]
        if self.working_directory:
            lines.append(f"- Working Directory: `{self.working_directory}`")
        lines.append(f"- Timeout: {self.timeout_seconds} seconds")
        return lines
