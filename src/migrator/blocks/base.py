"""Common behaviour of the built-in blocks."""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import ClassVar

from migrator.context import MigrationContext
from migrator.errors import ExpressionError
from migrator.expression import evaluate
from migrator.models import BlockResult
from migrator.plan import BlockType

logger = logging.getLogger(__name__)


class BaseBlock(abc.ABC):
    """Holds the name/condition bookkeeping; subclasses implement ``execute``."""

    type: ClassVar[BlockType]
    label: ClassVar[str] = "Block"

    def __init__(self, name: str, *, enable_if: str = "", description: str = "") -> None:
        self.name = name
        self.enable_if = enable_if or ""
        self.description = description

    def validate(self) -> bool:
        if not self.name or not self.name.strip():
            logger.error("%s block has no name", self.label)
            return False
        return True

    def is_enabled(self, context: MigrationContext) -> bool:
        try:
            return evaluate(self.enable_if, context)
        except ExpressionError as exc:
            logger.error("Invalid enable_if on block %s: %s", self.name, exc)
            return False

    @abc.abstractmethod
    def execute(self, context: MigrationContext) -> BlockResult: ...

    def describe(self) -> str:
        lines = [f"**{self.name}** ({self.label})"]
        if self.description:
            lines.append(self.description)
        lines.extend(self._describe_fields())
        if self.enable_if:
            lines.append(f"- Enabled if: `{self.enable_if}`")
        return "\n".join(lines) + "\n"

    def _describe_fields(self) -> list[str]:
        return []

    def _resolve_dir(self, context: MigrationContext, directory: str | None) -> Path:
        """Substitute and anchor ``directory`` at the project root."""
        if not directory:
            return context.project_root
        path = Path(context.substitute(directory) or "")
        return path if path.is_absolute() else context.project_root / path

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
