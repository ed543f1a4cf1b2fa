"""File-system operations on paths under the project root."""

from __future__ import annotations

import enum
import logging
import shutil
from pathlib import Path

from migrator.blocks.base import BaseBlock
from migrator.context import MigrationContext
from migrator.models import BlockResult
from migrator.plan import BlockType

logger = logging.getLogger(__name__)


class FileOperation(enum.StrEnum):
    CREATE = "create"
    APPEND = "append"
    COPY = "copy"
    MOVE = "move"
    DELETE = "delete"
    REPLACE = "replace"


_NEEDS_SOURCE = {FileOperation.COPY, FileOperation.MOVE}


class FileOperationBlock(BaseBlock):
    """Create, append, copy, move, delete or rewrite a file.

    ``target``, ``source`` and ``content`` go through ``${var}`` substitution;
    relative paths are resolved against the project root. ``replace`` either
    swaps every occurrence of ``find`` for ``replace`` or, without ``find``,
    overwrites the file with ``content``.
    """

    type = BlockType.FILE_OPERATION
    label = "File Operation"

    def __init__(
        self,
        name: str,
        operation: FileOperation | str,
        target: str,
        *,
        source: str | None = None,
        content: str | None = None,
        find: str | None = None,
        replace: str | None = None,
        create_directories: bool = True,
        enable_if: str = "",
        description: str = "",
    ) -> None:
        super().__init__(name, enable_if=enable_if, description=description)
        self.operation = operation
        self.target = target
        self.source = source
        self.content = content
        self.find = find
        self.replace = replace
        self.create_directories = create_directories

    def validate(self) -> bool:
        if not super().validate():
            return False
        try:
            op = FileOperation(str(self.operation).lower())
        except ValueError:
            logger.error("Unknown file operation %r in block %s", self.operation, self.name)
            return False
        if not self.target or not self.target.strip():
            logger.error("Target path is required: %s", self.name)
            return False
        if op in _NEEDS_SOURCE and not self.source:
            logger.error("Source path is required for %s: %s", op, self.name)
            return False
        if op == FileOperation.REPLACE and self.find is None and self.content is None:
            logger.error("Replace needs either find/replace or content: %s", self.name)
            return False
        if op == FileOperation.REPLACE and self.find is not None and not self.find:
            logger.error("Find text must not be empty: %s", self.name)
            return False
        return True

    def execute(self, context: MigrationContext) -> BlockResult:
        op = FileOperation(str(self.operation).lower())
        target = self._path(context, self.target)
        try:
            match op:
                case FileOperation.CREATE:
                    return self._write(target, context, append=False)
                case FileOperation.APPEND:
                    return self._write(target, context, append=True)
                case FileOperation.COPY | FileOperation.MOVE:
                    return self._transfer(op, self._path(context, self.source or ""), target)
                case FileOperation.DELETE:
                    return self._delete(target)
                case FileOperation.REPLACE:
                    return self._replace(target, context)
        except OSError as exc:
            return BlockResult.failure(f"File operation failed: {op}", f"{exc}\nPath: {target}")
        return BlockResult.failure("Unknown operation", f"Operation: {op}")

    def _path(self, context: MigrationContext, raw: str) -> Path:
        path = Path(context.substitute(raw) or "")
        return path if path.is_absolute() else context.project_root / path

    def _prepare_parent(self, path: Path) -> None:
        if self.create_directories:
            path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, path: Path, context: MigrationContext, *, append: bool) -> BlockResult:
        self._prepare_parent(path)
        text = context.substitute(self.content or "") or ""
        with path.open("a" if append else "w") as f:
            f.write(text)
        if append:
            logger.info("Appended to %s", path)
            message, key = "Content appended successfully", "target_path"
        else:
            logger.info("Created %s", path)
            message, key = "File created successfully", "created_path"
        return BlockResult.succeeded(
            message, output_variables={key: str(path), "size": path.stat().st_size}
        )

    def _transfer(self, op: FileOperation, source: Path, target: Path) -> BlockResult:
        if not source.exists():
            return BlockResult.failure("Source does not exist", f"Path: {source}")
        self._prepare_parent(target)
        if op == FileOperation.MOVE:
            shutil.move(source, target)
            message = "Move completed successfully"
        elif source.is_dir():
            shutil.copytree(source, target, dirs_exist_ok=True)
            message = "Copy completed successfully"
        else:
            shutil.copy2(source, target)
            message = "Copy completed successfully"
        logger.info("%s %s -> %s", op, source, target)
        return BlockResult.succeeded(
            message, output_variables={"source_path": str(source), "target_path": str(target)}
        )

    def _delete(self, path: Path) -> BlockResult:
        outputs = {"deleted_path": str(path)}
        if not path.exists():
            return BlockResult.succeeded(
                "Path does not exist (already deleted)", output_variables=outputs
            )
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.info("Deleted %s", path)
        return BlockResult.succeeded("Delete completed successfully", output_variables=outputs)

    def _replace(self, path: Path, context: MigrationContext) -> BlockResult:
        if not path.exists():
            return BlockResult.failure("Target file does not exist", f"Path: {path}")
        if path.is_dir():
            return BlockResult.failure("Target is a directory", f"Path: {path}")

        if self.find is not None:
            old = path.read_text()
            find = context.substitute(self.find) or ""
            if not find:
                return BlockResult.failure("Find text is empty", f"Find: {self.find!r}")
            count = old.count(find)
            new = old.replace(find, context.substitute(self.replace or "") or "")
        else:
            new = context.substitute(self.content or "") or ""
            count = 1
        path.write_text(new)
        logger.info("Replaced content in %s", path)
        return BlockResult.succeeded(
            "File content replaced successfully",
            output_variables={
                "replaced_path": str(path),
                "replacements": count,
                "size": path.stat().st_size,
            },
        )

    def _describe_fields(self) -> list[str]:
        lines = [f"- Operation: {self.operation}", f"- Target: `{self.target}`"]
        if self.source:
            lines.append(f"- Source: `{self.source}`")
        if self.find is not None:
            lines.append(f"- Find: `{self.find}`")
        return lines
