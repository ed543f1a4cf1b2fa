"""Built-in block implementations."""

from migrator.blocks.ai import AiPromptBlock
from migrator.blocks.base import BaseBlock
from migrator.blocks.command import CommandBlock
from migrator.blocks.file_ops import FileOperation, FileOperationBlock
from migrator.blocks.git import GitCommandBlock

__all__ = [
    "AiPromptBlock",
    "BaseBlock",
    "CommandBlock",
    "FileOperation",
    "FileOperationBlock",
    "GitCommandBlock",
]
