"""Tests for the built-in command, git, file and AI blocks."""

from __future__ import annotations

import shutil
import subprocess
from pathlib import Path

import httpx
import pytest
from pydantic_ai.models.function import AgentInfo, FunctionModel
from pydantic_ai.models.test import TestModel

from migrator.blocks import AiPromptBlock, CommandBlock, FileOperationBlock, GitCommandBlock
from migrator.blocks._process import CommandOutcome, run_command
from migrator.blocks.ai import DEFAULT_MODEL, get_model
from migrator.blocks.git import is_idempotent_error
from migrator.context import MigrationContext
from migrator.plan import Block, BlockType

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def test_blocks_satisfy_protocol():
    blocks = [
        CommandBlock("c", "true"),
        GitCommandBlock("g", "status"),
        FileOperationBlock("f", "delete", "x"),
        AiPromptBlock("a", "hi"),
    ]
    assert all(isinstance(b, Block) for b in blocks)
    assert [b.type for b in blocks] == [
        BlockType.COMMAND,
        BlockType.GIT,
        BlockType.FILE_OPERATION,
        BlockType.AI_PROMPT,
    ]


def test_enable_if_uses_context(context: MigrationContext):
    block = CommandBlock("c", "true", enable_if="env == 'prod'")
    context.set_variable("env", "dev")
    assert not block.is_enabled(context)
    context.set_variable("env", "prod")
    assert block.is_enabled(context)


def test_malformed_enable_if_disables_block(context: MigrationContext):
    assert not CommandBlock("c", "true", enable_if="env ==").is_enabled(context)


# ---------------------------------------------------------------------------
# Command
# ---------------------------------------------------------------------------


def test_command_captures_output(context: MigrationContext):
    context.set_variable("who", "world")
    result = CommandBlock("greet", "echo hello ${who}; echo second").execute(context)

    assert result.success
    assert result.message == "Command executed successfully"
    assert result.output_variables["exit_code"] == 0
    assert result.output_variables["command"] == "echo hello world; echo second"
    assert result.output_variables["output"] == "hello world\nsecond"
    assert result.output_variables["output_lines"] == ["hello world", "second"]


def test_command_custom_output_variable(context: MigrationContext):
    result = CommandBlock("c", "echo 42", output_variable="answer").execute(context)
    assert result.output_variables["answer"] == "42"


def test_command_failure(context: MigrationContext):
    result = CommandBlock("c", "echo oops >&2; exit 3").execute(context)

    assert not result.success
    assert result.message == "Command failed with exit code 3"
    assert result.error_details == "oops"
    assert result.output_variables["exit_code"] == 3


def test_command_timeout(context: MigrationContext):
    result = CommandBlock("c", "sleep 5", timeout_seconds=1).execute(context)

    assert not result.success
    assert result.message == "Command timeout after 1 seconds"


def test_command_working_directory(context: MigrationContext):
    (context.project_root / "sub").mkdir()
    result = CommandBlock("c", "pwd", working_directory="sub").execute(context)
    assert Path(result.output_variables["output"]).name == "sub"


def test_command_validation():
    assert CommandBlock("c", "ls").validate()
    assert not CommandBlock("c", "  ").validate()
    assert not CommandBlock("c", "ls", timeout_seconds=0).validate()
    assert not CommandBlock("", "ls").validate()


def test_run_command_missing_binary(tmp_path: Path):
    outcome = run_command(["definitely-not-a-real-binary-xyz"], tmp_path)
    assert outcome.exit_code == -1
    assert "Command not found" in outcome.output


def test_command_describe():
    text = CommandBlock("build", "mvn package", working_directory="app").describe()
    assert "**build** (Command)" in text
    assert "`mvn package`" in text
    assert "`app`" in text


# ---------------------------------------------------------------------------
# Git
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("exit_code", "output", "expected"),
    [
        (128, "fatal: a branch named 'migration' already exists", True),
        (1, "On branch main\nnothing to commit, working tree clean", True),
        (0, "Already on 'main'", True),
        (1, "Your branch is up to date with 'origin/main'.", True),
        (128, "fatal: not a git repository", False),
        (1, "already exists", False),
    ],
)
def test_is_idempotent_error(exit_code: int, output: str, expected: bool):
    assert is_idempotent_error(CommandOutcome(exit_code, output, 0)) is expected


def test_git_validation():
    assert GitCommandBlock("g", ["status", "log -1"]).validate()
    assert not GitCommandBlock("g", []).validate()
    assert not GitCommandBlock("g", ["status", " "]).validate()


@pytest.fixture
def repo(tmp_path: Path) -> Path:
    def git(*args: str) -> None:
        subprocess.run(["git", *args], cwd=tmp_path, check=True, capture_output=True)

    git("init", "-q")
    git("-c", "user.name=t", "-c", "user.email=t@example.com", "commit", "-q", "--allow-empty", "-m", "init")
    return tmp_path


@needs_git
def test_git_idempotent_rerun(repo: Path):
    context = MigrationContext(repo, variables={"branch": "migration"})
    strict = GitCommandBlock("branch", "branch ${branch}")
    lenient = GitCommandBlock("branch", "branch ${branch}", idempotent=True)

    assert strict.execute(context).success
    again = strict.execute(context)
    assert not again.success
    assert again.output_variables["exit_code"] == 128
    assert lenient.execute(context).success


@needs_git
def test_git_runs_commands_in_sequence(repo: Path):
    context = MigrationContext(repo)
    result = GitCommandBlock("g", ["checkout -q -b feature", "rev-parse --abbrev-ref HEAD"]).execute(
        context
    )

    assert result.success
    assert result.output_variables["command_count"] == 2
    assert result.output_variables["output"].splitlines()[-1] == "feature"


# ---------------------------------------------------------------------------
# File operations
# ---------------------------------------------------------------------------


def test_create_with_substitution(context: MigrationContext):
    context.set_variable("svc", "Orders")
    block = FileOperationBlock("f", "create", "src/${svc}.java", content="class ${svc} {}")

    result = block.execute(context)

    path = context.project_root / "src" / "Orders.java"
    assert result.success
    assert path.read_text() == "class Orders {}"
    assert result.output_variables["created_path"] == str(path)


def test_append(context: MigrationContext):
    path = context.project_root / "notes.txt"
    path.write_text("a\n")
    result = FileOperationBlock("f", "append", "notes.txt", content="b\n").execute(context)
    assert result.success
    assert path.read_text() == "a\nb\n"


def test_copy_and_move(context: MigrationContext):
    root = context.project_root
    (root / "dir").mkdir()
    (root / "dir" / "f.txt").write_text("x")

    assert FileOperationBlock("f", "copy", "copy", source="dir").execute(context).success
    assert (root / "copy" / "f.txt").read_text() == "x"

    assert FileOperationBlock("f", "move", "moved/f.txt", source="dir/f.txt").execute(context).success
    assert (root / "moved" / "f.txt").exists()
    assert not (root / "dir" / "f.txt").exists()


def test_copy_missing_source(context: MigrationContext):
    result = FileOperationBlock("f", "copy", "b", source="nope").execute(context)
    assert not result.success
    assert result.message == "Source does not exist"


def test_delete_is_idempotent(context: MigrationContext):
    path = context.project_root / "gone.txt"
    path.write_text("x")
    block = FileOperationBlock("f", "delete", "gone.txt")

    assert block.execute(context).message == "Delete completed successfully"
    assert not path.exists()
    second = block.execute(context)
    assert second.success
    assert second.message == "Path does not exist (already deleted)"


def test_replace_find(context: MigrationContext):
    path = context.project_root / "Bean.java"
    path.write_text("@Stateless\nclass A {}\n@Stateless\n")
    block = FileOperationBlock("f", "replace", "Bean.java", find="@Stateless", replace="@Service")

    result = block.execute(context)

    assert result.success
    assert result.output_variables["replacements"] == 2
    assert path.read_text() == "@Service\nclass A {}\n@Service\n"


def test_replace_rejects_empty_find(context: MigrationContext):
    path = context.project_root / "a.txt"
    path.write_text("abc")
    block = FileOperationBlock("r", "replace", "a.txt", find="", replace="-")

    assert not block.validate()
    result = block.execute(context)
    assert not result.success
    assert result.message == "Find text is empty"
    assert path.read_text() == "abc"


def test_replace_find_resolving_to_empty_fails(context: MigrationContext):
    path = context.project_root / "a.txt"
    path.write_text("abc")
    context.set_variable("needle", "")
    block = FileOperationBlock("r", "replace", "a.txt", find="${needle}", replace="-")

    assert block.validate()
    assert not block.execute(context).success
    assert path.read_text() == "abc"


def test_replace_missing_target(context: MigrationContext):
    result = FileOperationBlock("f", "replace", "nope", content="x").execute(context)
    assert not result.success


def test_file_operation_validation():
    assert FileOperationBlock("f", "create", "a").validate()
    assert FileOperationBlock("f", "DELETE", "a").validate()
    assert not FileOperationBlock("f", "explode", "a").validate()
    assert not FileOperationBlock("f", "copy", "a").validate()
    assert not FileOperationBlock("f", "replace", "a").validate()
    assert not FileOperationBlock("f", "create", "").validate()


# ---------------------------------------------------------------------------
# AI prompt
# ---------------------------------------------------------------------------


def test_ai_prompt_stores_response(context: MigrationContext):
    context.set_variable("bean", "OrderBean")
    block = AiPromptBlock(
        "ask",
        "Convert ${bean}",
        output_variable="spring_code",
        model=TestModel(custom_output_text="@Service class Order {}"),
    )

    result = block.execute(context)

    assert result.success
    assert result.output_variables["prompt"] == "Convert OrderBean"
    assert result.output_variables["spring_code"] == "@Service class Order {}"
    assert result.output_variables["ai_response"] == "@Service class Order {}"


def test_ai_prompt_only_mode(context: MigrationContext):
    result = AiPromptBlock("ask", "Hello", generate=False).execute(context)
    assert result.success
    assert result.output_variables == {"prompt": "Hello"}


def test_ai_failure_keeps_prompt(context: MigrationContext):
    def unreachable(messages, info: AgentInfo):
        raise httpx.ConnectError("connection refused")

    block = AiPromptBlock("ask", "Hello", model=FunctionModel(unreachable))
    result = block.execute(context)

    assert result.success
    assert "ai_response" not in result.output_variables
    assert result.warnings and "connection refused" in result.warnings[0]


def test_ai_model_from_env(monkeypatch: pytest.MonkeyPatch):
    assert get_model() == DEFAULT_MODEL
    monkeypatch.setenv("MIGRATOR_MODEL", "openai:gpt-4o-mini")
    assert get_model() == "openai:gpt-4o-mini"
