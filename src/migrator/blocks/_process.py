"""Subprocess helper shared by the command and git blocks."""

from __future__ import annotations

import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Truncate long output in debug logs
MAX_LOG_OUTPUT = 50_000


@dataclass(frozen=True)
class CommandOutcome:
    exit_code: int
    output: str
    duration_ms: int
    timed_out: bool = False

    @property
    def lines(self) -> list[str]:
        return self.output.splitlines()


def run_command(cmd: list[str], cwd: Path, *, timeout: int = 300) -> CommandOutcome:
    """Run ``cmd`` with stderr merged into stdout. Never raises for process errors."""
    logger.info("Executing command: %s in directory: %s", " ".join(cmd), cwd)
    start = time.monotonic()
    timed_out = False
    try:
        proc = subprocess.run(
            cmd,
            cwd=cwd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
        output = proc.stdout.decode(errors="replace")
        exit_code = proc.returncode
    except subprocess.TimeoutExpired:
        exit_code = -1
        output = f"Command timed out after {timeout}s"
        timed_out = True
    except FileNotFoundError:
        exit_code = -1
        output = f"Command not found: {cmd[0]}"
    except NotADirectoryError:
        exit_code = -1
        output = f"Working directory is not a directory: {cwd}"

    duration_ms = int((time.monotonic() - start) * 1000)

    logged = output[:MAX_LOG_OUTPUT] + ("..." if len(output) > MAX_LOG_OUTPUT else "")
    logger.debug("Exit code %d after %dms:\n%s", exit_code, duration_ms, logged)

    return CommandOutcome(exit_code, output.rstrip("\n"), duration_ms, timed_out)
