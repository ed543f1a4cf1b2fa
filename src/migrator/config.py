"""Runtime settings loaded from environment variables."""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import BaseModel, Field

from migrator.blocks.ai import DEFAULT_MODEL
from migrator.state import DEFAULT_STATE_DIR

_TRUTHY = {"1", "true", "yes", "on"}


def _flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in _TRUTHY


class Settings(BaseModel):
    """Defaults for a CLI run; command-line flags take precedence."""

    project_root: Path = Field(default_factory=Path.cwd)
    plan: str = Field(default="", description="Plan path or bare name")
    state_dir: str = DEFAULT_STATE_DIR
    dry_run: bool = False
    debug: bool = False
    model: str = DEFAULT_MODEL

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from MIGRATOR_* environment variables."""
        root = os.environ.get("MIGRATOR_PROJECT_ROOT")
        return cls(
            project_root=Path(root) if root else Path.cwd(),
            plan=os.environ.get("MIGRATOR_PLAN", ""),
            state_dir=os.environ.get("MIGRATOR_STATE_DIR", DEFAULT_STATE_DIR),
            dry_run=_flag("MIGRATOR_DRY_RUN"),
            debug=_flag("MIGRATOR_DEBUG"),
            model=os.environ.get("MIGRATOR_MODEL", DEFAULT_MODEL),
        )
