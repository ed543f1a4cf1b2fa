from __future__ import annotations

from pathlib import Path

import pytest

from migrator.context import MigrationContext


@pytest.fixture
def context(tmp_path: Path) -> MigrationContext:
    return MigrationContext(tmp_path)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "MIGRATOR_PLAN",
        "MIGRATOR_PROJECT_ROOT",
        "MIGRATOR_STATE_DIR",
        "MIGRATOR_DRY_RUN",
        "MIGRATOR_DEBUG",
        "MIGRATOR_MODEL",
    ):
        monkeypatch.delenv(name, raising=False)
