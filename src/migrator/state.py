"""Durable checkpoints, so a run interrupted in one process can resume in another."""

from __future__ import annotations

import json
import logging
import os
import re
from datetime import date, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from migrator.listeners import ExecutionListener
from migrator.models import Checkpoint, HistoryLog, PhaseRecord, ProgressStatus

if TYPE_CHECKING:
    from migrator.context import MigrationContext
    from migrator.engine import MigrationEngine
    from migrator.models import ExecutionResult, PhaseResult, TaskResult
    from migrator.plan import Phase, Plan, Task

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = ".migrator"


def _slugify(name: str) -> str:
    """Turn a plan name into a filename-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower())
    slug = slug.strip("-")[:80]
    return slug or "plan"


def _encode(value: Any) -> str:
    """JSON fallback for datetimes and arbitrary context values."""
    if isinstance(value, datetime | date):
        return value.isoformat()
    return str(value)


class CheckpointStore:
    """JSON checkpoint files under ``<project_root>/<state_dir>/checkpoints/``."""

    def __init__(self, project_root: Path | str, state_dir: str = DEFAULT_STATE_DIR) -> None:
        self.directory = Path(project_root) / state_dir / "checkpoints"

    def path_for(self, plan_name: str) -> Path:
        return self.directory / f"{_slugify(plan_name)}.json"

    def _backup_path(self, plan_name: str) -> Path:
        return self.path_for(plan_name).with_suffix(".json.backup")

    def save(self, checkpoint: Checkpoint) -> Path:
        """Write ``checkpoint`` atomically, keeping the previous file as a backup."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(checkpoint.plan_name)
        tmp = path.with_suffix(".json.tmp")
        data = json.dumps(checkpoint.model_dump(), indent=2, default=_encode)
        tmp.write_text(data + "\n")
        if path.exists():
            os.replace(path, self._backup_path(checkpoint.plan_name))
        os.replace(tmp, path)
        logger.debug("Saved checkpoint for %s to %s", checkpoint.plan_name, path)
        return path

    def load(self, plan_name: str) -> Checkpoint | None:
        for candidate in (self.path_for(plan_name), self._backup_path(plan_name)):
            if not candidate.exists():
                continue
            try:
                checkpoint = Checkpoint.model_validate(json.loads(candidate.read_text()))
            except (json.JSONDecodeError, ValidationError) as exc:
                logger.warning("Unreadable checkpoint %s: %s", candidate, exc)
                continue
            logger.info("Loaded checkpoint for %s from %s", plan_name, candidate)
            return checkpoint
        return None

    def exists(self, plan_name: str) -> bool:
        return self.path_for(plan_name).exists() or self._backup_path(plan_name).exists()

    def clear(self, plan_name: str) -> None:
        for candidate in (self.path_for(plan_name), self._backup_path(plan_name)):
            candidate.unlink(missing_ok=True)
        logger.debug("Cleared checkpoint for %s", plan_name)


class StateFileListener(ExecutionListener):
    """Persists the engine's checkpoint after every task, phase and plan.

    The checkpoint is removed only once every task of the plan has completed.

    A failing disk write is logged and otherwise ignored: losing a checkpoint
    must not fail the migration itself.
    """

    def __init__(self, store: CheckpointStore, engine: MigrationEngine) -> None:
        self.store = store
        self.engine = engine
        self._context: MigrationContext | None = None

    def _save(self) -> None:
        if self._context is None:
            return
        checkpoint = self.engine.get_last_checkpoint(self._context)
        if not checkpoint.valid:
            return
        try:
            self.store.save(checkpoint)
        except OSError as exc:
            logger.error("Failed to save checkpoint for %s: %s", checkpoint.plan_name, exc)

    def on_plan_start(self, plan: Plan, context: MigrationContext) -> None:
        self._context = context

    def on_task_complete(self, task: Task, result: TaskResult) -> bool:
        self._save()
        return True

    def on_phase_complete(self, phase: Phase, result: PhaseResult) -> bool:
        self._save()
        return True

    def on_plan_complete(self, plan: Plan, result: ExecutionResult) -> None:
        # A single phase or task run completes only part of the plan.
        remaining = {t.id for t in plan.tasks()} - self.engine.progress_tracker.completed_task_ids()
        if result.success and not remaining:
            try:
                self.store.clear(plan.name)
            except OSError as exc:
                logger.error("Failed to clear checkpoint for %s: %s", plan.name, exc)
            return
        self._save()


# ---------------------------------------------------------------------------
# Execution history
# ---------------------------------------------------------------------------


class HistoryStore:
    """Append-only run history in ``<project_root>/<state_dir>/history.json``.

    Unlike checkpoints, history survives a successful run; it is what the
    ``history`` command and ``run --status`` report from.
    """

    def __init__(self, project_root: Path | str, state_dir: str = DEFAULT_STATE_DIR) -> None:
        self.project_root = Path(project_root)
        self.path = self.project_root / state_dir / "history.json"

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> HistoryLog:
        if not self.path.exists():
            return HistoryLog(project_root=str(self.project_root))
        try:
            return HistoryLog.model_validate(json.loads(self.path.read_text()))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Unreadable history file %s, starting a new one: %s", self.path, exc)
            return HistoryLog(project_root=str(self.project_root))

    def save(self, log: HistoryLog) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        log.last_updated = datetime.now()
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(log.model_dump(), indent=2, default=_encode) + "\n")
        os.replace(tmp, self.path)
        logger.debug("Saved history to %s", self.path)
        return self.path


class HistoryListener(ExecutionListener):
    """Appends a record to the history log after every phase.

    Like StateFileListener, write failures are logged and never fail the run.
    """

    def __init__(self, store: HistoryStore) -> None:
        self.store = store
        self._plan_name = ""

    def _save(self, log: HistoryLog) -> None:
        try:
            self.store.save(log)
        except OSError as exc:
            logger.error("Failed to update history for %s: %s", self._plan_name, exc)

    def on_plan_start(self, plan: Plan, context: MigrationContext) -> None:
        self._plan_name = plan.name
        log = self.store.load()
        history = log.plan(plan.name, plan.version)
        history.status = ProgressStatus.IN_PROGRESS
        if history.started_at is None:
            history.started_at = datetime.now()
        history.last_executed = datetime.now()
        self._save(log)

    def on_phase_complete(self, phase: Phase, result: PhaseResult) -> bool:
        done = {r.task_id for r in result.task_results if r.success} | set(result.skipped_task_ids)
        finished = all(t.id in done for t in phase.tasks)
        log = self.store.load()
        log.plan(self._plan_name).add_record(PhaseRecord.from_result(result), finished=finished)
        self._save(log)
        return True

    def on_plan_complete(self, plan: Plan, result: ExecutionResult) -> None:
        log = self.store.load()
        history = log.plan(plan.name)
        if not result.success:
            history.status = ProgressStatus.FAILED
        elif all(p.name in history.completed_phases for p in plan.phases):
            history.status = ProgressStatus.COMPLETED
        else:
            history.status = ProgressStatus.IN_PROGRESS
        history.last_executed = result.end_time
        self._save(log)
