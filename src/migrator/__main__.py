"""Command-line entry point.

Usage:
    migrator run [PLAN] [--dry-run] [--step-by-step] [--phase ID | --task ID | --resume]
                 [--var KEY=VALUE] [--variables FILE] [--status | --list-variables]
    migrator info [PLAN]
    migrator phases [PLAN]
    migrator export [PLAN] [-o FILE]
    migrator history [PLAN_NAME] [--last N] [--details]

PLAN is a path or a bare name under .migrator/plans/. When omitted, the plan
is discovered from MIGRATOR_PLAN or the single file in .migrator/plans/.

Variables are applied lowest to highest: plan defaults, the checkpoint being
resumed, --variables FILE, --var KEY=VALUE.

Environment variables:
    MIGRATOR_PROJECT_ROOT  project directory (default: current directory)
    MIGRATOR_PLAN          plan path or bare name
    MIGRATOR_STATE_DIR     checkpoint directory under the project (default: .migrator)
    MIGRATOR_DRY_RUN       simulate blocks instead of running them
    MIGRATOR_DEBUG         debug logging
    MIGRATOR_MODEL         model for AI prompt blocks
"""

# ruff: noqa: T201

from __future__ import annotations

import argparse
import logging
import sys
from datetime import timedelta
from pathlib import Path
from typing import NoReturn

from migrator.config import Settings
from migrator.context import BUILTIN_VARIABLES, MigrationContext
from migrator.engine import MigrationEngine
from migrator.errors import MigratorError
from migrator.export import plan_to_markdown, write_markdown
from migrator.listeners import ConsoleProgressListener, format_duration
from migrator.loader import PLANS_DIR, discover_plan, load_plan
from migrator.models import ExecutionResult
from migrator.plan import Plan
from migrator.state import CheckpointStore, HistoryListener, HistoryStore, StateFileListener

logger = logging.getLogger("migrator")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="migrator",
        description="Execute multi-phase code migration plans.",
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--project-root", type=Path, help="Project directory (default: cwd)")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    run_p = sub.add_parser("run", help="Execute a plan, a phase or a single task", parents=[common])
    run_p.add_argument("plan", nargs="?", help="Plan file or bare plan name")
    run_p.add_argument("--dry-run", action="store_true", help="Simulate blocks only")
    run_p.add_argument(
        "--step-by-step", action="store_true", help="Wait for Enter before each block"
    )
    target = run_p.add_mutually_exclusive_group()
    target.add_argument("--phase", metavar="ID", help="Run only this phase (id or name)")
    target.add_argument("--task", metavar="ID", help="Run only this task")
    target.add_argument(
        "--resume", action="store_true", help="Skip tasks completed by a previous run"
    )
    run_p.add_argument(
        "--var",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Set a context variable (repeatable, highest priority)",
    )
    run_p.add_argument(
        "--variables",
        type=Path,
        metavar="FILE",
        help="Load context variables from a KEY=VALUE file",
    )
    mode = run_p.add_mutually_exclusive_group()
    mode.add_argument("--status", action="store_true", help="Show migration progress and exit")
    mode.add_argument(
        "--list-variables", action="store_true", help="List the plan's variables and exit"
    )

    info_p = sub.add_parser("info", help="Show plan summary", parents=[common])
    info_p.add_argument("plan", nargs="?")

    phases_p = sub.add_parser("phases", help="List phases and tasks", parents=[common])
    phases_p.add_argument("plan", nargs="?")

    export_p = sub.add_parser("export", help="Render the plan as Markdown", parents=[common])
    export_p.add_argument("plan", nargs="?")
    export_p.add_argument("-o", "--output", type=Path, help="Output file (default: stdout)")

    history_p = sub.add_parser("history", help="Show recorded plan executions", parents=[common])
    history_p.add_argument("plan_name", nargs="?", help="Only this plan (by plan name)")
    history_p.add_argument("--last", type=int, metavar="N", help="Only the N most recent phases")
    history_p.add_argument("--details", action="store_true", help="Show per-task details")

    return parser


def _configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    # Only show detailed logs for our own code
    logging.getLogger("migrator").setLevel(logging.DEBUG if debug else logging.INFO)


def _fail(message: str) -> NoReturn:
    print(f"ERROR: {message}", file=sys.stderr)
    sys.exit(1)


def _resolve_plan_path(arg: str | None, root: Path) -> Path:
    if arg:
        p = Path(arg)
        for candidate in (p, root / p, root / PLANS_DIR / p, root / PLANS_DIR / f"{arg}.yaml"):
            if candidate.is_file():
                return candidate
        _fail(f"plan file not found: {arg}")
    found = discover_plan(root)
    if found is None:
        _fail(f"no plan given and none found in {root / PLANS_DIR}")
    return found


def _parse_vars(pairs: list[str]) -> dict[str, str]:
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            _fail(f"--var expects KEY=VALUE, got {pair!r}")
        variables[key.strip()] = value
    return variables


def _load_variables_file(path: Path) -> dict[str, str]:
    from dotenv import dotenv_values

    if not path.is_file():
        _fail(f"variables file not found: {path}")
    values = {k: v or "" for k, v in dotenv_values(path).items()}
    logger.info("Loaded %d variables from %s", len(values), path)
    return values


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace, plan: Plan, settings: Settings) -> int:
    if args.list_variables:
        return _list_variables(plan)
    if args.status:
        return _show_status(plan, settings)

    dry_run = args.dry_run or settings.dry_run
    overrides = _load_variables_file(args.variables) if args.variables else {}
    overrides.update(_parse_vars(args.var))
    context = MigrationContext(
        settings.project_root,
        dry_run=dry_run,
        step_by_step=args.step_by_step,
        variables={**plan.variables, **overrides},
    )

    engine = MigrationEngine(plan.name)
    engine.add_listener(ConsoleProgressListener())
    store = CheckpointStore(settings.project_root, settings.state_dir)
    if not dry_run:
        engine.add_listener(StateFileListener(store, engine))
        history = HistoryStore(settings.project_root, settings.state_dir)
        engine.add_listener(HistoryListener(history))

    # Partial runs continue from the saved checkpoint so completed work is kept.
    if args.resume or args.phase or args.task:
        checkpoint = store.load(plan.name)
        if checkpoint is not None:
            engine.restore_checkpoint(checkpoint, context)
            context.set_variables(overrides)
        elif args.resume:
            print(f"No checkpoint found for {plan.name}, running the full plan")

    result: ExecutionResult
    if args.resume:
        result = engine.resume_from_checkpoint(plan, context)
    elif args.phase:
        result = engine.execute_phase_by_id(plan, args.phase, context)
    elif args.task:
        result = engine.execute_task_by_id(plan, args.task, context)
    else:
        result = engine.execute_plan(plan, context)

    if not result.success:
        print(f"\nFailed in {result.failure_phase}: {result.failure_reason}", file=sys.stderr)
        if not dry_run and store.exists(plan.name):
            print("Checkpoint saved; re-run with --resume to continue", file=sys.stderr)
    elif not dry_run and store.exists(plan.name):
        print("Progress saved; run with --resume to finish the remaining tasks")
    return 0 if result.success else 1


def _list_variables(plan: Plan) -> int:
    print(f"Plan: {plan.name}" + (f" ({plan.version})" if plan.version else ""))
    print()
    if plan.variables:
        print("Plan variables:")
        for key in sorted(plan.variables):
            print(f"  {key:<30} = {plan.variables[key]}")
    else:
        print("No variables defined in the plan.")
    print()
    print("Built-in variables:")
    for key, meaning in BUILTIN_VARIABLES:
        print(f"  {key:<30} = <{meaning}>")
    print()
    print("Override with --variables FILE, then --var KEY=VALUE (highest priority).")
    return 0


def _show_status(plan: Plan, settings: Settings) -> int:
    checkpoint = CheckpointStore(settings.project_root, settings.state_dir).load(plan.name)
    history = HistoryStore(settings.project_root, settings.state_dir).load().plans.get(plan.name)
    print(f"Plan:        {plan.name}")
    if history is None and checkpoint is None:
        print("Status:      No migration executed yet")
        return 0

    if history is not None:
        print(f"Status:      {history.status}")
        if history.started_at:
            print(f"Started:     {history.started_at:%Y-%m-%d %H:%M:%S}")
        if history.last_executed:
            print(f"Last run:    {history.last_executed:%Y-%m-%d %H:%M:%S}")
        print(f"Completed:   {len(history.completed_phases)}/{len(plan.phases)} phases")
        if history.failed_phases:
            print(f"Failed:      {', '.join(history.failed_phases)}")

    if checkpoint is not None:
        done = sum(1 for t in plan.tasks() if t.id in checkpoint.completed_tasks)
        print(f"Tasks done:  {done}/{plan.task_count}")
        if checkpoint.current_phase:
            print(f"Resume from: {checkpoint.current_phase} (run --resume)")
    return 0


def _cmd_history(args: argparse.Namespace, settings: Settings) -> int:
    store = HistoryStore(settings.project_root, settings.state_dir)
    if not store.exists():
        print(f"No migration history found in {settings.project_root}")
        print("Run a migration first to create execution history.")
        return 0

    log = store.load()
    if args.plan_name:
        if args.plan_name not in log.plans:
            _fail(f"no history for plan: {args.plan_name}")
        names = [args.plan_name]
    else:
        names = list(log.plans)
    if not names:
        print("No migration executions found.")
        return 0

    print(f"Project:      {log.project_root}")
    if log.last_updated:
        print(f"Last updated: {log.last_updated:%Y-%m-%d %H:%M:%S}")
    for name in names:
        history = log.plans[name]
        print()
        print("-" * 60)
        version = f" ({history.plan_version})" if history.plan_version else ""
        print(f"Migration: {history.plan_name}{version}")
        print(f"Status:    {history.status}")
        print(f"Completed: {len(history.completed_phases)} phases")
        if history.failed_phases:
            print(f"Failed:    {len(history.failed_phases)} phases")
        records = history.last(args.last)
        if not records:
            print("No execution history recorded yet.")
            continue
        print()
        for record in records:
            icon = "✓" if record.success else "✗"
            print(f"{icon} [{record.timestamp:%Y-%m-%d %H:%M:%S}] Phase: {record.phase_name}")
            print(f"   Duration:  {format_duration(timedelta(milliseconds=record.duration_ms))}")
            print(
                f"   Tasks:     {record.tasks_completed} completed, {record.tasks_failed} failed"
                + (f", {record.tasks_skipped} skipped" if record.tasks_skipped else "")
            )
            if record.summary:
                print(f"   Summary:   {record.summary}")
            if args.details:
                for task in record.task_details:
                    mark = "✓" if task.success else "✗"
                    print(f"      {mark} Task: {task.task_name} (ID: {task.task_id})")
                    if task.error:
                        print(f"         Error: {task.error}")
    return 0


def _cmd_info(plan: Plan, settings: Settings) -> int:
    print(f"Plan:        {plan.name}")
    if plan.version:
        print(f"Version:     {plan.version}")
    if plan.description:
        print(f"Description: {plan.description.strip()}")
    print(f"Phases:      {len(plan.phases)}")
    print(f"Tasks:       {plan.task_count}")
    print(f"Blocks:      {sum(len(t.blocks) for t in plan.tasks())}")
    if plan.variables:
        print(f"Variables:   {', '.join(plan.variables)}")
    store = CheckpointStore(settings.project_root, settings.state_dir)
    if store.exists(plan.name):
        print(f"Checkpoint:  {store.path_for(plan.name)}")
    print(f"AI model:    {settings.model}")
    return 0


def _cmd_phases(plan: Plan) -> int:
    for idx, phase in enumerate(plan.phases, start=1):
        label = f" [{phase.id}]" if phase.id else ""
        print(f"{idx}. {phase.name}{label}")
        for task in phase.tasks:
            print(f"     - {task.id}: {task.name} ({len(task.blocks)} blocks)")
    return 0


def _cmd_export(args: argparse.Namespace, plan: Plan) -> int:
    if args.output:
        path = write_markdown(plan, args.output)
        print(f"Wrote {path}")
    else:
        sys.stdout.write(plan_to_markdown(plan))
    return 0


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    from dotenv import load_dotenv

    load_dotenv()

    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    settings = Settings.from_env()
    if args.project_root:
        settings = settings.model_copy(update={"project_root": args.project_root})
    _configure_logging(settings.debug or args.verbose)
    logger.debug("Settings: %s", settings)

    root = settings.project_root
    if not root.is_dir():
        _fail(f"project root {root} does not exist")

    if args.command == "history":
        sys.exit(_cmd_history(args, settings))

    plan_path = _resolve_plan_path(args.plan, root)
    try:
        plan = load_plan(plan_path)
    except MigratorError as exc:
        _fail(str(exc))

    try:
        if args.command == "run":
            code = _cmd_run(args, plan, settings)
        elif args.command == "info":
            code = _cmd_info(plan, settings)
        elif args.command == "phases":
            code = _cmd_phases(plan)
        else:
            code = _cmd_export(args, plan)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        sys.exit(130)

    sys.exit(code)


if __name__ == "__main__":
    main()
