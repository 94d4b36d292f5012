"""CLI for parallx: validate, show, run, history, and report commands."""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

from rich.console import Console

from .config import Config, load_config
from .errors import ConflictError, ParseError
from .logging_config import setup_logging
from .orchestrator.aggregator import find_conflicts
from .orchestrator.runner import PlanRunner
from .orchestrator.workers import AgentCommandWorker, DryRunWorker, WorkerRegistry
from .plans.models import ExecutionReport, PlanTree, RunStatus
from .plans.parser import PlanParser
from .plans.store import ReportNotFoundError, ReportStore
from .visualizer import render_plan_tree, render_report, render_report_list

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INVALID = 2


def _load_tree(path: str, config: Config) -> PlanTree:
	"""Parse a plan file, exiting with EXIT_INVALID on a ParseError."""
	try:
		return PlanParser(max_depth=config.max_depth).parse_file(path)
	except ParseError as e:
		print(f"Invalid plan: {e}", file=sys.stderr)
		sys.exit(EXIT_INVALID)


def cmd_validate(args: argparse.Namespace) -> None:
	"""Parse a plan and check it for file conflicts."""
	config = load_config()
	tree = _load_tree(args.plan, config)

	try:
		PlanParser(max_depth=config.max_depth).validate(tree)
	except ConflictError as e:
		print(str(e), file=sys.stderr)
		sys.exit(EXIT_INVALID)

	print(
		f"OK: '{tree.name}' has {tree.phase_count} phases, "
		f"{tree.total_task_count()} tasks, nesting depth {tree.nesting_depth()}"
	)


def cmd_show(args: argparse.Namespace) -> None:
	"""Print a plan as a tree of phases and tasks."""
	config = load_config()
	console = Console()
	tree = _load_tree(args.plan, config)
	render_plan_tree(tree, console)

	conflicts = find_conflicts(tree)
	if conflicts:
		console.print(f"[bold red]{len(conflicts)} file conflict(s):[/bold red]")
		for conflict in conflicts:
			console.print(f"  - {conflict.describe()}", markup=False)


def _build_registry(args: argparse.Namespace, config: Config) -> WorkerRegistry:
	if args.dry_run:
		return WorkerRegistry(default=DryRunWorker())

	command = args.agent_command or config.agent_command
	if not command:
		print(
			"No agent command configured. Pass --agent-command, set PARALLX_AGENT_COMMAND, "
			"or use --dry-run.",
			file=sys.stderr,
		)
		sys.exit(EXIT_INVALID)
	return WorkerRegistry(default=AgentCommandWorker(command, timeout=config.agent_timeout))


async def _run_plan(
	tree: PlanTree,
	runner: PlanRunner,
	verify_command: Optional[str],
) -> ExecutionReport:
	try:
		return await runner.run(tree, verify_command=verify_command)
	finally:
		if runner.store:
			await runner.store.close()


def cmd_run(args: argparse.Namespace) -> None:
	"""Execute a plan and print its report."""
	config = load_config()
	if args.max_concurrency is not None:
		config.max_concurrency = args.max_concurrency
	setup_logging(config.log_level, config.log_dir)

	tree = _load_tree(args.plan, config)
	registry = _build_registry(args, config)
	store = None if args.no_save else ReportStore(str(config.reports_db_path))

	runner = PlanRunner(
		registry,
		config=config,
		workdir=args.workdir,
		store=store,
	)
	report = asyncio.run(_run_plan(tree, runner, args.verify))

	if args.json:
		print(report.model_dump_json(indent=2))
	else:
		render_report(report, Console())

	if report.status == RunStatus.COMPLETED:
		sys.exit(EXIT_OK)
	if report.conflicts and not report.dispatched:
		sys.exit(EXIT_INVALID)
	sys.exit(EXIT_FAILED)


async def _list_reports(store: ReportStore, limit: int, plan_name: Optional[str]) -> list[ExecutionReport]:
	try:
		return await store.list_reports(plan_name=plan_name, limit=limit)
	finally:
		await store.close()


async def _get_report(store: ReportStore, report_id: str) -> ExecutionReport:
	try:
		return await store.get_report(report_id)
	finally:
		await store.close()


def cmd_history(args: argparse.Namespace) -> None:
	"""List recent runs."""
	config = load_config()
	store = ReportStore(str(config.reports_db_path))
	reports = asyncio.run(_list_reports(store, args.limit, args.plan))
	render_report_list(reports, Console())


def cmd_report(args: argparse.Namespace) -> None:
	"""Show one stored run."""
	config = load_config()
	store = ReportStore(str(config.reports_db_path))
	try:
		report = asyncio.run(_get_report(store, args.report_id))
	except ReportNotFoundError as e:
		print(str(e), file=sys.stderr)
		sys.exit(EXIT_FAILED)

	if args.markdown:
		print(report.to_markdown())
	else:
		render_report(report, Console())


def main(argv: Optional[list[str]] = None) -> None:
	"""CLI entry point."""
	parser = argparse.ArgumentParser(
		prog="parallx",
		description="Run phased, recursive task plans with parallel workers",
	)
	subparsers = parser.add_subparsers(dest="command")

	# validate
	validate_parser = subparsers.add_parser("validate", help="Parse a plan and check for file conflicts")
	validate_parser.add_argument("plan", help="Plan file (YAML or JSON)")
	validate_parser.set_defaults(func=cmd_validate)

	# show
	show_parser = subparsers.add_parser("show", help="Print a plan as a tree")
	show_parser.add_argument("plan", help="Plan file (YAML or JSON)")
	show_parser.set_defaults(func=cmd_show)

	# run
	run_parser = subparsers.add_parser("run", help="Execute a plan")
	run_parser.add_argument("plan", help="Plan file (YAML or JSON)")
	run_parser.add_argument("--dry-run", action="store_true", help="Log tasks instead of running agents")
	run_parser.add_argument("--agent-command", type=str, default=None, help="Agent CLI run for each task")
	run_parser.add_argument("--verify", type=str, default=None, help="Verification command (overrides the plan's)")
	run_parser.add_argument("--max-concurrency", type=int, default=None, help="Max tasks running at once")
	run_parser.add_argument("--workdir", type=Path, default=None, help="Project directory (default: cwd)")
	run_parser.add_argument("--json", action="store_true", help="Print the report as JSON")
	run_parser.add_argument("--no-save", action="store_true", help="Don't record the run in history")
	run_parser.set_defaults(func=cmd_run)

	# history
	history_parser = subparsers.add_parser("history", help="List recent runs")
	history_parser.add_argument("--limit", type=int, default=20, help="Max results")
	history_parser.add_argument("--plan", type=str, default=None, help="Only runs of this plan")
	history_parser.set_defaults(func=cmd_history)

	# report
	report_parser = subparsers.add_parser("report", help="Show a stored run")
	report_parser.add_argument("report_id", help="Run ID (see 'parallx history')")
	report_parser.add_argument("--markdown", action="store_true", help="Print as Markdown")
	report_parser.set_defaults(func=cmd_report)

	args = parser.parse_args(argv)

	if not args.command:
		parser.print_help()
		sys.exit(EXIT_FAILED)

	args.func(args)
