"""Rich views for plan trees and execution reports."""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from ..plans.models import ROOT_PATH, ExecutionReport, ExecutionResult, PlanTree, TaskState
from .utils import format_duration, format_timestamp, status_style

STATE_ICONS = {
	TaskState.SUCCEEDED: "[green]\\[x][/green]",
	TaskState.FAILED: "[red]\\[!][/red]",
	TaskState.SKIPPED: "[dim]\\[-][/dim]",
}


def _add_tree(
	branch: Tree,
	tree: PlanTree,
	path: str,
	results: dict[str, ExecutionResult],
) -> None:
	for phase in tree.phases:
		phase_branch = branch.add(f"[bold]Phase {phase.index}[/bold] [dim]({len(phase.tasks)} tasks)[/dim]")
		for node in phase.tasks:
			result = results.get(f"{path}/{node.id}")
			icon = STATE_ICONS.get(result.state, "[ ]") if result else "[dim][ ][/dim]"
			label = f"{icon} [cyan]{escape(node.id)}[/cyan] [magenta]{node.worker.value}[/magenta] {escape(node.scope)}"
			if node.files:
				label += f" [dim]({escape(', '.join(node.files))})[/dim]"
			if not node.blocking:
				label += " [dim]non-blocking[/dim]"
			if result and result.error:
				label += f"\n[red]{escape(result.error)}[/red]"
			node_branch = phase_branch.add(label)
			if node.recursive and node.id in tree.subtrees:
				_add_tree(node_branch, tree.subtrees[node.id], f"{path}/{node.id}", results)


def render_plan_tree(
	tree: PlanTree,
	console: Optional[Console] = None,
	report: Optional[ExecutionReport] = None,
) -> None:
	"""Render a plan as a Rich Tree of phases, tasks and sub-plans."""
	console = console or Console()

	results = {r.qualified_id: r for r in report.results} if report else {}
	root = Tree(
		f"[bold]{escape(tree.name)}[/bold]  "
		f"[dim]({tree.phase_count} phases, {tree.total_task_count()} tasks, "
		f"nesting depth {tree.nesting_depth()})[/dim]"
	)
	_add_tree(root, tree, ROOT_PATH, results)

	if tree.verify:
		root.add(f"[bold]verify:[/bold] {escape(tree.verify)}")

	console.print(root)


def render_report(report: ExecutionReport, console: Optional[Console] = None) -> None:
	"""Render an execution report: summary panel plus per-task table."""
	console = console or Console()

	progress = report.get_progress()
	style = status_style(report.status)

	lines = [
		f"[bold]Plan:[/bold] {escape(report.plan_name)}",
		f"[bold]Status:[/bold] [{style}]{report.status.value}[/{style}]",
		f"[bold]Tasks:[/bold] {progress['succeeded']} succeeded, "
		f"{progress['failed']} failed, {progress['skipped']} skipped",
		f"[bold]Files touched:[/bold] {len(report.files_touched())}",
	]
	if report.error:
		lines.append(f"[bold]Error:[/bold] [red]{escape(report.error)}[/red]")
	if report.verification:
		v_style = "green" if report.verification.passed else "red"
		lines.append(
			f"[bold]Verification:[/bold] [{v_style}]{report.verification.status.value}[/{v_style}] "
			f"(exit {report.verification.exit_code}) {escape(report.verification.command)}"
		)

	console.print(Panel("\n".join(lines), title=f"Run: {report.id}", border_style=style))

	table = Table(title="Tasks")
	table.add_column("Task", style="cyan")
	table.add_column("Phase", justify="right")
	table.add_column("State")
	table.add_column("Duration", justify="right")
	table.add_column("Files")
	table.add_column("Error", style="red")

	for result in report.results:
		r_style = status_style(result.state)
		table.add_row(
			escape(result.qualified_id),
			str(result.phase),
			f"[{r_style}]{result.state.value}[/{r_style}]",
			format_duration(result.duration_seconds) if result.started_at else "-",
			escape(", ".join(result.artifacts)),
			escape(result.error or ""),
		)
	console.print(table)

	if report.conflicts:
		console.print("[bold red]Conflicts:[/bold red]")
		for conflict in report.conflicts:
			console.print(f"  - {escape(conflict.describe())}")

	if report.scope_violations:
		console.print("[bold yellow]Undeclared writes:[/bold yellow]")
		for violation in report.scope_violations:
			console.print(f"  - {escape(violation.tree_path)}/{escape(violation.task_id)}: {escape(', '.join(violation.paths))}")


def render_report_list(reports: list[ExecutionReport], console: Optional[Console] = None) -> None:
	"""Render stored reports as a table."""
	console = console or Console()

	if not reports:
		console.print("[dim]No runs recorded yet.[/dim]")
		return

	table = Table(title="Runs")
	table.add_column("ID", style="cyan")
	table.add_column("Plan")
	table.add_column("Status")
	table.add_column("Tasks", justify="right")
	table.add_column("Started")

	for report in reports:
		progress = report.get_progress()
		style = status_style(report.status)
		table.add_row(
			report.id,
			escape(report.plan_name),
			f"[{style}]{report.status.value}[/{style}]",
			f"{progress['succeeded']}/{progress['total_tasks']}",
			format_timestamp(report.started_at),
		)

	console.print(table)
