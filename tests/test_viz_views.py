"""Tests for visualizer Rich views."""

from datetime import datetime, timedelta
from io import StringIO

from rich.console import Console

from parallx.plans.models import (
	CheckStatus,
	Conflict,
	ExecutionReport,
	ExecutionResult,
	RunStatus,
	ScopeViolation,
	TaskState,
	VerificationRecord,
)
from parallx.plans.parser import parse_plan
from parallx.visualizer import render_plan_tree, render_report, render_report_list
from parallx.visualizer.utils import format_duration, format_timestamp, status_style
from tests.helpers import SCENARIO_SEQUENTIAL_PHASES, phased, recursive_task, task


def make_console() -> tuple[Console, StringIO]:
	buf = StringIO()
	return Console(file=buf, width=160, force_terminal=False), buf


def make_report(**overrides) -> ExecutionReport:
	data = dict(
		id="abc123",
		plan_name="two-phase",
		status=RunStatus.FAILED,
		results=[
			ExecutionResult(task_id="A", phase=1, state=TaskState.SUCCEEDED, artifacts=("file1.txt",),
				started_at="2026-03-01T10:00:00", duration_seconds=1.5),
			ExecutionResult(task_id="B", phase=1, state=TaskState.FAILED, error="compile [error] in b.py",
				started_at="2026-03-01T10:00:00", duration_seconds=0.2),
			ExecutionResult(task_id="C", phase=2, state=TaskState.SKIPPED, error="Not dispatched"),
		],
		error="Blocking failure in B",
	)
	data.update(overrides)
	return ExecutionReport(**data)


# -- utils tests --

def test_format_duration_submillisecond():
	assert format_duration(0.0001) == "<1ms"


def test_format_duration_milliseconds():
	assert format_duration(0.045) == "45ms"


def test_format_duration_seconds():
	assert format_duration(1.23) == "1.2s"


def test_format_duration_minutes():
	assert format_duration(125.0) == "2m 5s"


def test_format_timestamp_recent():
	ts = (datetime.now() - timedelta(minutes=5)).isoformat()
	assert format_timestamp(ts) == "5m ago"


def test_format_timestamp_days():
	ts = (datetime.now() - timedelta(days=3, minutes=1)).isoformat()
	assert format_timestamp(ts) == "3d ago"


def test_format_timestamp_invalid():
	assert format_timestamp("not-a-date") == "not-a-date"


def test_status_style():
	assert status_style(TaskState.SUCCEEDED) == "green"
	assert status_style(RunStatus.VERIFICATION_FAILED) == "yellow"
	assert status_style("unknown") == "white"


# -- plan tree --

def test_render_plan_tree():
	console, buf = make_console()
	tree = parse_plan(phased(
		[task("A", files=["file1.txt"]), task("B", blocking=False)],
		[recursive_task("D", subplan=phased([task("x", worker="docs")]))],
		name="feature",
		verify="pytest -q",
	))

	render_plan_tree(tree, console)
	output = buf.getvalue()

	assert "feature" in output
	assert "2 phases, 4 tasks, nesting depth 1" in output
	assert "Phase 2" in output
	assert "file1.txt" in output
	assert "non-blocking" in output
	assert "docs" in output
	assert "verify: pytest -q" in output


def test_render_plan_tree_with_results():
	console, buf = make_console()
	tree = parse_plan(SCENARIO_SEQUENTIAL_PHASES)

	render_plan_tree(tree, console, report=make_report())
	output = buf.getvalue()

	assert "[x]" in output
	assert "[!]" in output
	assert "compile [error] in b.py" in output


# -- reports --

def test_render_report():
	console, buf = make_console()
	report = make_report(
		conflicts=[Conflict(tree_path="root", phase=1, tasks=("A", "B"), paths=("file1.txt",))],
		scope_violations=[ScopeViolation(tree_path="root", task_id="A", paths=("extra.txt",))],
	)

	render_report(report, console)
	output = buf.getvalue()

	assert "Run: abc123" in output
	assert "failed" in output
	assert "1 succeeded, 1 failed, 1 skipped" in output
	assert "Blocking failure in B" in output
	assert "root/B" in output
	assert "1.5s" in output
	assert "A and B both claim file1.txt" in output
	assert "root/A: extra.txt" in output


def test_render_report_with_verification():
	console, buf = make_console()
	report = make_report(
		status=RunStatus.VERIFICATION_FAILED,
		error=None,
		verification=VerificationRecord(command="pytest -q", status=CheckStatus.FAILED, exit_code=1),
	)

	render_report(report, console)
	output = buf.getvalue()

	assert "verification_failed" in output
	assert "(exit 1) pytest -q" in output


def test_render_report_list():
	console, buf = make_console()
	reports = [
		make_report(),
		make_report(id="def456", plan_name="release", status=RunStatus.COMPLETED),
	]

	render_report_list(reports, console)
	output = buf.getvalue()

	assert "abc123" in output
	assert "def456" in output
	assert "release" in output
	assert "1/3" in output


def test_render_report_list_empty():
	console, buf = make_console()

	render_report_list([], console)

	assert "No runs recorded yet" in buf.getvalue()
