"""Tests for the single-phase fan-out/fan-in runner."""

import asyncio

import pytest

from parallx.errors import TaskFailure
from parallx.orchestrator.phase import PhaseRunner
from parallx.orchestrator.workers import TaskOutcome
from parallx.plans.models import Phase, TaskNode, TaskState, WorkerType


def node(task_id: str, **kwargs) -> TaskNode:
	return TaskNode(id=task_id, worker=WorkerType.GENERAL, scope=f"do {task_id}", phase=1, **kwargs)


class TestPhaseRunner:

	@pytest.mark.asyncio
	async def test_empty_phase(self):
		outcome = await PhaseRunner().execute(Phase(index=1), run_node=None)

		assert outcome.results == []
		assert outcome.halted is False

	@pytest.mark.asyncio
	async def test_all_succeed(self):
		async def run_node(n):
			return TaskOutcome(artifacts=[f"{n.id}.txt"])

		phase = Phase(index=1, tasks=(node("a"), node("b")))
		outcome = await PhaseRunner().execute(phase, run_node)

		assert outcome.succeeded == 2
		assert outcome.failed == 0
		assert {r.task_id: r.artifacts for r in outcome.results} == {"a": ("a.txt",), "b": ("b.txt",)}
		assert all(r.started_at is not None for r in outcome.results)

	@pytest.mark.asyncio
	async def test_artifacts_are_normalized(self):
		async def run_node(n):
			return TaskOutcome(artifacts=["./src//x.py", "src/x.py", "  "])

		outcome = await PhaseRunner().execute(Phase(index=1, tasks=(node("a"),)), run_node)

		assert outcome.results[0].artifacts == ("src/x.py",)

	@pytest.mark.asyncio
	async def test_non_blocking_failure_does_not_halt(self):
		async def run_node(n):
			raise RuntimeError("flaky")

		phase = Phase(index=1, tasks=(node("a", blocking=False),))
		outcome = await PhaseRunner().execute(phase, run_node)

		assert outcome.failed == 1
		assert outcome.blocking_failures == []
		assert outcome.halted is False

	@pytest.mark.asyncio
	async def test_blocking_failure_halts(self):
		async def run_node(n):
			if n.id == "a":
				raise RuntimeError("broken")
			return None

		phase = Phase(index=1, tasks=(node("a"), node("b")))
		outcome = await PhaseRunner().execute(phase, run_node, tree_path="root/D")

		assert outcome.halted is True
		assert [r.task_id for r in outcome.blocking_failures] == ["a"]
		assert all(r.tree_path == "root/D" for r in outcome.results)
		assert {r.task_id: r.state for r in outcome.results}["b"] == TaskState.SUCCEEDED

	@pytest.mark.asyncio
	@pytest.mark.parametrize("max_concurrency", [None, 8])
	async def test_immediate_failure_leaves_launched_siblings_running(self, max_concurrency):
		"""A task failing before its first await does not skip the rest of the phase."""
		started = []

		async def run_node(n):
			started.append(n.id)
			if n.id == "a":
				raise TaskFailure("agent binary missing", task_id="a")
			await asyncio.sleep(0.01)
			return None

		phase = Phase(index=1, tasks=(node("a"), node("b"), node("c")))
		outcome = await PhaseRunner(max_concurrency=max_concurrency).execute(phase, run_node)
		states = {r.task_id: r.state for r in outcome.results}

		assert started == ["a", "b", "c"]
		assert states == {"a": TaskState.FAILED, "b": TaskState.SUCCEEDED, "c": TaskState.SUCCEEDED}
		assert outcome.halted is True

	@pytest.mark.asyncio
	async def test_only_tasks_waiting_for_a_slot_are_skipped(self):
		async def run_node(n):
			await asyncio.sleep(0.01)
			if n.id == "a":
				raise TaskFailure("broken", task_id="a")
			return None

		phase = Phase(index=1, tasks=(node("a"), node("b"), node("c")))
		outcome = await PhaseRunner(max_concurrency=2).execute(phase, run_node)
		states = {r.task_id: r.state for r in outcome.results}

		assert states == {"a": TaskState.FAILED, "b": TaskState.SUCCEEDED, "c": TaskState.SKIPPED}

	@pytest.mark.asyncio
	async def test_timeout_does_not_apply_to_recursive_tasks(self):
		async def run_node(n):
			await asyncio.sleep(0.05)
			return None

		phase = Phase(index=1, tasks=(
			node("plain"),
			TaskNode(id="rec", worker=WorkerType.RECURSIVE, scope="expand", phase=1, recursive=True),
		))
		outcome = await PhaseRunner(task_timeout=0.01).execute(phase, run_node)
		states = {r.task_id: r.state for r in outcome.results}

		assert states == {"plain": TaskState.FAILED, "rec": TaskState.SUCCEEDED}
