"""Shared test fixtures and helpers for parallx tests."""

import asyncio
from typing import Optional

from parallx.errors import TaskFailure
from parallx.orchestrator.workers import TaskOutcome, WorkContext, WorkerRegistry
from parallx.plans.models import TaskNode


def task(
	task_id: str,
	worker: str = "backend",
	files: Optional[list[str]] = None,
	**extra,
) -> dict:
	"""Build a raw task entry for a plan document."""
	entry = {
		"id": task_id,
		"worker": worker,
		"scope": f"Implement {task_id}",
		"files": files or [],
	}
	entry.update(extra)
	return entry


def recursive_task(task_id: str, subplan: Optional[dict] = None, **extra) -> dict:
	"""Build a raw recursive task entry, optionally with an inline sub-plan."""
	entry = {
		"id": task_id,
		"recursive": True,
		"scope": f"Break down {task_id}",
	}
	if subplan is not None:
		entry["subplan"] = subplan
	entry.update(extra)
	return entry


def phased(*phases: list[dict], name: str = "test-plan", **extra) -> dict:
	"""Build a plan document from lists of tasks, one list per phase."""
	document = {
		"name": name,
		"phases": [
			{"phase": index, "tasks": tasks}
			for index, tasks in enumerate(phases, start=1)
		],
	}
	document.update(extra)
	return document


def nested_plan(levels: int) -> dict:
	"""
	Build a plan whose recursive tasks nest `levels` sub-plans deep.

	nested_plan(0) is a flat plan; nested_plan(3) puts a sub-plan at depth 3.
	"""
	document = phased([task("leaf", files=[f"level{levels}.txt"])], name=f"level-{levels}")
	for level in range(levels - 1, -1, -1):
		document = phased(
			[task(f"work{level}", files=[f"level{level}.txt"])],
			[recursive_task(f"R{level + 1}", subplan=document)],
			name=f"level-{level}",
		)
	return document


SCENARIO_SEQUENTIAL_PHASES = phased(
	[
		task("A", files=["file1.txt"]),
		task("B", files=["file2.txt"]),
	],
	[
		task("C", worker="frontend", files=["file1.txt"], depends_on=["A", "B"]),
	],
	name="two-phase",
)

SCENARIO_SAME_FILE = phased(
	[
		task("A", files=["file1.txt"]),
		task("B", files=["file1.txt"]),
	],
	name="same-file",
)


class RecordingWorker:
	"""
	Worker handler that records start/end events instead of doing work.

	Args:
		delay: Seconds each task sleeps
		delays: Per-task delay overrides
		fail: Task IDs that fail, mapped to the TaskFailure blocking flag
			(None leaves the decision to the task)
		artifacts: Per-task artifacts (default: the task's declared files)
	"""

	def __init__(
		self,
		delay: float = 0.01,
		delays: Optional[dict[str, float]] = None,
		fail: Optional[dict[str, Optional[bool]]] = None,
		artifacts: Optional[dict[str, list[str]]] = None,
	):
		self.delay = delay
		self.delays = delays or {}
		self.fail = fail or {}
		self.artifacts = artifacts or {}
		self.events: list[tuple[str, str]] = []
		self.contexts: dict[str, WorkContext] = {}
		self.active = 0
		self.max_active = 0

	@property
	def started(self) -> list[str]:
		return [qid for event, qid in self.events if event == "start"]

	def index(self, event: str, qualified_id: str) -> int:
		return self.events.index((event, qualified_id))

	async def __call__(self, node: TaskNode, context: WorkContext) -> TaskOutcome:
		qualified_id = f"{context.tree_path}/{node.id}"
		self.contexts[qualified_id] = context
		self.events.append(("start", qualified_id))
		self.active += 1
		self.max_active = max(self.max_active, self.active)
		try:
			await asyncio.sleep(self.delays.get(node.id, self.delay))
		finally:
			self.active -= 1
			self.events.append(("end", qualified_id))

		if node.id in self.fail:
			raise TaskFailure(f"{node.id} broke", task_id=node.id, blocking=self.fail[node.id])
		return TaskOutcome(artifacts=list(self.artifacts.get(node.id, node.files)))


def recording_registry(**kwargs) -> tuple[WorkerRegistry, RecordingWorker]:
	"""A registry that sends every worker type to one RecordingWorker."""
	worker = RecordingWorker(**kwargs)
	return WorkerRegistry(default=worker), worker
