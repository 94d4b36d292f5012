"""
Plan Models - Pydantic schemas for task trees and execution reports.

A PlanTree is an ordered sequence of phases, each holding mutually
independent TaskNodes, plus nested sub-trees for recursive tasks.
ExecutionResults record each task's terminal state; an ExecutionReport
is what a whole run hands back to the caller.
"""

from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from ..errors import ConflictError, TaskFailure, VerificationFailure

ROOT_PATH = "root"


class WorkerType(str, Enum):
	"""Closed set of worker capabilities a task can be assigned to."""
	FRONTEND = "frontend"
	BACKEND = "backend"
	RESEARCH = "research"
	TESTING = "testing"
	DOCS = "docs"
	GENERAL = "general"
	RECURSIVE = "recursive"


class TaskState(str, Enum):
	"""Terminal state of a task."""
	SUCCEEDED = "succeeded"
	FAILED = "failed"
	SKIPPED = "skipped"


class RunStatus(str, Enum):
	"""Terminal status of a whole run."""
	COMPLETED = "completed"
	FAILED = "failed"
	VERIFICATION_FAILED = "verification_failed"


class CheckStatus(str, Enum):
	"""Status of a verification check."""
	PASSED = "passed"
	FAILED = "failed"
	SKIPPED = "skipped"
	ERROR = "error"


class TaskNode(BaseModel):
	"""A single unit of work with a declared scope and file ownership."""
	model_config = ConfigDict(frozen=True)

	id: str = Field(description="Unique task identifier within its tree")
	worker: WorkerType = Field(description="Worker capability that performs the task")
	scope: str = Field(description="What needs to be done")
	files: tuple[str, ...] = Field(default=(), description="Files the task claims exclusive write access to")
	phase: int = Field(ge=1, description="Phase the task belongs to")
	recursive: bool = Field(default=False, description="Expand into a sub-plan instead of running a worker")
	blocking: bool = Field(default=True, description="Whether a failure halts the tree")
	depends_on: tuple[str, ...] = Field(default=(), description="Tasks in earlier phases this task builds on")


class Phase(BaseModel):
	"""A synchronization barrier grouping concurrently-eligible tasks."""
	model_config = ConfigDict(frozen=True)

	index: int = Field(ge=1)
	tasks: tuple[TaskNode, ...] = ()

	@property
	def task_ids(self) -> list[str]:
		return [t.id for t in self.tasks]


class PlanTree(BaseModel):
	"""
	The full dependency-ordered structure of phases plus nested sub-trees.

	Trees are built once by the parser and never mutated afterwards.
	"""
	model_config = ConfigDict(frozen=True)

	name: str = Field(default="plan")
	depth: int = Field(default=0, ge=0, description="Nesting depth (root is 0)")
	phases: tuple[Phase, ...] = ()
	verify: Optional[str] = Field(default=None, description="Verification command run after the tree completes")
	subtrees: Mapping[str, "PlanTree"] = Field(default_factory=dict, validate_default=True)

	@field_validator("subtrees", mode="after")
	@classmethod
	def freeze_subtrees(cls, value: Mapping[str, "PlanTree"]) -> Mapping[str, "PlanTree"]:
		return MappingProxyType(dict(value))

	@field_serializer("subtrees")
	def serialize_subtrees(self, value: Mapping[str, "PlanTree"]) -> dict:
		return dict(value)

	@property
	def phase_count(self) -> int:
		return len(self.phases)

	@property
	def task_count(self) -> int:
		return sum(len(p.tasks) for p in self.phases)

	def tasks(self) -> Iterator[TaskNode]:
		"""Iterate over this tree's tasks in phase order (sub-trees excluded)."""
		for phase in self.phases:
			yield from phase.tasks

	def get_task(self, task_id: str) -> Optional[TaskNode]:
		for task in self.tasks():
			if task.id == task_id:
				return task
		return None

	def nesting_depth(self) -> int:
		"""Depth of the deepest sub-tree below this one, relative to this tree."""
		if not self.subtrees:
			return 0
		return 1 + max(sub.nesting_depth() for sub in self.subtrees.values())

	def walk(self, path: str = ROOT_PATH) -> Iterator[tuple[str, "PlanTree"]]:
		"""Yield (tree_path, tree) for this tree and every nested sub-tree."""
		yield path, self
		for task_id, sub in self.subtrees.items():
			yield from sub.walk(f"{path}/{task_id}")

	def total_task_count(self) -> int:
		"""Task count including every nested sub-tree."""
		return sum(tree.task_count for _, tree in self.walk())


PlanTree.model_rebuild()


class Conflict(BaseModel):
	"""Two tasks in the same phase claiming the same file path."""
	model_config = ConfigDict(frozen=True)

	tree_path: str
	phase: int
	tasks: tuple[str, str]
	paths: tuple[str, ...]

	def describe(self) -> str:
		return (
			f"{self.tree_path} phase {self.phase}: "
			f"{self.tasks[0]} and {self.tasks[1]} both claim {', '.join(self.paths)}"
		)


class ScopeViolation(BaseModel):
	"""A task that touched files outside the set it declared."""
	model_config = ConfigDict(frozen=True)

	tree_path: str
	task_id: str
	paths: tuple[str, ...]


class ExecutionResult(BaseModel):
	"""Terminal outcome of a single task."""
	model_config = ConfigDict(frozen=True)

	task_id: str
	tree_path: str = ROOT_PATH
	phase: int
	state: TaskState
	artifacts: tuple[str, ...] = ()
	error: Optional[str] = None
	blocking: bool = True
	started_at: Optional[str] = None
	finished_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	duration_seconds: float = 0.0

	@property
	def qualified_id(self) -> str:
		return f"{self.tree_path}/{self.task_id}"

	@property
	def is_blocking_failure(self) -> bool:
		return self.state == TaskState.FAILED and self.blocking


class VerificationRecord(BaseModel):
	"""Outcome of a verification command."""
	command: str
	status: CheckStatus
	exit_code: Optional[int] = None
	output: str = ""
	duration_seconds: float = 0.0
	verified_at: str = Field(default_factory=lambda: datetime.now().isoformat())

	@property
	def passed(self) -> bool:
		return self.status in (CheckStatus.PASSED, CheckStatus.SKIPPED)


class ExecutionReport(BaseModel):
	"""
	Everything a run hands back to the caller.

	Per-task terminal status, files touched, conflicts detected and the
	verification command's exit status.
	"""
	id: str
	plan_name: str
	status: RunStatus
	results: list[ExecutionResult] = Field(default_factory=list)
	conflicts: list[Conflict] = Field(default_factory=list)
	scope_violations: list[ScopeViolation] = Field(default_factory=list)
	verification: Optional[VerificationRecord] = None
	error: Optional[str] = None
	started_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	finished_at: Optional[str] = None

	@property
	def dispatched(self) -> bool:
		"""Whether any task actually ran."""
		return any(r.state != TaskState.SKIPPED for r in self.results)

	def files_touched(self) -> list[str]:
		touched: set[str] = set()
		for result in self.results:
			touched.update(result.artifacts)
		return sorted(touched)

	def failures(self) -> list[ExecutionResult]:
		return [r for r in self.results if r.state == TaskState.FAILED]

	def get_progress(self) -> dict:
		"""Count tasks per terminal state."""
		counts = {state.value: 0 for state in TaskState}
		for result in self.results:
			counts[result.state.value] += 1
		total = len(self.results)
		return {
			"total_tasks": total,
			**counts,
			"percent_succeeded": round(counts["succeeded"] / total * 100, 1) if total > 0 else 0,
		}

	def raise_for_status(self) -> None:
		"""Raise the error matching a non-completed status."""
		if self.status == RunStatus.COMPLETED:
			return
		if self.status == RunStatus.VERIFICATION_FAILED and self.verification:
			raise VerificationFailure(self.verification)
		if self.conflicts and not self.dispatched:
			raise ConflictError(self.conflicts)
		blocking = [r for r in self.results if r.is_blocking_failure]
		culprit = blocking[0] if blocking else None
		if culprit:
			raise TaskFailure(
				culprit.error or "task failed",
				task_id=culprit.task_id,
				blocking=True,
				tree_path=culprit.tree_path,
			)
		raise TaskFailure(self.error or f"run {self.id} failed")

	def to_markdown(self) -> str:
		"""Convert the report to markdown format."""
		progress = self.get_progress()
		lines = [
			f"# Run {self.id}: {self.plan_name}",
			"",
			f"**Status:** {self.status.value}",
			f"**Started:** {self.started_at}",
			f"**Finished:** {self.finished_at or '-'}",
			f"**Tasks:** {progress['succeeded']} succeeded, {progress['failed']} failed, "
			f"{progress['skipped']} skipped",
			"",
		]

		if self.error:
			lines.append(f"> {self.error}")
			lines.append("")

		lines.append("## Tasks")
		for result in self.results:
			icon = {
				TaskState.SUCCEEDED: "[x]",
				TaskState.FAILED: "[!]",
				TaskState.SKIPPED: "[-]",
			}.get(result.state, "[ ]")
			line = f"- {icon} `{result.qualified_id}` (phase {result.phase})"
			if result.error:
				line += f" - {result.error}"
			lines.append(line)
		lines.append("")

		files = self.files_touched()
		if files:
			lines.append("## Files touched")
			for path in files:
				lines.append(f"- {path}")
			lines.append("")

		if self.conflicts:
			lines.append("## Conflicts")
			for conflict in self.conflicts:
				lines.append(f"- {conflict.describe()}")
			lines.append("")

		if self.scope_violations:
			lines.append("## Undeclared writes")
			for violation in self.scope_violations:
				lines.append(f"- {violation.tree_path}/{violation.task_id}: {', '.join(violation.paths)}")
			lines.append("")

		if self.verification:
			lines.append("## Verification")
			lines.append(f"`{self.verification.command}` → {self.verification.status.value} "
				f"(exit {self.verification.exit_code})")
			lines.append("")

		return "\n".join(lines)
