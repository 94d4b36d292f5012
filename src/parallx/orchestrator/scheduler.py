"""
Scheduler - Executes a PlanTree phase by phase.

State machine per tree:

	pending -> phase_running(1) -> ... -> phase_running(n) -> completed
	phase_running(i) -> failed (absorbing, on a blocking failure)

All tasks of phase i are dispatched together and awaited before
phase i+1 is considered. A non-blocking failure is recorded and the
tree advances; a blocking failure halts the tree, every later phase is
recorded as skipped and, for a sub-tree, the parent's recursive task
fails.

Each scheduler owns an append-only result log for one run. Child
schedulers forward their results into their parent's log, so the root
log covers the whole tree.
"""

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Union

from ..errors import ParseError
from ..plans.models import ROOT_PATH, ExecutionResult, Phase, PlanTree, TaskNode, TaskState
from ..plans.parser import MAX_DEPTH
from .expander import RecursiveExpander
from .phase import PhaseRunner
from .workers import TaskOutcome, WorkContext, WorkerRegistry

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
	"""Lifecycle of a scheduler's tree."""
	PENDING = "pending"
	PHASE_RUNNING = "phase_running"
	COMPLETED = "completed"
	FAILED = "failed"


class Scheduler:
	"""
	Runs one PlanTree with phase-barrier semantics.

	Usage:
		scheduler = Scheduler(WorkerRegistry(default=DryRunWorker()))
		results = await scheduler.run(tree)
		if scheduler.failed:
			...
	"""

	def __init__(
		self,
		registry: WorkerRegistry,
		*,
		max_depth: int = MAX_DEPTH,
		max_concurrency: Optional[int] = None,
		task_timeout: Optional[float] = None,
		workdir: Optional[Union[str, Path]] = None,
		expander: Optional[RecursiveExpander] = None,
		tree_path: str = ROOT_PATH,
		depth: int = 0,
		on_dispatch: Optional[Callable[[TaskNode], None]] = None,
		on_result: Optional[Callable[[ExecutionResult], None]] = None,
	):
		"""
		Initialize the scheduler.

		Args:
			registry: Worker handlers by worker type
			max_depth: Deepest allowed sub-plan nesting
			max_concurrency: Maximum tasks running at once within a phase
			task_timeout: Per-task timeout in seconds
			workdir: Directory workers run in (default: cwd)
			expander: Expander for recursive tasks
			tree_path: Path of the tree this scheduler runs
			depth: Nesting depth of that tree
			on_dispatch: Callback right before a task starts
			on_result: Callback as each task reaches a terminal state
		"""
		self.registry = registry
		self.max_depth = max_depth
		self.phase_runner = PhaseRunner(max_concurrency=max_concurrency, task_timeout=task_timeout)
		self.workdir = Path(workdir) if workdir else Path.cwd()
		self.expander = expander or RecursiveExpander()
		self.tree_path = tree_path
		self.depth = depth
		self.on_dispatch = on_dispatch
		self.on_result = on_result

		self.state = SchedulerState.PENDING
		self.current_phase: Optional[int] = None
		self.transitions: list[tuple[SchedulerState, Optional[int]]] = [(SchedulerState.PENDING, None)]
		self._log: list[ExecutionResult] = []

	@property
	def results(self) -> list[ExecutionResult]:
		"""Copy of the result log, in the order tasks reached a terminal state."""
		return list(self._log)

	@property
	def failed(self) -> bool:
		return self.state == SchedulerState.FAILED

	@property
	def completed(self) -> bool:
		return self.state == SchedulerState.COMPLETED

	async def run(self, tree: PlanTree) -> list[ExecutionResult]:
		"""
		Run every phase of a tree.

		Args:
			tree: Tree to execute

		Returns:
			The result log, including results forwarded by child schedulers

		Raises:
			ParseError: If the tree is nested too deeply or a recursive task has no sub-tree
			WorkerNotRegisteredError: If a task's worker type has no handler
		"""
		if self.state != SchedulerState.PENDING:
			raise RuntimeError("A Scheduler runs exactly one tree; create a new one per run")

		self._check_tree(tree)
		handlers = self.registry.bind(tree)
		context = WorkContext(tree_path=self.tree_path, depth=self.depth, workdir=self.workdir)

		async def run_node(node: TaskNode) -> Optional[TaskOutcome]:
			if node.recursive:
				return await self.expander.expand(node, tree.subtrees[node.id], self)
			return await handlers[node.id](node, context)

		logger.info(
			f"Running {self.tree_path} ('{tree.name}'): "
			f"{tree.phase_count} phases, {tree.task_count} tasks"
		)

		halted_after: Optional[int] = None
		for phase in tree.phases:
			if halted_after is not None:
				self._skip_phase(phase, halted_after)
				continue

			self._transition(SchedulerState.PHASE_RUNNING, phase.index)
			outcome = await self.phase_runner.execute(
				phase,
				run_node,
				tree_path=self.tree_path,
				on_dispatch=self.on_dispatch,
				on_result=self._record,
			)

			if outcome.halted:
				culprits = ", ".join(r.task_id for r in outcome.blocking_failures)
				logger.warning(
					f"{self.tree_path} halted after phase {phase.index}: blocking failure in {culprits}"
				)
				halted_after = phase.index
				self._transition(SchedulerState.FAILED, phase.index)

		if halted_after is None:
			self._transition(SchedulerState.COMPLETED, self.current_phase)
			logger.info(f"{self.tree_path} completed")

		return self.results

	def spawn_child(self, task_id: str) -> "Scheduler":
		"""Create the scheduler for a recursive task's sub-tree."""
		return Scheduler(
			self.registry,
			max_depth=self.max_depth,
			max_concurrency=self.phase_runner.max_concurrency,
			task_timeout=self.phase_runner.task_timeout,
			workdir=self.workdir,
			expander=self.expander,
			tree_path=f"{self.tree_path}/{task_id}",
			depth=self.depth + 1,
			on_dispatch=self.on_dispatch,
			on_result=self._record,
		)

	def _check_tree(self, tree: PlanTree) -> None:
		"""Fail fast on trees that bypassed the parser's invariants."""
		deepest = self.depth + tree.nesting_depth()
		if deepest > self.max_depth:
			raise ParseError(
				f"Sub-plan nesting depth {deepest} exceeds the maximum of {self.max_depth}",
				tree_path=self.tree_path,
			)
		for path, sub in tree.walk(self.tree_path):
			for node in sub.tasks():
				if node.recursive and node.id not in sub.subtrees:
					raise ParseError("Recursive task has no matching sub-plan", node_id=node.id, tree_path=path)

	def _skip_phase(self, phase: Phase, halted_after: int) -> None:
		for node in phase.tasks:
			self._record(ExecutionResult(
				task_id=node.id,
				tree_path=self.tree_path,
				phase=node.phase,
				state=TaskState.SKIPPED,
				blocking=node.blocking,
				error=f"Not dispatched: {self.tree_path} halted after phase {halted_after}",
			))

	def _record(self, result: ExecutionResult) -> None:
		self._log.append(result)
		if self.on_result:
			try:
				self.on_result(result)
			except Exception as e:
				logger.warning(f"on_result callback failed for {result.qualified_id}: {e}")

	def _transition(self, state: SchedulerState, phase: Optional[int]) -> None:
		self.state = state
		self.current_phase = phase
		self.transitions.append((state, phase))
		logger.debug(f"{self.tree_path} -> {state.value} (phase {phase})")
