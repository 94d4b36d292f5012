"""
Phase Runner - Fan-out/fan-in execution of a single phase.

Every task of the phase is dispatched concurrently (optionally bounded
by a semaphore) and the runner returns only after each one has reached
a terminal state. That return is the phase barrier.

When a task fails in a blocking way, siblings that are already running
are left to drain. Siblings still waiting for a concurrency slot are
never started and come back as skipped.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

from ..errors import TaskFailure
from ..plans.models import ROOT_PATH, ExecutionResult, Phase, TaskNode, TaskState
from ..plans.parser import normalize_path
from .workers import TaskOutcome

logger = logging.getLogger(__name__)

NodeRunner = Callable[[TaskNode], Awaitable[Optional[TaskOutcome]]]


@dataclass
class PhaseOutcome:
	"""Results of one phase, in the order tasks reached a terminal state."""
	index: int
	results: list[ExecutionResult] = field(default_factory=list)

	@property
	def blocking_failures(self) -> list[ExecutionResult]:
		return [r for r in self.results if r.is_blocking_failure]

	@property
	def halted(self) -> bool:
		"""Whether a blocking failure stops the tree after this phase."""
		return bool(self.blocking_failures)

	@property
	def succeeded(self) -> int:
		return sum(1 for r in self.results if r.state == TaskState.SUCCEEDED)

	@property
	def failed(self) -> int:
		return sum(1 for r in self.results if r.state == TaskState.FAILED)


class PhaseRunner:
	"""
	Runs the tasks of one phase concurrently.

	Individual failures are captured as results; nothing raised by a
	task escapes the runner.
	"""

	def __init__(
		self,
		max_concurrency: Optional[int] = None,
		task_timeout: Optional[float] = None,
	):
		"""
		Initialize the phase runner.

		Args:
			max_concurrency: Maximum tasks running at once (None = whole phase)
			task_timeout: Seconds before a task counts as failed (None = no limit)
		"""
		self.max_concurrency = max_concurrency
		self.task_timeout = task_timeout

	async def execute(
		self,
		phase: Phase,
		run_node: NodeRunner,
		tree_path: str = ROOT_PATH,
		on_dispatch: Optional[Callable[[TaskNode], None]] = None,
		on_result: Optional[Callable[[ExecutionResult], None]] = None,
	) -> PhaseOutcome:
		"""
		Execute every task of a phase.

		Args:
			phase: Phase to run
			run_node: Async function performing one task
			tree_path: Path of the tree the phase belongs to
			on_dispatch: Optional callback right before a task starts
			on_result: Optional callback as each task reaches a terminal state

		Returns:
			PhaseOutcome with a result for every task
		"""
		outcome = PhaseOutcome(index=phase.index)
		if not phase.tasks:
			return outcome

		semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
		halted = asyncio.Event()

		async def process_node(node: TaskNode) -> None:
			# Only a task that has to wait for a slot counts as not yet dispatched
			queued = semaphore is not None and semaphore.locked()
			async with semaphore or contextlib.nullcontext():
				result = await self._run_node(node, run_node, tree_path, halted, queued, on_dispatch)

			outcome.results.append(result)

			if on_result:
				try:
					on_result(result)
				except Exception as e:
					logger.warning(f"on_result callback failed for {tree_path}/{node.id}: {e}")

		# Fan out
		tasks = [asyncio.create_task(process_node(node)) for node in phase.tasks]
		# Fan in: the barrier
		await asyncio.gather(*tasks)

		logger.info(
			f"{tree_path} phase {phase.index} drained: "
			f"{outcome.succeeded} succeeded, {outcome.failed} failed"
		)
		return outcome

	async def _run_node(
		self,
		node: TaskNode,
		run_node: NodeRunner,
		tree_path: str,
		halted: asyncio.Event,
		queued: bool,
		on_dispatch: Optional[Callable[[TaskNode], None]],
	) -> ExecutionResult:
		if queued and halted.is_set():
			return ExecutionResult(
				task_id=node.id,
				tree_path=tree_path,
				phase=node.phase,
				state=TaskState.SKIPPED,
				blocking=node.blocking,
				error=f"Not dispatched: blocking failure earlier in phase {node.phase}",
			)

		if on_dispatch:
			try:
				on_dispatch(node)
			except Exception as e:
				logger.warning(f"on_dispatch callback failed for {tree_path}/{node.id}: {e}")

		logger.debug(f"Dispatching {tree_path}/{node.id} ({node.worker.value})")
		started_at = datetime.now().isoformat()
		start = time.monotonic()
		error: Optional[str] = None
		blocking = node.blocking
		artifacts: tuple[str, ...] = ()

		try:
			# Sub-plans are bounded by their own tasks' timeouts
			if self.task_timeout and not node.recursive:
				task_outcome = await asyncio.wait_for(run_node(node), timeout=self.task_timeout)
			else:
				task_outcome = await run_node(node)
			if task_outcome:
				artifacts = tuple(sorted({
					normalize_path(a) for a in task_outcome.artifacts if a.strip()
				}))
		except TaskFailure as e:
			error = e.message
			if e.blocking is not None:
				blocking = e.blocking
		except asyncio.TimeoutError:
			error = f"Timed out after {self.task_timeout}s"
		except Exception as e:
			error = f"{type(e).__name__}: {e}"

		duration = time.monotonic() - start

		if error is not None:
			kind = "blocking" if blocking else "non-blocking"
			logger.warning(f"Task {tree_path}/{node.id} failed ({kind}): {error}")
			if blocking:
				halted.set()
			return ExecutionResult(
				task_id=node.id,
				tree_path=tree_path,
				phase=node.phase,
				state=TaskState.FAILED,
				error=error,
				blocking=blocking,
				started_at=started_at,
				duration_seconds=duration,
			)

		logger.info(f"Task {tree_path}/{node.id} succeeded in {duration:.2f}s")
		return ExecutionResult(
			task_id=node.id,
			tree_path=tree_path,
			phase=node.phase,
			state=TaskState.SUCCEEDED,
			artifacts=artifacts,
			blocking=blocking,
			started_at=started_at,
			duration_seconds=duration,
		)
