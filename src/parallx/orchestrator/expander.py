"""
Recursive Expander - Runs recursive tasks as nested sub-plans.

A recursive task is never handed to a worker. The expander spawns a
child scheduler one level deeper, runs the task's sub-tree with it and
maps the child's overall outcome onto the parent task:

- child completed -> task succeeded, artifacts = everything the child touched
- child failed    -> a single TaskFailure for the parent task

Depth is bounded at parse time; the scheduler re-checks it before
dispatch, so nothing here can recurse without limit.
"""

import logging
from typing import TYPE_CHECKING, Optional

from ..errors import TaskFailure
from ..plans.models import PlanTree, TaskNode, TaskState
from .verifier import Verifier
from .workers import TaskOutcome

if TYPE_CHECKING:
	from .scheduler import Scheduler

logger = logging.getLogger(__name__)


class RecursiveExpander:
	"""Instantiates child schedulers for recursive tasks."""

	def __init__(self, verifier: Optional[Verifier] = None):
		"""
		Initialize the expander.

		Args:
			verifier: Runs a sub-tree's own verify command once it completes
				(sub-tree verify commands are skipped without one)
		"""
		self.verifier = verifier

	async def expand(
		self,
		node: TaskNode,
		subtree: PlanTree,
		parent: "Scheduler",
	) -> TaskOutcome:
		"""
		Run a recursive task's sub-tree.

		Args:
			node: The recursive task
			subtree: Its sub-tree
			parent: Scheduler running the task's own tree

		Returns:
			TaskOutcome with the union of the child's artifacts

		Raises:
			TaskFailure: If the sub-tree failed or its verification failed
		"""
		child = parent.spawn_child(node.id)
		logger.info(
			f"Expanding {parent.tree_path}/{node.id} into sub-plan '{subtree.name}' "
			f"(depth {child.depth})"
		)

		results = await child.run(subtree)

		if child.failed:
			culprits = [
				r.task_id for r in results
				if r.tree_path == child.tree_path and r.is_blocking_failure
			]
			raise TaskFailure(
				f"Sub-plan {child.tree_path} failed: blocking failure in {', '.join(culprits)}",
				task_id=node.id,
				tree_path=parent.tree_path,
			)

		artifacts = sorted({
			path
			for r in results
			if r.state == TaskState.SUCCEEDED
			for path in r.artifacts
		})

		if subtree.verify:
			if self.verifier is None:
				logger.warning(f"No verifier configured; skipping verify for {child.tree_path}")
			else:
				record = await self.verifier.verify(subtree.verify)
				if not record.passed:
					raise TaskFailure(
						f"Sub-plan {child.tree_path} verification failed "
						f"({record.status.value}, exit {record.exit_code}): {subtree.verify}",
						task_id=node.id,
						tree_path=parent.tree_path,
					)

		succeeded = sum(1 for r in results if r.state == TaskState.SUCCEEDED)
		return TaskOutcome(
			artifacts=artifacts,
			summary=f"sub-plan {child.tree_path}: {succeeded}/{len(results)} tasks succeeded",
		)
