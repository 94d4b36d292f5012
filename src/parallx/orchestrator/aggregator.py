"""
Result Aggregator - Conflict detection and report assembly.

Claims are checked per phase, per tree: exactly one Conflict is
reported for each pair of tasks in the same phase whose file claims
overlap. A recursive task claims its own files plus every file claimed
anywhere in its sub-tree, since that whole sub-tree runs alongside the
task's siblings.

find_conflicts() is meant to run before dispatch. After a run, the
aggregator also compares what tasks actually touched, which can only
document a violation that already happened.
"""

import itertools
import logging
from datetime import datetime
from typing import Iterable, Optional

from ..plans.models import (
	ROOT_PATH,
	Conflict,
	ExecutionReport,
	ExecutionResult,
	PlanTree,
	RunStatus,
	ScopeViolation,
	TaskNode,
	TaskState,
	VerificationRecord,
)

logger = logging.getLogger(__name__)


def claim_set(node: TaskNode, tree: PlanTree) -> frozenset[str]:
	"""Every file a task claims, including its sub-tree's claims if recursive."""
	claims = set(node.files)
	if node.recursive and node.id in tree.subtrees:
		for _, sub in tree.subtrees[node.id].walk():
			for child in sub.tasks():
				claims.update(child.files)
	return frozenset(claims)


def find_conflicts(tree: PlanTree, path: str = ROOT_PATH) -> list[Conflict]:
	"""
	Pre-flight check of declared file claims.

	Returns:
		One Conflict per overlapping pair of tasks in the same phase of the same tree
	"""
	conflicts: list[Conflict] = []
	for tree_path, sub in tree.walk(path):
		for phase in sub.phases:
			claims = [(node.id, claim_set(node, sub)) for node in phase.tasks]
			for (a_id, a_claims), (b_id, b_claims) in itertools.combinations(claims, 2):
				overlap = a_claims & b_claims
				if overlap:
					conflicts.append(Conflict(
						tree_path=tree_path,
						phase=phase.index,
						tasks=(a_id, b_id),
						paths=tuple(sorted(overlap)),
					))

	if conflicts:
		logger.warning(f"Detected {len(conflicts)} file conflict(s) in plan '{tree.name}'")
	return conflicts


def find_artifact_conflicts(results: Iterable[ExecutionResult]) -> list[Conflict]:
	"""Pairs of tasks in the same tree and phase that touched the same files."""
	groups: dict[tuple[str, int], list[ExecutionResult]] = {}
	for result in results:
		if result.artifacts:
			groups.setdefault((result.tree_path, result.phase), []).append(result)

	conflicts: list[Conflict] = []
	for (tree_path, phase), members in groups.items():
		for a, b in itertools.combinations(members, 2):
			overlap = set(a.artifacts) & set(b.artifacts)
			if overlap:
				conflicts.append(Conflict(
					tree_path=tree_path,
					phase=phase,
					tasks=(a.task_id, b.task_id),
					paths=tuple(sorted(overlap)),
				))
	return conflicts


def find_scope_violations(
	tree: PlanTree,
	results: Iterable[ExecutionResult],
) -> list[ScopeViolation]:
	"""Tasks that touched files they never declared."""
	trees = dict(tree.walk())
	violations: list[ScopeViolation] = []

	for result in results:
		if not result.artifacts:
			continue
		sub = trees.get(result.tree_path)
		node = sub.get_task(result.task_id) if sub else None
		# Recursive tasks report their children's work, checked per child
		if node is None or node.recursive:
			continue
		undeclared = sorted(set(result.artifacts) - set(node.files))
		if undeclared:
			violations.append(ScopeViolation(
				tree_path=result.tree_path,
				task_id=result.task_id,
				paths=tuple(undeclared),
			))

	return violations


def merge_conflicts(*groups: Iterable[Conflict]) -> list[Conflict]:
	"""Combine conflict lists, one entry per (tree, phase, task pair)."""
	merged: dict[tuple, Conflict] = {}
	for conflict in itertools.chain(*groups):
		key = (conflict.tree_path, conflict.phase, frozenset(conflict.tasks))
		existing = merged.get(key)
		if existing is None:
			merged[key] = conflict
		else:
			merged[key] = existing.model_copy(update={
				"paths": tuple(sorted(set(existing.paths) | set(conflict.paths))),
			})
	return list(merged.values())


class ResultAggregator:
	"""
	Collects per-task outcomes of one run into an ExecutionReport.

	Usage:
		aggregator = ResultAggregator(tree)
		report = aggregator.build_report(run_id, results, RunStatus.COMPLETED)
	"""

	def __init__(self, tree: PlanTree):
		self.tree = tree

	def summarize(self, results: list[ExecutionResult]) -> dict:
		"""Counts per terminal state plus the files touched."""
		counts = {state.value: 0 for state in TaskState}
		touched: set[str] = set()
		for result in results:
			counts[result.state.value] += 1
			touched.update(result.artifacts)
		return {
			"total": len(results),
			**counts,
			"files_touched": sorted(touched),
		}

	def post_hoc_conflicts(self, results: list[ExecutionResult]) -> list[Conflict]:
		"""Declared-claim conflicts plus overlaps in what tasks actually touched."""
		return merge_conflicts(find_conflicts(self.tree), find_artifact_conflicts(results))

	def build_report(
		self,
		report_id: str,
		results: list[ExecutionResult],
		status: RunStatus,
		started_at: Optional[str] = None,
		conflicts: Optional[list[Conflict]] = None,
		verification: Optional[VerificationRecord] = None,
		error: Optional[str] = None,
	) -> ExecutionReport:
		"""Assemble the report handed back to the caller."""
		summary = self.summarize(results)
		logger.info(
			f"Run {report_id} {status.value}: {summary['succeeded']} succeeded, "
			f"{summary['failed']} failed, {summary['skipped']} skipped, "
			f"{len(summary['files_touched'])} files touched"
		)

		return ExecutionReport(
			id=report_id,
			plan_name=self.tree.name,
			status=status,
			results=list(results),
			conflicts=list(conflicts or []),
			scope_violations=find_scope_violations(self.tree, results),
			verification=verification,
			error=error,
			started_at=started_at or datetime.now().isoformat(),
			finished_at=datetime.now().isoformat(),
		)
