"""
Plan Runner - One plan document in, one execution report out.

Pipeline:
1. Parse (ParseError aborts before anything runs)
2. Pre-flight conflict check (conflicts fail the run with zero dispatches)
3. Schedule the tree phase by phase, expanding recursive tasks
4. Aggregate results, post-hoc conflicts and undeclared writes
5. Run the verification command once, if the tree completed
"""

import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, Union

from ..config import Config
from ..plans.models import (
	ROOT_PATH,
	ExecutionReport,
	ExecutionResult,
	PlanTree,
	RunStatus,
	TaskNode,
	TaskState,
)
from ..plans.parser import PlanParser
from ..plans.store import ReportStore
from .aggregator import ResultAggregator, find_artifact_conflicts, find_conflicts
from .expander import RecursiveExpander
from .scheduler import Scheduler
from .verifier import Verifier
from .workers import WorkerRegistry

logger = logging.getLogger(__name__)


class PlanRunner:
	"""
	Runs plans end to end.

	Usage:
		runner = PlanRunner(WorkerRegistry(default=DryRunWorker()), config=load_config())
		report = await runner.run_file("plan.yaml")
		report.raise_for_status()
	"""

	def __init__(
		self,
		registry: WorkerRegistry,
		config: Optional[Config] = None,
		workdir: Optional[Union[str, Path]] = None,
		store: Optional[ReportStore] = None,
		on_dispatch: Optional[Callable[[TaskNode], None]] = None,
		on_result: Optional[Callable[[ExecutionResult], None]] = None,
	):
		"""
		Initialize the runner.

		Args:
			registry: Worker handlers by worker type
			config: Scheduling and verification settings
			workdir: Directory workers and verification run in (default: cwd)
			store: Where finished reports are saved (optional)
			on_dispatch: Callback right before each task starts
			on_result: Callback as each task reaches a terminal state
		"""
		self.registry = registry
		self.config = config or Config()
		self.workdir = Path(workdir) if workdir else Path.cwd()
		self.store = store
		self.on_dispatch = on_dispatch
		self.on_result = on_result
		self.parser = PlanParser(max_depth=self.config.max_depth)

	async def run_file(
		self,
		path: Union[str, Path],
		verify_command: Optional[str] = None,
	) -> ExecutionReport:
		"""Parse a plan file and run it."""
		return await self.run(self.parser.parse_file(path), verify_command=verify_command)

	async def run_document(
		self,
		document: Union[Mapping[str, Any], str],
		verify_command: Optional[str] = None,
	) -> ExecutionReport:
		"""Parse a plan document and run it."""
		return await self.run(self.parser.parse(document), verify_command=verify_command)

	async def run(
		self,
		tree: PlanTree,
		verify_command: Optional[str] = None,
	) -> ExecutionReport:
		"""
		Run a parsed plan.

		Args:
			tree: Plan to execute
			verify_command: Overrides the plan's and the config's verify command

		Returns:
			ExecutionReport (status completed, failed or verification_failed)
		"""
		report_id = uuid.uuid4().hex[:12]
		started_at = datetime.now().isoformat()
		aggregator = ResultAggregator(tree)

		conflicts = find_conflicts(tree)
		if conflicts:
			logger.error(f"Run {report_id}: {len(conflicts)} file conflict(s); nothing dispatched")
			report = aggregator.build_report(
				report_id,
				self._skip_all(tree, "Not dispatched: file conflicts detected before dispatch"),
				RunStatus.FAILED,
				started_at=started_at,
				conflicts=conflicts,
				error=f"{len(conflicts)} file conflict(s) detected before dispatch",
			)
			await self._save(report)
			return report

		verifier = Verifier(project_path=self.workdir, timeout=self.config.verify_timeout)
		scheduler = Scheduler(
			self.registry,
			max_depth=self.config.max_depth,
			max_concurrency=self.config.max_concurrency,
			task_timeout=self.config.task_timeout,
			workdir=self.workdir,
			expander=RecursiveExpander(verifier=verifier),
			on_dispatch=self.on_dispatch,
			on_result=self.on_result,
		)

		logger.info(f"Run {report_id}: starting plan '{tree.name}'")
		results = await scheduler.run(tree)

		if scheduler.failed:
			culprits = [
				r.task_id for r in results
				if r.tree_path == ROOT_PATH and r.is_blocking_failure
			]
			report = aggregator.build_report(
				report_id,
				results,
				RunStatus.FAILED,
				started_at=started_at,
				conflicts=find_artifact_conflicts(results),
				error=f"Blocking failure in {', '.join(culprits)}",
			)
			await self._save(report)
			return report

		command = verify_command or tree.verify or self.config.verify_command
		verification = await verifier.verify(command) if command else None
		if verification is None or verification.passed:
			status = RunStatus.COMPLETED
		else:
			status = RunStatus.VERIFICATION_FAILED

		report = aggregator.build_report(
			report_id,
			results,
			status,
			started_at=started_at,
			conflicts=aggregator.post_hoc_conflicts(results),
			verification=verification,
		)
		await self._save(report)
		return report

	def _skip_all(self, tree: PlanTree, reason: str) -> list[ExecutionResult]:
		return [
			ExecutionResult(
				task_id=node.id,
				tree_path=path,
				phase=node.phase,
				state=TaskState.SKIPPED,
				blocking=node.blocking,
				error=reason,
			)
			for path, sub in tree.walk()
			for node in sub.tasks()
		]

	async def _save(self, report: ExecutionReport) -> None:
		if self.store:
			await self.store.save_report(report)
