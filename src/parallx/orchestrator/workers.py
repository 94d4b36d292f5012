"""
Workers - The boundary between the scheduler and the agent runtime.

A worker handler is an async callable taking the TaskNode and a
WorkContext. It returns a TaskOutcome (or None) on success and raises
on failure; raising TaskFailure lets the handler decide whether the
failure is blocking.

Handlers are looked up by WorkerType, once per run, before anything is
dispatched. Recursive tasks never reach a handler; they are expanded
into child schedulers instead.
"""

import asyncio
import contextlib
import hashlib
import logging
import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional

from ..errors import TaskFailure, WorkerNotRegisteredError
from ..plans.models import PlanTree, TaskNode, WorkerType

logger = logging.getLogger(__name__)


@dataclass
class WorkContext:
	"""Where and at what depth a task is being executed."""
	tree_path: str
	depth: int
	workdir: Path


@dataclass
class TaskOutcome:
	"""What a successful task reports back."""
	artifacts: list[str] = field(default_factory=list)
	summary: str = ""


WorkerHandler = Callable[[TaskNode, WorkContext], Awaitable[Optional[TaskOutcome]]]


class WorkerRegistry:
	"""
	Maps worker types to handlers.

	Usage:
		registry = WorkerRegistry(default=DryRunWorker())
		registry.register(WorkerType.BACKEND, AgentCommandWorker("claude -p"))
	"""

	def __init__(self, default: Optional[WorkerHandler] = None):
		"""
		Initialize the registry.

		Args:
			default: Handler used for worker types without a dedicated one
		"""
		self.default = default
		self._handlers: dict[WorkerType, WorkerHandler] = {}

	def register(self, worker: WorkerType, handler: WorkerHandler) -> None:
		"""Bind a handler to a worker type."""
		if worker == WorkerType.RECURSIVE:
			raise ValueError("Recursive tasks are expanded into sub-plans, not handled by workers")
		self._handlers[worker] = handler

	def resolve(self, worker: WorkerType) -> WorkerHandler:
		"""Get the handler for a worker type."""
		handler = self._handlers.get(worker, self.default)
		if handler is None:
			raise WorkerNotRegisteredError(f"No handler registered for worker type '{worker.value}'")
		return handler

	def bind(self, tree: PlanTree) -> dict[str, WorkerHandler]:
		"""
		Resolve handlers for every task of a tree.

		Nested sub-trees are checked too, so a missing handler is reported
		before the first phase starts rather than halfway through a run.

		Returns:
			Dict mapping task ID to handler, for this tree's non-recursive tasks
		"""
		for _, sub in tree.walk():
			for node in sub.tasks():
				if not node.recursive:
					self.resolve(node.worker)

		return {
			node.id: self.resolve(node.worker)
			for node in tree.tasks()
			if not node.recursive
		}


class DryRunWorker:
	"""Logs the task and succeeds without touching anything."""

	def __init__(self, delay: float = 0.0):
		self.delay = delay

	async def __call__(self, node: TaskNode, context: WorkContext) -> TaskOutcome:
		logger.info(f"[dry-run] {context.tree_path}/{node.id} ({node.worker.value}): {node.scope}")
		if self.delay:
			await asyncio.sleep(self.delay)
		return TaskOutcome(summary=f"dry run: {node.scope}")


def snapshot_files(workdir: Path, paths: tuple[str, ...]) -> dict[str, Optional[str]]:
	"""Content hash of each path (None when the file does not exist)."""
	snapshot: dict[str, Optional[str]] = {}
	for rel in paths:
		target = workdir / rel
		if target.is_file():
			snapshot[rel] = hashlib.sha256(target.read_bytes()).hexdigest()
		else:
			snapshot[rel] = None
	return snapshot


class AgentCommandWorker:
	"""
	Runs an external agent CLI for each task.

	The task prompt is written to the command's stdin. Declared files
	whose content changed during the run are reported as artifacts.
	"""

	def __init__(
		self,
		command: str,
		timeout: Optional[float] = 1800,
		output_limit: int = 2000,
	):
		"""
		Initialize the worker.

		Args:
			command: Agent command line, e.g. "claude -p"
			timeout: Seconds before the agent is killed (None = no limit)
			output_limit: Characters of output kept in summaries/errors
		"""
		self.command = command
		self.timeout = timeout
		self.output_limit = output_limit

	def build_prompt(self, node: TaskNode, context: WorkContext) -> str:
		"""Generate the prompt handed to the agent."""
		parts = [
			f"# Task: {node.id}",
			"",
			f"Worker: {node.worker.value}",
			f"Plan: {context.tree_path}",
			"",
			"## Scope",
			node.scope,
			"",
		]

		if node.files:
			parts.append("## Files you own")
			for path in node.files:
				parts.append(f"- {path}")
			parts.append("")
			parts.append("Only modify the files listed above; other tasks own everything else.")
			parts.append("")

		if node.depends_on:
			parts.append("## Builds on")
			parts.append(", ".join(node.depends_on))
			parts.append("")

		parts.append("When done, summarize what was changed.")
		return "\n".join(parts)

	async def __call__(self, node: TaskNode, context: WorkContext) -> TaskOutcome:
		cmd = shlex.split(self.command)
		if not cmd:
			raise TaskFailure("Agent command is empty", task_id=node.id)
		if not context.workdir.is_dir():
			raise TaskFailure(f"Working directory does not exist: {context.workdir}", task_id=node.id)

		before = snapshot_files(context.workdir, node.files)
		env = {
			**os.environ,
			"PARALLX_TASK_ID": node.id,
			"PARALLX_WORKER": node.worker.value,
			"PARALLX_TREE_PATH": context.tree_path,
			"PARALLX_FILES": ",".join(node.files),
		}
		prompt = self.build_prompt(node, context)

		try:
			proc = await asyncio.create_subprocess_exec(
				*cmd,
				stdin=asyncio.subprocess.PIPE,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.STDOUT,
				cwd=str(context.workdir),
				env=env,
			)
		except FileNotFoundError as e:
			raise TaskFailure(f"Agent command not found: {cmd[0]} ({e})", task_id=node.id) from None

		try:
			stdout, _ = await asyncio.wait_for(
				proc.communicate(prompt.encode("utf-8")),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError:
			raise TaskFailure(f"Agent timed out after {self.timeout}s", task_id=node.id) from None
		finally:
			# Also reached when the caller cancels us, e.g. a task timeout
			if proc.returncode is None:
				with contextlib.suppress(ProcessLookupError):
					proc.kill()
				await proc.wait()

		output = stdout.decode("utf-8", errors="replace")
		tail = output[-self.output_limit:].strip()

		if proc.returncode != 0:
			raise TaskFailure(f"Agent exited with code {proc.returncode}: {tail}", task_id=node.id)

		after = snapshot_files(context.workdir, node.files)
		changed = [path for path in node.files if before.get(path) != after.get(path)]
		logger.debug(f"Agent finished {context.tree_path}/{node.id}; changed: {changed}")

		return TaskOutcome(artifacts=changed, summary=tail)
