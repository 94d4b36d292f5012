"""
Error taxonomy for plan parsing and execution.

- ParseError: malformed plan, raised before anything is dispatched
- ConflictError: two tasks in one phase claim the same file
- TaskFailure: a single unit of work did not complete
- VerificationFailure: the post-run build/test command failed
"""

from typing import Optional


class ParallxError(Exception):
	"""Base class for all parallx errors."""
	pass


class ParseError(ParallxError):
	"""Raised when a plan document cannot be turned into a valid PlanTree."""

	def __init__(
		self,
		message: str,
		node_id: Optional[str] = None,
		tree_path: Optional[str] = None,
	):
		self.message = message
		self.node_id = node_id
		self.tree_path = tree_path
		location = ""
		if tree_path and node_id:
			location = f"[{tree_path}:{node_id}] "
		elif tree_path:
			location = f"[{tree_path}] "
		elif node_id:
			location = f"[{node_id}] "
		super().__init__(f"{location}{message}")


class ConflictError(ParallxError):
	"""Raised when tasks scheduled in the same phase claim overlapping files."""

	def __init__(self, conflicts: list):
		self.conflicts = list(conflicts)
		lines = [f"{len(self.conflicts)} file conflict(s) detected"]
		for conflict in self.conflicts:
			lines.append(f"  - {conflict.describe()}")
		super().__init__("\n".join(lines))


class TaskFailure(ParallxError):
	"""
	Raised by workers (or the expander) when a task did not complete.

	blocking=None leaves the classification to the task's own policy.
	"""

	def __init__(
		self,
		message: str,
		task_id: Optional[str] = None,
		blocking: Optional[bool] = None,
		tree_path: Optional[str] = None,
	):
		self.message = message
		self.task_id = task_id
		self.blocking = blocking
		self.tree_path = tree_path
		super().__init__(message)


class VerificationFailure(ParallxError):
	"""Raised when the verification command of a completed run failed."""

	def __init__(self, record):
		self.record = record
		super().__init__(
			f"Verification command failed ({record.status.value}, exit {record.exit_code}): {record.command}"
		)


class WorkerNotRegisteredError(ParallxError):
	"""Raised when a plan uses a worker type with no handler bound to it."""
	pass
