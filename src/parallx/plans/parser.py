"""
Plan Parser - Converts a phased plan document into a validated PlanTree.

Accepted layouts (YAML or JSON, or an already-loaded mapping):

	phases:                       tasks:
	  - phase: 1                    - id: A
	    tasks: [{id: A, ...}]         phase: 1
	  - phase: 2                      ...
	    tasks: [...]
	subplans:
	  D: {phases: [...]}

Validation is done entirely here, before anything is dispatched:
- every task has an id, a known worker type, a scope and exactly one phase
- phase numbers are contiguous starting at 1
- depends_on only points at tasks in strictly earlier phases
- every recursive task has exactly one sub-plan, and vice versa
- sub-plan nesting does not exceed max_depth (2 by default)
"""

import logging
import posixpath
from pathlib import Path
from typing import Any, Mapping, Optional, Union

import yaml

from ..errors import ConflictError, ParseError
from .models import ROOT_PATH, Phase, PlanTree, TaskNode, WorkerType

logger = logging.getLogger(__name__)

MAX_DEPTH = 2


def normalize_path(path: str) -> str:
	"""Normalize a claimed file path to POSIX form ('./a//b' -> 'a/b')."""
	cleaned = path.strip().replace("\\", "/")
	if not cleaned:
		raise ValueError("empty path")
	return posixpath.normpath(cleaned)


class PlanParser:
	"""
	Parses plan documents into immutable PlanTrees.

	Usage:
		parser = PlanParser()
		tree = parser.parse_file("plan.yaml")
		parser.validate(tree)  # raises ConflictError on overlapping claims
	"""

	def __init__(self, max_depth: int = MAX_DEPTH):
		"""
		Initialize the parser.

		Args:
			max_depth: Deepest allowed sub-plan nesting (root tree is depth 0)
		"""
		if max_depth < 0:
			raise ValueError("max_depth must be >= 0")
		self.max_depth = max_depth

	def parse(self, document: Union[Mapping[str, Any], str]) -> PlanTree:
		"""
		Parse a plan document.

		Args:
			document: Mapping, or YAML/JSON text

		Returns:
			Validated PlanTree

		Raises:
			ParseError: If the document is malformed
		"""
		if isinstance(document, str):
			document = self._load_text(document)

		tree = self._parse_tree(document, name=None, depth=0, path=ROOT_PATH)
		logger.info(
			f"Parsed plan '{tree.name}': {tree.phase_count} phases, "
			f"{tree.total_task_count()} tasks, nesting depth {tree.nesting_depth()}"
		)
		return tree

	def parse_file(self, path: Union[str, Path]) -> PlanTree:
		"""Parse a plan document from a YAML or JSON file."""
		path = Path(path)
		try:
			text = path.read_text()
		except OSError as e:
			raise ParseError(f"Cannot read plan file {path}: {e}") from e

		document = self._load_text(text, source=str(path))
		if isinstance(document, dict) and not document.get("name"):
			document["name"] = path.stem
		return self.parse(document)

	def validate(self, tree: PlanTree) -> PlanTree:
		"""
		Pre-flight conflict check.

		Raises:
			ConflictError: If two tasks in one phase claim the same file
		"""
		from ..orchestrator.aggregator import find_conflicts

		conflicts = find_conflicts(tree)
		if conflicts:
			raise ConflictError(conflicts)
		return tree

	def _load_text(self, text: str, source: str = "<string>") -> Any:
		try:
			return yaml.safe_load(text)
		except yaml.YAMLError as e:
			raise ParseError(f"Invalid YAML in {source}: {e}") from e

	def _parse_tree(
		self,
		document: Any,
		name: Optional[str],
		depth: int,
		path: str,
	) -> PlanTree:
		if depth > self.max_depth:
			raise ParseError(
				f"Sub-plan nesting depth {depth} exceeds the maximum of {self.max_depth}",
				tree_path=path,
			)
		if not isinstance(document, Mapping):
			raise ParseError("Plan document must be a mapping", tree_path=path)

		nodes: list[TaskNode] = []
		inline_subplans: dict[str, Any] = {}
		seen: set[str] = set()

		for position, (raw, phase_index) in enumerate(self._collect_tasks(document, path)):
			node, inline = self._parse_task(raw, phase_index, position, path)
			if node.id in seen:
				raise ParseError("Duplicate task id", node_id=node.id, tree_path=path)
			seen.add(node.id)
			nodes.append(node)
			if inline is not None:
				inline_subplans[node.id] = inline

		self._check_phase_numbers(nodes, path)
		self._check_dependencies(nodes, path)
		subtrees = self._parse_subtrees(document, nodes, inline_subplans, depth, path)

		phase_count = max(n.phase for n in nodes)
		phases = tuple(
			Phase(index=i, tasks=tuple(n for n in nodes if n.phase == i))
			for i in range(1, phase_count + 1)
		)

		verify = document.get("verify")
		if verify is not None and (not isinstance(verify, str) or not verify.strip()):
			raise ParseError("'verify' must be a non-empty command string", tree_path=path)

		return PlanTree(
			name=str(document.get("name") or name or "plan"),
			depth=depth,
			phases=phases,
			verify=verify.strip() if verify else None,
			subtrees=subtrees,
		)

	def _collect_tasks(self, document: Mapping, path: str) -> list[tuple[Any, int]]:
		"""Flatten either layout into (raw task, phase number) pairs."""
		phases = document.get("phases")
		tasks = document.get("tasks")
		collected: list[tuple[Any, int]] = []

		if phases is not None and tasks is not None:
			raise ParseError("Use either 'phases' or a flat 'tasks' list, not both", tree_path=path)

		if phases is not None:
			if not isinstance(phases, list) or not phases:
				raise ParseError("'phases' must be a non-empty list", tree_path=path)
			defined: set[int] = set()
			for position, raw_phase in enumerate(phases, start=1):
				if not isinstance(raw_phase, Mapping):
					raise ParseError(f"Phase entry {position} must be a mapping", tree_path=path)
				index = self._phase_number(raw_phase.get("phase", position), f"phase {position}", path)
				if index in defined:
					raise ParseError(f"Phase {index} is defined more than once", tree_path=path)
				defined.add(index)

				raw_tasks = raw_phase.get("tasks")
				if not isinstance(raw_tasks, list) or not raw_tasks:
					raise ParseError(f"Phase {index} has no tasks", tree_path=path)
				for raw in raw_tasks:
					if isinstance(raw, Mapping) and "phase" in raw:
						declared = self._phase_number(raw["phase"], raw.get("id"), path)
						if declared != index:
							raise ParseError(
								f"Task declares phase {declared} but is listed under phase {index}",
								node_id=str(raw.get("id")),
								tree_path=path,
							)
					collected.append((raw, index))
			return collected

		if tasks is not None:
			if not isinstance(tasks, list) or not tasks:
				raise ParseError("'tasks' must be a non-empty list", tree_path=path)
			for position, raw in enumerate(tasks, start=1):
				if not isinstance(raw, Mapping):
					raise ParseError(f"Task entry {position} must be a mapping", tree_path=path)
				label = str(raw.get("id") or f"#{position}")
				if "phase" not in raw:
					raise ParseError("Task has no phase", node_id=label, tree_path=path)
				collected.append((raw, self._phase_number(raw["phase"], label, path)))
			return collected

		raise ParseError("Plan has no phases", tree_path=path)

	def _phase_number(self, value: Any, node_id: Optional[str], path: str) -> int:
		if isinstance(value, bool) or not isinstance(value, int) or value < 1:
			raise ParseError(
				f"Invalid phase number {value!r} (expected an integer >= 1)",
				node_id=str(node_id) if node_id is not None else None,
				tree_path=path,
			)
		return value

	def _parse_task(
		self,
		raw: Any,
		phase: int,
		position: int,
		path: str,
	) -> tuple[TaskNode, Any]:
		"""Parse one task entry. Returns the node and its inline sub-plan (if any)."""
		if not isinstance(raw, Mapping):
			raise ParseError(f"Task entry {position + 1} must be a mapping", tree_path=path)

		task_id = raw.get("id")
		if isinstance(task_id, bool) or not isinstance(task_id, (str, int)) or not str(task_id).strip():
			raise ParseError(
				"Task is missing an id",
				node_id=f"phase {phase} #{position + 1}",
				tree_path=path,
			)
		task_id = str(task_id).strip()
		if "/" in task_id:
			raise ParseError("Task ids may not contain '/'", node_id=task_id, tree_path=path)

		recursive = raw.get("recursive", False)
		if not isinstance(recursive, bool):
			raise ParseError("'recursive' must be true or false", node_id=task_id, tree_path=path)

		worker_tag = raw.get("worker")
		if worker_tag is None:
			if not recursive:
				raise ParseError("Task is missing a worker type", node_id=task_id, tree_path=path)
			worker = WorkerType.RECURSIVE
		else:
			try:
				worker = WorkerType(str(worker_tag).strip().lower())
			except ValueError:
				allowed = ", ".join(w.value for w in WorkerType)
				raise ParseError(
					f"Unknown worker type {worker_tag!r} (expected one of: {allowed})",
					node_id=task_id,
					tree_path=path,
				) from None
		if worker == WorkerType.RECURSIVE:
			recursive = True

		scope = raw.get("scope")
		if not isinstance(scope, str) or not scope.strip():
			raise ParseError("Task is missing a scope description", node_id=task_id, tree_path=path)

		files = raw.get("files") or []
		if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
			raise ParseError("'files' must be a list of paths", node_id=task_id, tree_path=path)
		try:
			claims = tuple(sorted({normalize_path(f) for f in files}))
		except ValueError:
			raise ParseError("'files' contains an empty path", node_id=task_id, tree_path=path) from None

		blocking = raw.get("blocking", True)
		if not isinstance(blocking, bool):
			raise ParseError("'blocking' must be true or false", node_id=task_id, tree_path=path)

		depends_on = raw.get("depends_on") or []
		if not isinstance(depends_on, list):
			raise ParseError("'depends_on' must be a list of task ids", node_id=task_id, tree_path=path)

		node = TaskNode(
			id=task_id,
			worker=worker,
			scope=scope.strip(),
			files=claims,
			phase=phase,
			recursive=recursive,
			blocking=blocking,
			depends_on=tuple(str(d) for d in depends_on),
		)
		return node, raw.get("subplan")

	def _check_phase_numbers(self, nodes: list[TaskNode], path: str) -> None:
		numbers = sorted({n.phase for n in nodes})
		if numbers != list(range(1, len(numbers) + 1)):
			raise ParseError(
				f"Phase numbers must be contiguous starting at 1; got {numbers}",
				tree_path=path,
			)

	def _check_dependencies(self, nodes: list[TaskNode], path: str) -> None:
		by_id = {n.id: n for n in nodes}
		for node in nodes:
			for dep in node.depends_on:
				target = by_id.get(dep)
				if target is None:
					raise ParseError(
						f"Depends on unknown task '{dep}'",
						node_id=node.id,
						tree_path=path,
					)
				if target.phase >= node.phase:
					raise ParseError(
						f"Cyclic phase reference: {node.id} (phase {node.phase}) "
						f"depends on {dep} (phase {target.phase})",
						node_id=node.id,
						tree_path=path,
					)

	def _parse_subtrees(
		self,
		document: Mapping,
		nodes: list[TaskNode],
		inline_subplans: dict[str, Any],
		depth: int,
		path: str,
	) -> dict[str, PlanTree]:
		declared = document.get("subplans") or {}
		if not isinstance(declared, Mapping):
			raise ParseError("'subplans' must map task ids to plans", tree_path=path)
		declared = {str(k): v for k, v in declared.items()}

		recursive_ids = {n.id for n in nodes if n.recursive}
		for key in declared:
			if key not in recursive_ids:
				raise ParseError("Sub-plan has no matching recursive task", node_id=key, tree_path=path)

		subtrees: dict[str, PlanTree] = {}
		for node in nodes:
			if not node.recursive:
				if node.id in inline_subplans:
					raise ParseError(
						"Task defines a sub-plan but is not recursive",
						node_id=node.id,
						tree_path=path,
					)
				continue

			if node.id in inline_subplans and node.id in declared:
				raise ParseError(
					"Sub-plan is defined both inline and under 'subplans'",
					node_id=node.id,
					tree_path=path,
				)
			sub_document = inline_subplans.get(node.id, declared.get(node.id))
			if sub_document is None:
				raise ParseError(
					"Recursive task has no matching sub-plan",
					node_id=node.id,
					tree_path=path,
				)
			subtrees[node.id] = self._parse_tree(
				sub_document,
				name=node.id,
				depth=depth + 1,
				path=f"{path}/{node.id}",
			)
		return subtrees


def parse_plan(document: Union[Mapping[str, Any], str], max_depth: int = MAX_DEPTH) -> PlanTree:
	"""Parse a plan document with a one-off parser."""
	return PlanParser(max_depth=max_depth).parse(document)


def load_plan(path: Union[str, Path], max_depth: int = MAX_DEPTH) -> PlanTree:
	"""Parse a plan file with a one-off parser."""
	return PlanParser(max_depth=max_depth).parse_file(path)
