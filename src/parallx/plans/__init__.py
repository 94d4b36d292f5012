"""Plans module - Task-tree models, parsing, and report history."""

from .models import (
	Conflict,
	ExecutionReport,
	ExecutionResult,
	Phase,
	PlanTree,
	RunStatus,
	TaskNode,
	TaskState,
	WorkerType,
)
from .parser import PlanParser, load_plan, parse_plan
from .store import ReportStore

__all__ = [
	"PlanTree",
	"Phase",
	"TaskNode",
	"WorkerType",
	"TaskState",
	"RunStatus",
	"Conflict",
	"ExecutionResult",
	"ExecutionReport",
	"PlanParser",
	"parse_plan",
	"load_plan",
	"ReportStore",
]
