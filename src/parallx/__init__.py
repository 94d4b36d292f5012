"""parallx - Phased, recursive task-tree orchestration for parallel agent workers."""

from .errors import (
	ConflictError,
	ParallxError,
	ParseError,
	TaskFailure,
	VerificationFailure,
	WorkerNotRegisteredError,
)
from .orchestrator import PlanRunner, Scheduler, WorkerRegistry
from .plans import ExecutionReport, PlanParser, PlanTree, load_plan, parse_plan

__version__ = "0.1.0"

__all__ = [
	"PlanParser",
	"PlanTree",
	"parse_plan",
	"load_plan",
	"Scheduler",
	"PlanRunner",
	"WorkerRegistry",
	"ExecutionReport",
	"ParallxError",
	"ParseError",
	"ConflictError",
	"TaskFailure",
	"VerificationFailure",
	"WorkerNotRegisteredError",
]
