"""Orchestrator module - Scheduling, recursive expansion, aggregation, and verification."""

from .aggregator import ResultAggregator, find_conflicts
from .expander import RecursiveExpander
from .phase import PhaseRunner
from .runner import PlanRunner
from .scheduler import Scheduler, SchedulerState
from .verifier import Verifier
from .workers import AgentCommandWorker, DryRunWorker, TaskOutcome, WorkContext, WorkerRegistry

__all__ = [
	"Scheduler",
	"SchedulerState",
	"PhaseRunner",
	"RecursiveExpander",
	"ResultAggregator",
	"find_conflicts",
	"Verifier",
	"PlanRunner",
	"WorkerRegistry",
	"DryRunWorker",
	"AgentCommandWorker",
	"TaskOutcome",
	"WorkContext",
]
