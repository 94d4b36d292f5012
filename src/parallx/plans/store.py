"""
Report Store - SQLite-backed history of execution reports.

Features:
- Save reports as they finish
- Look a report up by run ID
- List recent runs, optionally filtered by plan name or status
"""

import logging
from pathlib import Path
from typing import Optional

import aiosqlite

from .models import ExecutionReport, RunStatus

logger = logging.getLogger(__name__)


class ReportNotFoundError(Exception):
	"""Raised when a report is not found."""
	pass


class ReportStore:
	"""
	SQLite-backed report history.

	Usage:
		store = ReportStore("data/reports.db")
		await store.init()

		await store.save_report(report)
		report = await store.get_report(report.id)
		recent = await store.list_reports(limit=10)
	"""

	def __init__(self, db_path: str):
		"""Initialize the report store."""
		self.db_path = Path(db_path)
		self.db_path.parent.mkdir(parents=True, exist_ok=True)
		self._db: Optional[aiosqlite.Connection] = None

	async def init(self):
		"""Initialize the database schema."""
		self._db = await aiosqlite.connect(str(self.db_path))
		self._db.row_factory = aiosqlite.Row

		await self._db.execute("""
			CREATE TABLE IF NOT EXISTS reports (
				id TEXT PRIMARY KEY,
				plan_name TEXT NOT NULL,
				status TEXT NOT NULL,
				data TEXT NOT NULL,
				started_at TEXT NOT NULL,
				finished_at TEXT
			)
		""")

		await self._db.execute("""
			CREATE INDEX IF NOT EXISTS idx_reports_plan ON reports(plan_name)
		""")

		await self._db.commit()
		logger.info(f"Report store initialized: {self.db_path}")

	async def close(self):
		"""Close the database connection."""
		if self._db:
			await self._db.close()
			self._db = None

	async def save_report(self, report: ExecutionReport) -> str:
		"""
		Save (or overwrite) a report.

		Returns:
			Report ID
		"""
		if not self._db:
			await self.init()

		await self._db.execute(
			"""
			INSERT OR REPLACE INTO reports (id, plan_name, status, data, started_at, finished_at)
			VALUES (?, ?, ?, ?, ?, ?)
			""",
			(
				report.id,
				report.plan_name,
				report.status.value,
				report.model_dump_json(),
				report.started_at,
				report.finished_at,
			)
		)
		await self._db.commit()
		logger.info(f"Saved report {report.id} ({report.status.value}) for plan {report.plan_name}")

		return report.id

	async def get_report(self, report_id: str) -> ExecutionReport:
		"""
		Get a report by ID.

		Raises:
			ReportNotFoundError: If no report has this ID
		"""
		if not self._db:
			await self.init()

		async with self._db.execute(
			"SELECT data FROM reports WHERE id = ?",
			(report_id,)
		) as cursor:
			row = await cursor.fetchone()

		if not row:
			raise ReportNotFoundError(f"Report not found: {report_id}")

		return ExecutionReport.model_validate_json(row["data"])

	async def list_reports(
		self,
		plan_name: Optional[str] = None,
		status: Optional[RunStatus] = None,
		limit: int = 20,
	) -> list[ExecutionReport]:
		"""
		List reports, newest first.

		Args:
			plan_name: Filter by plan name
			status: Filter by run status
			limit: Maximum number of reports
		"""
		if not self._db:
			await self.init()

		conditions = []
		params: list = []

		if plan_name:
			conditions.append("plan_name = ?")
			params.append(plan_name)

		if status:
			conditions.append("status = ?")
			params.append(status.value)

		where_clause = " AND ".join(conditions) if conditions else "1=1"
		params.append(limit)

		async with self._db.execute(
			f"SELECT data FROM reports WHERE {where_clause} ORDER BY started_at DESC LIMIT ?",
			params
		) as cursor:
			rows = await cursor.fetchall()

		return [ExecutionReport.model_validate_json(row["data"]) for row in rows]


# Global store instance
_store: Optional[ReportStore] = None


async def get_report_store(db_path: str = "") -> ReportStore:
	"""Get or create the global report store."""
	global _store
	if _store is None:
		if not db_path:
			from ..config import get_config
			db_path = str(get_config().reports_db_path)
		_store = ReportStore(db_path)
		await _store.init()
	return _store
