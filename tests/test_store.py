"""Tests for the SQLite report store."""

from pathlib import Path

import pytest

from parallx.plans.models import (
	Conflict,
	ExecutionReport,
	ExecutionResult,
	RunStatus,
	TaskState,
)
from parallx.plans import store as store_module
from parallx.plans.store import ReportNotFoundError, ReportStore, get_report_store


def make_report(
	report_id: str = "run-1",
	plan_name: str = "feature",
	status: RunStatus = RunStatus.COMPLETED,
	started_at: str = "2026-03-01T10:00:00",
) -> ExecutionReport:
	return ExecutionReport(
		id=report_id,
		plan_name=plan_name,
		status=status,
		started_at=started_at,
		finished_at=started_at,
		results=[
			ExecutionResult(task_id="A", phase=1, state=TaskState.SUCCEEDED, artifacts=("a.txt",)),
			ExecutionResult(task_id="x", tree_path="root/D", phase=1, state=TaskState.FAILED, error="boom"),
		],
		conflicts=[Conflict(tree_path="root", phase=1, tasks=("A", "B"), paths=("a.txt",))],
	)


class TestReportStore:

	@pytest.mark.asyncio
	async def test_save_and_get(self, tmp_path: Path):
		store = ReportStore(str(tmp_path / "reports.db"))
		try:
			report = make_report()
			assert await store.save_report(report) == "run-1"

			loaded = await store.get_report("run-1")

			assert loaded == report
			assert loaded.results[1].tree_path == "root/D"
			assert loaded.conflicts[0].tasks == ("A", "B")
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_get_missing(self, tmp_path: Path):
		store = ReportStore(str(tmp_path / "reports.db"))
		try:
			with pytest.raises(ReportNotFoundError):
				await store.get_report("nope")
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_save_overwrites(self, tmp_path: Path):
		store = ReportStore(str(tmp_path / "reports.db"))
		try:
			await store.save_report(make_report(status=RunStatus.FAILED))
			await store.save_report(make_report(status=RunStatus.COMPLETED))

			assert (await store.get_report("run-1")).status == RunStatus.COMPLETED
			assert len(await store.list_reports()) == 1
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_list_newest_first_with_filters(self, tmp_path: Path):
		store = ReportStore(str(tmp_path / "reports.db"))
		try:
			await store.save_report(make_report("r1", "feature", RunStatus.COMPLETED, "2026-03-01T10:00:00"))
			await store.save_report(make_report("r2", "feature", RunStatus.FAILED, "2026-03-02T10:00:00"))
			await store.save_report(make_report("r3", "release", RunStatus.COMPLETED, "2026-03-03T10:00:00"))

			assert [r.id for r in await store.list_reports()] == ["r3", "r2", "r1"]
			assert [r.id for r in await store.list_reports(limit=2)] == ["r3", "r2"]
			assert [r.id for r in await store.list_reports(plan_name="feature")] == ["r2", "r1"]
			assert [r.id for r in await store.list_reports(status=RunStatus.COMPLETED)] == ["r3", "r1"]
		finally:
			await store.close()

	@pytest.mark.asyncio
	async def test_creates_parent_directory(self, tmp_path: Path):
		db_path = tmp_path / "a" / "b" / "reports.db"
		store = ReportStore(str(db_path))
		try:
			await store.init()
			assert db_path.exists()
		finally:
			await store.close()


@pytest.mark.asyncio
async def test_get_report_store_is_shared(tmp_path: Path, monkeypatch):
	monkeypatch.setattr(store_module, "_store", None)

	first = await get_report_store(str(tmp_path / "reports.db"))
	try:
		second = await get_report_store()
		assert first is second
		assert first.db_path == tmp_path / "reports.db"
	finally:
		await first.close()
