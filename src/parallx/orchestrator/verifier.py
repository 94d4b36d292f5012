"""
Verifier - Post-run build/test gate.

Key Principle: tasks are NOT self-verified. Once a tree has completed,
its verify command (e.g. "pytest -q" or "npm run build") is run once,
independently of the workers, and its exit status becomes part of the
execution report. Failures are reported, never retried.
"""

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from ..plans.models import CheckStatus, VerificationRecord

logger = logging.getLogger(__name__)


class Verifier:
	"""
	Runs verification commands in the project directory.

	Usage:
		verifier = Verifier(project_path="/path/to/repo", timeout=600)
		record = await verifier.verify("pytest -q")
		if not record.passed:
			...
	"""

	def __init__(
		self,
		project_path: Optional[Union[str, Path]] = None,
		timeout: float = 600,  # 10 minutes
		output_limit: int = 2000,
	):
		"""
		Initialize the verifier.

		Args:
			project_path: Directory the command runs in (default: cwd)
			timeout: Timeout in seconds
			output_limit: Characters of output kept (tail)
		"""
		self.project_path = Path(project_path) if project_path else Path.cwd()
		self.timeout = timeout
		self.output_limit = output_limit

	async def verify(self, command: Optional[str]) -> VerificationRecord:
		"""
		Run a verification command.

		Args:
			command: Shell command; empty or None is recorded as skipped

		Returns:
			VerificationRecord with status and exit code
		"""
		if not command or not command.strip():
			return VerificationRecord(
				command=command or "",
				status=CheckStatus.SKIPPED,
				output="No verification command configured",
			)

		logger.info(f"Verifying: {command}")
		start = datetime.now()

		try:
			proc = await asyncio.create_subprocess_shell(
				command,
				stdout=asyncio.subprocess.PIPE,
				stderr=asyncio.subprocess.STDOUT,
				cwd=str(self.project_path),
			)
		except OSError as e:
			return VerificationRecord(
				command=command,
				status=CheckStatus.ERROR,
				output=str(e),
			)

		try:
			stdout, _ = await asyncio.wait_for(
				proc.communicate(),
				timeout=self.timeout,
			)
		except asyncio.TimeoutError:
			proc.kill()
			await proc.wait()
			logger.warning(f"Verification timed out after {self.timeout}s: {command}")
			return VerificationRecord(
				command=command,
				status=CheckStatus.ERROR,
				output=f"Timed out after {self.timeout}s",
				duration_seconds=(datetime.now() - start).total_seconds(),
			)

		duration = (datetime.now() - start).total_seconds()
		status = CheckStatus.PASSED if proc.returncode == 0 else CheckStatus.FAILED

		if status == CheckStatus.PASSED:
			logger.info(f"Verification passed in {duration:.1f}s")
		else:
			logger.warning(f"Verification failed with exit code {proc.returncode}: {command}")

		return VerificationRecord(
			command=command,
			status=status,
			exit_code=proc.returncode,
			output=stdout.decode("utf-8", errors="replace")[-self.output_limit:],
			duration_seconds=duration,
		)
