"""In-memory registry of background batch runs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, List, Optional
from uuid import uuid4

from models.analysis_models import AnalysisRecord
from models.batch_models import BatchStage
from models.upload_models import UploadedImage
from services.batch.batch_errors import BatchCancelledError, BatchFailedError, InvalidTransitionError
from services.batch.batch_processor import BatchProcessor
from services.batch.batch_state import TERMINAL_STAGES, BatchStateMachine
from services.batch.cancellation import CancellationToken

LOGGER = logging.getLogger(__name__)


@dataclass
class BatchRun:
	"""Inputs, state and the current attempt of one batch."""

	batch_id: str
	images: List[UploadedImage]
	model: str
	context: Optional[str] = None
	prior_analyses: List[AnalysisRecord] = field(default_factory=list)
	machine: Optional[BatchStateMachine] = None
	token: CancellationToken = field(default_factory=CancellationToken)
	task: Optional[asyncio.Task] = None

	def snapshot(self) -> dict:
		return self.machine.snapshot()


class BatchRegistry:
	"""Start, observe, cancel and retry batches running as asyncio tasks."""

	def __init__(
		self,
		processor: BatchProcessor,
		*,
		finished_ttl: float = 3600.0,
		max_finished: int = 50,
	) -> None:
		self.processor = processor
		self.finished_ttl = finished_ttl
		self.max_finished = max_finished
		self._runs: Dict[str, BatchRun] = {}

	def start(
		self,
		images: List[UploadedImage],
		*,
		model: str,
		context: Optional[str] = None,
		prior_analyses: Optional[List[AnalysisRecord]] = None,
	) -> BatchRun:
		"""Validate the batch and schedule its first attempt.

		Raises:
			ImageValidationError: If the batch is invalid; no run is created.
		"""
		self.processor.validate(images)
		self.evict_finished()
		batch_id = uuid4().hex
		run = BatchRun(
			batch_id=batch_id,
			images=list(images),
			model=model,
			context=context,
			prior_analyses=list(prior_analyses or []),
			machine=BatchStateMachine(batch_id),
		)
		self._runs[batch_id] = run
		run.task = asyncio.create_task(self._execute(run, run.prior_analyses))
		LOGGER.info("Started batch %s with %d images", batch_id, len(run.images))
		return run

	def evict_finished(self, now: Optional[float] = None) -> int:
		"""Forget finished runs older than `finished_ttl`, keeping at most `max_finished`."""
		now = time.time() if now is None else now
		finished = sorted(
			(run for run in self._runs.values() if run.machine.is_terminal),
			key=lambda run: run.machine.state.updated_at,
		)
		expired = [run for run in finished if now - run.machine.state.updated_at > self.finished_ttl]
		kept = [run for run in finished if run not in expired]
		if len(kept) > self.max_finished:
			expired.extend(kept[: len(kept) - self.max_finished])
		for run in expired:
			del self._runs[run.batch_id]
		if expired:
			LOGGER.info("Evicted %d finished batches", len(expired))
		return len(expired)

	def get(self, batch_id: str) -> BatchRun:
		"""Return a run or raise KeyError if missing."""
		run = self._runs.get(batch_id)
		if run is None:
			raise KeyError(f"Batch {batch_id} not found")
		return run

	def cancel(self, batch_id: str) -> BatchRun:
		"""Signal the current attempt to stop; finished runs are left unchanged."""
		run = self.get(batch_id)
		if not run.machine.is_terminal:
			run.token.cancel()
			LOGGER.info("Cancellation requested for batch %s", batch_id)
		return run

	def retry(self, batch_id: str) -> BatchRun:
		"""Re-run every image of a failed or cancelled batch.

		Raises:
			InvalidTransitionError: If the batch is not in `error` or `cancelled`.
		"""
		run = self.get(batch_id)
		if run.machine.stage not in (BatchStage.ERROR, BatchStage.CANCELLED):
			raise InvalidTransitionError(
				f"Batch {batch_id} is {run.machine.stage.value}; only failed or cancelled batches can be retried"
			)
		run.machine.reset_for_retry()
		run.token = CancellationToken()
		run.task = asyncio.create_task(self._execute(run, None))
		return run

	def discard(self, batch_id: str) -> None:
		"""Cancel a run if still active and forget it."""
		run = self.get(batch_id)
		run.token.cancel()
		del self._runs[batch_id]
		LOGGER.info("Discarded batch %s", batch_id)

	async def shutdown(self) -> None:
		"""Cancel every active run and wait for the tasks to finish."""
		tasks = []
		for run in self._runs.values():
			run.token.cancel()
			if run.task is not None and not run.task.done():
				tasks.append(run.task)
		if tasks:
			await asyncio.gather(*tasks, return_exceptions=True)
		self._runs.clear()

	async def subscribe(self, batch_id: str) -> AsyncIterator[dict]:
		"""Yield state snapshots until the run reaches a terminal stage."""
		run = self.get(batch_id)
		machine = run.machine
		queue = machine.subscribe()
		terminal = {stage.value for stage in TERMINAL_STAGES}
		try:
			while True:
				snapshot = await queue.get()
				yield snapshot
				if snapshot["stage"] in terminal:
					break
		finally:
			machine.unsubscribe(queue)

	async def _execute(self, run: BatchRun, prior_analyses: Optional[List[AnalysisRecord]]) -> Optional[str]:
		try:
			dataset_id = await self.processor.process(
				run.images,
				model=run.model,
				context=run.context,
				prior_analyses=prior_analyses,
				token=run.token,
				machine=run.machine,
			)
			# Complete runs cannot be retried, so their uploads are no longer needed.
			run.images = []
			run.prior_analyses = []
			return dataset_id
		except (BatchFailedError, BatchCancelledError):
			# Outcome is already recorded on the state machine.
			return None
		except Exception as exc:
			LOGGER.exception("Unexpected failure in batch %s", run.batch_id)
			if not run.machine.is_terminal:
				run.machine.fail(str(exc))
			return None
