"""Finite-state machine that owns a batch's client-visible state.

Every mutation goes through one of the event methods below. Each event
checks the transition table and then publishes a snapshot to subscribers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Dict, FrozenSet, List

from models.analysis_models import AnalysisRecord
from models.batch_models import BatchStage, BatchState
from services.batch.batch_errors import InvalidTransitionError

LOGGER = logging.getLogger(__name__)

TRANSITIONS: Dict[BatchStage, FrozenSet[BatchStage]] = {
    BatchStage.IDLE: frozenset({BatchStage.ANALYZING, BatchStage.ERROR, BatchStage.CANCELLED}),
    BatchStage.ANALYZING: frozenset({BatchStage.GENERATING, BatchStage.ERROR, BatchStage.CANCELLED}),
    BatchStage.GENERATING: frozenset(
        {BatchStage.ANALYZING, BatchStage.ARCHIVING, BatchStage.ERROR, BatchStage.CANCELLED}
    ),
    BatchStage.ARCHIVING: frozenset({BatchStage.COMPLETE, BatchStage.ERROR, BatchStage.CANCELLED}),
    BatchStage.COMPLETE: frozenset(),
    BatchStage.ERROR: frozenset({BatchStage.IDLE}),
    BatchStage.CANCELLED: frozenset({BatchStage.IDLE}),
}

TERMINAL_STAGES = frozenset({BatchStage.COMPLETE, BatchStage.ERROR, BatchStage.CANCELLED})


class BatchStateMachine:
    """Single owner of a `BatchState`."""

    def __init__(self, batch_id: str) -> None:
        self._state = BatchState(batch_id=batch_id)
        self._subscribers: List[asyncio.Queue] = []

    @property
    def state(self) -> BatchState:
        return self._state

    @property
    def stage(self) -> BatchStage:
        return self._state.stage

    @property
    def is_terminal(self) -> bool:
        return self._state.stage in TERMINAL_STAGES

    def snapshot(self) -> dict:
        return self._state.to_dict()

    def subscribe(self) -> asyncio.Queue:
        """Return a queue that receives a snapshot after every event, starting with the current one."""
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self.snapshot())
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def _transition(self, target: BatchStage) -> None:
        current = self._state.stage
        if target not in TRANSITIONS[current]:
            raise InvalidTransitionError(f"Cannot move batch from {current.value} to {target.value}")
        self._state.stage = target

    def _publish(self) -> None:
        self._state.updated_at = time.time()
        snapshot = self.snapshot()
        for queue in list(self._subscribers):
            queue.put_nowait(snapshot)

    def begin(self, total: int) -> None:
        """Record the batch size before the first image starts."""
        if self._state.stage is not BatchStage.IDLE:
            raise InvalidTransitionError(f"Cannot begin a batch in stage {self._state.stage.value}")
        self._state.total = total
        self._state.progress = 0.0
        self._publish()

    def start_image(self, filename: str) -> None:
        self._transition(BatchStage.ANALYZING)
        self._state.current_file = filename
        self._state.progress = self._fraction()
        self._publish()

    def record(self, record: AnalysisRecord) -> None:
        self._transition(BatchStage.GENERATING)
        self._state.results.append(record)
        self._state.current_file = record.filename
        self._state.progress = self._fraction()
        self._publish()

    def start_archiving(self) -> None:
        self._transition(BatchStage.ARCHIVING)
        self._state.current_file = None
        self._publish()

    def complete(self, dataset_id: str) -> None:
        self._transition(BatchStage.COMPLETE)
        self._state.dataset_id = dataset_id
        self._state.progress = 1.0
        self._publish()

    def fail(self, message: str) -> None:
        self._transition(BatchStage.ERROR)
        self._state.error = message
        self._publish()

    def cancel(self) -> None:
        self._transition(BatchStage.CANCELLED)
        self._state.current_file = None
        self._publish()

    def reset_for_retry(self) -> None:
        """Clear the previous attempt so the batch can run again from the start."""
        self._transition(BatchStage.IDLE)
        self._state.results = []
        self._state.error = None
        self._state.dataset_id = None
        self._state.current_file = None
        self._state.progress = 0.0
        self._state.attempt += 1
        LOGGER.info("Batch %s reset for attempt %d", self._state.batch_id, self._state.attempt)
        self._publish()

    def _fraction(self) -> float:
        if not self._state.total:
            return 0.0
        return min(1.0, len(self._state.results) / self._state.total)
