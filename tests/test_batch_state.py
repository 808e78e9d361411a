import asyncio

import pytest

from models.analysis_models import AnalysisRecord
from models.batch_models import BatchStage
from services.batch.batch_errors import InvalidTransitionError
from services.batch.batch_state import BatchStateMachine


def test_happy_path_reports_progress():
    machine = BatchStateMachine("b1")
    machine.begin(2)
    machine.start_image("a.png")
    assert machine.stage is BatchStage.ANALYZING
    assert machine.state.current_file == "a.png"
    assert machine.state.progress == 0.0

    machine.record(AnalysisRecord(filename="a.png", error="x"))
    assert machine.stage is BatchStage.GENERATING
    assert machine.state.progress == 0.5

    machine.start_image("b.png")
    machine.record(AnalysisRecord(filename="b.png", error="x"))
    machine.start_archiving()
    machine.complete("20240101000000-abcdefabcdef")

    snapshot = machine.snapshot()
    assert snapshot["stage"] == "complete"
    assert snapshot["progress"] == 1.0
    assert snapshot["dataset_id"] == "20240101000000-abcdefabcdef"
    assert machine.is_terminal


def test_illegal_transitions_raise():
    machine = BatchStateMachine("b1")
    with pytest.raises(InvalidTransitionError):
        machine.complete("x")
    with pytest.raises(InvalidTransitionError):
        machine.start_archiving()

    machine.begin(1)
    machine.start_image("a.png")
    machine.record(AnalysisRecord(filename="a.png", error="x"))
    machine.start_archiving()
    machine.complete("x")
    with pytest.raises(InvalidTransitionError):
        machine.reset_for_retry()
    with pytest.raises(InvalidTransitionError):
        machine.cancel()


def test_reset_for_retry_clears_previous_attempt():
    machine = BatchStateMachine("b1")
    machine.begin(2)
    machine.start_image("a.png")
    machine.record(AnalysisRecord(filename="a.png", error="x"))
    machine.fail("boom")
    assert machine.state.results and machine.state.error == "boom"

    machine.reset_for_retry()

    assert machine.stage is BatchStage.IDLE
    assert machine.state.results == []
    assert machine.state.error is None
    assert machine.state.attempt == 2
    assert machine.state.progress == 0.0


def test_subscribers_receive_every_event():
    async def scenario():
        machine = BatchStateMachine("b1")
        queue = machine.subscribe()
        machine.begin(1)
        machine.start_image("a.png")
        machine.cancel()
        machine.unsubscribe(queue)
        machine.reset_for_retry()
        stages = []
        while not queue.empty():
            stages.append(queue.get_nowait()["stage"])
        return stages

    assert asyncio.run(scenario()) == ["idle", "idle", "analyzing", "cancelled"]
