import asyncio

import pytest

from conftest import StubAnalyzer, uploaded
from dal.dataset_store import DatasetStore
from models.analysis_models import AnalysisMetadata, AnalysisRecord, AnalysisResult
from models.batch_models import BatchStage
from services.batch.batch_errors import InvalidTransitionError
from services.batch.batch_processor import BatchProcessor
from services.batch.batch_registry import BatchRegistry
from services.dataset.packager import DatasetPackager
from services.openai.analysis_errors import AnalysisRefusedError
from utils.media_validation import ImageValidationError


def _registry(tmp_path, analyzer, fast_retry):
    processor = BatchProcessor(
        analyzer, DatasetPackager(), DatasetStore(tmp_path / "datasets"), retry_policy=fast_retry
    )
    return BatchRegistry(processor)


def test_start_runs_batch_to_completion(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png"), uploaded("b.png")], model="gpt-4o-mini", context="Alex")
        await run.task
        return run

    run = asyncio.run(scenario())

    snapshot = run.snapshot()
    assert snapshot["stage"] == "complete"
    assert snapshot["dataset_id"]
    assert [record["filename"] for record in snapshot["results"]] == ["a.png", "b.png"]
    assert registry.get(run.batch_id) is run


def test_start_rejects_invalid_batch_synchronously(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)

    async def scenario():
        registry.start([], model="gpt-4o-mini")

    with pytest.raises(ImageValidationError):
        asyncio.run(scenario())


def test_get_unknown_batch_raises_key_error(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)
    with pytest.raises(KeyError):
        registry.get("missing")


def test_retry_reprocesses_every_image_and_ignores_prior_analyses(tmp_path, fast_retry):
    analyzer = StubAnalyzer(failures={"b.png": [AnalysisRefusedError("no")]})
    registry = _registry(tmp_path, analyzer, fast_retry)
    prior = AnalysisRecord(
        filename="a.png",
        result=AnalysisResult(
            description="d",
            prompt="earlier",
            metadata=AnalysisMetadata(model="gpt-4o-mini", prompt="p", temperature=0.2, seed=42),
        ),
    )

    async def scenario():
        run = registry.start([uploaded("a.png"), uploaded("b.png")], model="gpt-4o-mini", prior_analyses=[prior])
        await run.task
        failed = run.snapshot()
        registry.retry(run.batch_id)
        await run.task
        return run, failed

    run, failed = asyncio.run(scenario())

    assert failed["stage"] == "error"
    assert failed["attempt"] == 1
    assert analyzer.called_files() == ["b.png", "a.png", "b.png"]
    snapshot = run.snapshot()
    assert snapshot["stage"] == "complete"
    assert snapshot["attempt"] == 2
    assert len(snapshot["results"]) == 2


def test_retry_of_running_or_complete_batch_is_rejected(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png")], model="gpt-4o-mini")
        await run.task
        registry.retry(run.batch_id)

    with pytest.raises(InvalidTransitionError):
        asyncio.run(scenario())


def test_cancel_then_retry(tmp_path, fast_retry):
    class SlowAnalyzer(StubAnalyzer):
        async def analyze(self, image_bytes, **kwargs):
            await asyncio.sleep(0.05)
            return await super().analyze(image_bytes, **kwargs)

    analyzer = SlowAnalyzer()
    registry = _registry(tmp_path, analyzer, fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png"), uploaded("b.png")], model="gpt-4o-mini")
        await asyncio.sleep(0)
        registry.cancel(run.batch_id)
        await run.task
        cancelled = run.snapshot()
        registry.retry(run.batch_id)
        await run.task
        return run, cancelled

    run, cancelled = asyncio.run(scenario())

    assert cancelled["stage"] == "cancelled"
    assert cancelled["dataset_id"] is None
    assert run.machine.stage is BatchStage.COMPLETE


def test_subscribe_streams_until_terminal(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png"), uploaded("b.png")], model="gpt-4o-mini")
        return [snapshot["stage"] async for snapshot in registry.subscribe(run.batch_id)]

    stages = asyncio.run(scenario())

    assert stages[0] == "idle"
    assert stages[-1] == "complete"
    assert stages.index("archiving") > stages.index("generating")


def test_discard_forgets_batch(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png")], model="gpt-4o-mini")
        registry.discard(run.batch_id)
        await run.task
        return run

    run = asyncio.run(scenario())

    assert run.machine.stage is BatchStage.CANCELLED
    with pytest.raises(KeyError):
        registry.get(run.batch_id)


def test_shutdown_cancels_active_runs(tmp_path, fast_retry):
    class SlowAnalyzer(StubAnalyzer):
        async def analyze(self, image_bytes, **kwargs):
            await asyncio.sleep(30)

    registry = _registry(tmp_path, SlowAnalyzer(), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png")], model="gpt-4o-mini")
        await asyncio.sleep(0.01)
        await registry.shutdown()
        return run

    run = asyncio.run(scenario())

    assert run.machine.stage is BatchStage.CANCELLED
    assert run.task.done()


def test_completed_run_releases_uploads(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png"), uploaded("b.png")], model="gpt-4o-mini")
        await run.task
        return run

    run = asyncio.run(scenario())

    assert run.machine.stage is BatchStage.COMPLETE
    assert run.images == []
    assert run.prior_analyses == []
    assert len(run.snapshot()["results"]) == 2


def test_failed_run_keeps_uploads_for_retry(tmp_path, fast_retry):
    registry = _registry(tmp_path, StubAnalyzer(failures={"a.png": AnalysisRefusedError("no")}), fast_retry)

    async def scenario():
        run = registry.start([uploaded("a.png")], model="gpt-4o-mini")
        await run.task
        return run

    run = asyncio.run(scenario())

    assert run.machine.stage is BatchStage.ERROR
    assert [image.filename for image in run.images] == ["a.png"]


def test_finished_runs_are_evicted_by_age_and_count(tmp_path, fast_retry):
    processor = BatchProcessor(
        StubAnalyzer(), DatasetPackager(), DatasetStore(tmp_path / "datasets"), retry_policy=fast_retry
    )
    registry = BatchRegistry(processor, finished_ttl=60.0, max_finished=2)

    async def scenario():
        runs = []
        for _ in range(3):
            run = registry.start([uploaded("a.png")], model="gpt-4o-mini")
            await run.task
            runs.append(run)
        return runs

    first, second, third = asyncio.run(scenario())

    # Starting the third batch trimmed nothing yet; only two finished runs existed then.
    assert registry.evict_finished() == 1
    with pytest.raises(KeyError):
        registry.get(first.batch_id)
    assert registry.get(third.batch_id) is third

    later = third.machine.state.updated_at + 61.0
    assert registry.evict_finished(now=later) == 2
    with pytest.raises(KeyError):
        registry.get(second.batch_id)
