"""Sequential batch pipeline: validate, analyze each image, package, store."""

from __future__ import annotations

import logging
import time
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4

from dal.dataset_store import DatasetStore
from models.analysis_models import AnalysisRecord
from models.dataset_models import DatasetEntry, DatasetMetadata
from models.upload_models import UploadedImage
from services.batch.batch_errors import BatchCancelledError, BatchFailedError
from services.batch.batch_state import BatchStateMachine
from services.batch.cancellation import CancellationToken
from services.batch.retry import RetryPolicy, retry_with_backoff
from services.dataset.packager import DatasetPackager, PackagingError
from services.openai.analysis_errors import AnalysisError
from services.openai.image_analyzer import ImageAnalyzer
from utils.media_validation import ImageValidationError, validate_batch
from utils.settings import FAILURE_POLICIES

LOGGER = logging.getLogger(__name__)


class BatchProcessor:
    """Turn a list of uploaded images into a stored dataset archive."""

    def __init__(
        self,
        analyzer: ImageAnalyzer,
        packager: DatasetPackager,
        store: DatasetStore,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        failure_policy: str = "abort",
        max_images: Optional[int] = None,
    ) -> None:
        if failure_policy not in FAILURE_POLICIES:
            raise ValueError(f"Unknown failure policy '{failure_policy}'")
        self.analyzer = analyzer
        self.packager = packager
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self.failure_policy = failure_policy
        self.max_images = max_images

    def validate(self, images: Sequence[UploadedImage]) -> List[str]:
        """Validate a batch up front; returns the MIME type of each image."""
        return validate_batch(images, self.max_images)

    async def process(
        self,
        images: Iterable[UploadedImage],
        *,
        model: str,
        context: Optional[str] = None,
        prior_analyses: Optional[Iterable[AnalysisRecord]] = None,
        token: Optional[CancellationToken] = None,
        machine: Optional[BatchStateMachine] = None,
    ) -> str:
        """Run one batch attempt to completion and return the stored dataset id.

        Args:
            images: Uploaded images in the order they should appear in the dataset.
            model: Vision model used for every analysis in the batch.
            context: Optional free text naming entities the prompts must mention.
            prior_analyses: Earlier single-image results reused instead of new calls.
            token: Cancellation token for this attempt.
            machine: State machine that receives progress events.

        Raises:
            ImageValidationError: The batch is invalid; nothing was sent to the model.
            BatchFailedError: An image, the packager or the store failed.
            BatchCancelledError: The token was cancelled before completion.
        """
        images = list(images)
        token = token or CancellationToken()
        machine = machine or BatchStateMachine(uuid4().hex)

        try:
            mime_types = self.validate(images)
        except ImageValidationError as exc:
            machine.fail(str(exc))
            raise

        prior: Dict[str, AnalysisRecord] = {
            record.filename: record for record in (prior_analyses or []) if record.succeeded
        }
        machine.begin(len(images))
        start_time = time.time()

        try:
            records = await self._analyze_all(images, mime_types, model, context, prior, token, machine)
            dataset_id = await self._package_and_store(images, records, model, context, token, machine)
        except BatchCancelledError:
            LOGGER.info("Batch %s cancelled", machine.state.batch_id)
            machine.cancel()
            raise
        except BatchFailedError as exc:
            LOGGER.error("Batch %s failed (%s): %s", machine.state.batch_id, exc.kind, exc)
            machine.fail(str(exc))
            raise

        machine.complete(dataset_id)
        LOGGER.info(
            "Batch %s complete: %d images -> dataset %s in %.2fs",
            machine.state.batch_id, len(images), dataset_id, time.time() - start_time,
        )
        return dataset_id

    async def _analyze_all(
        self,
        images: List[UploadedImage],
        mime_types: List[str],
        model: str,
        context: Optional[str],
        prior: Dict[str, AnalysisRecord],
        token: CancellationToken,
        machine: BatchStateMachine,
    ) -> List[AnalysisRecord]:
        records: List[AnalysisRecord] = []
        for image, mime_type in zip(images, mime_types):
            token.raise_if_cancelled()
            machine.start_image(image.filename)
            record = prior.get(image.filename)
            if record is not None:
                LOGGER.debug("Reusing earlier analysis for %s", image.filename)
            else:
                record = await self._analyze_one(image, mime_type, model, context, token)
            records.append(record)
            machine.record(record)
        return records

    async def _analyze_one(
        self,
        image: UploadedImage,
        mime_type: str,
        model: str,
        context: Optional[str],
        token: CancellationToken,
    ) -> AnalysisRecord:
        try:
            result = await retry_with_backoff(
                lambda: self.analyzer.analyze(
                    image.content,
                    filename=image.filename,
                    context=context,
                    model=model,
                    mime_type=mime_type,
                ),
                self.retry_policy,
                token=token,
            )
        except AnalysisError as exc:
            if self.failure_policy == "fallback":
                LOGGER.warning("Using fallback entry for %s after %s failure: %s", image.filename, exc.kind, exc)
                return AnalysisRecord(filename=image.filename, error=str(exc))
            raise BatchFailedError(
                f"Failed to analyze {image.filename}: {exc}", kind=exc.kind, filename=image.filename
            ) from exc
        return AnalysisRecord(filename=image.filename, result=result)

    async def _package_and_store(
        self,
        images: List[UploadedImage],
        records: List[AnalysisRecord],
        model: str,
        context: Optional[str],
        token: CancellationToken,
        machine: BatchStateMachine,
    ) -> str:
        if not any(record.succeeded for record in records):
            raise BatchFailedError("No images were analyzed successfully.", kind="empty")

        token.raise_if_cancelled()
        machine.start_archiving()
        entries = [DatasetEntry.from_record(record) for record in records]
        metadata = DatasetMetadata(model=model, context=context or "", analyses=records)
        image_bytes = {image.filename: image.content for image in images}
        try:
            archive = await self.packager.package(entries, metadata, image_bytes)
        except PackagingError as exc:
            raise BatchFailedError(f"Failed to package dataset: {exc}", kind="storage") from exc

        token.raise_if_cancelled()
        try:
            dataset_id = await self.store.put(archive)
        except OSError as exc:
            raise BatchFailedError(f"Failed to store dataset: {exc}", kind="storage") from exc

        if token.cancelled:
            # Cancelled while the write was in flight; never expose the id.
            await self.store.discard(dataset_id)
            raise BatchCancelledError("Batch was cancelled.")
        return dataset_id
