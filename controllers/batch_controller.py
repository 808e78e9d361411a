"""Batch processing: synchronous dataset creation and background batch runs."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, Request, UploadFile

from controllers.form_inputs import parse_prior_analyses, pick_context, pick_model, read_uploads
from services.batch.batch_errors import BatchCancelledError, BatchFailedError, InvalidTransitionError
from services.batch.batch_processor import BatchProcessor
from services.batch.batch_registry import BatchRegistry
from utils.media_validation import ImageValidationError


def _registry(request: Request) -> BatchRegistry:
	return request.app.state.batch_registry


def _get_run(request: Request, batch_id: str):
	try:
		return _registry(request).get(batch_id)
	except KeyError as exc:
		raise HTTPException(status_code=404, detail=f"Batch {batch_id} not found") from exc


async def process_batch(
	request: Request,
	images: List[UploadFile],
	context: Optional[str] = None,
	model: Optional[str] = None,
	analyses: Optional[str] = None,
	description: Optional[str] = None,
) -> Dict[str, Any]:
	"""Run a whole batch in the request and return the stored dataset id."""
	uploads = await read_uploads(images)
	resolved_model = pick_model(request, model)
	prior = parse_prior_analyses(analyses)
	processor: BatchProcessor = request.app.state.processor
	try:
		dataset_id = await processor.process(uploads, model=resolved_model, context=pick_context(context, description), prior_analyses=prior)
	except ImageValidationError as exc:
		raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
	except BatchFailedError as exc:
		raise HTTPException(
			status_code=502,
			detail={"error": exc.kind, "filename": exc.filename, "message": str(exc)},
		) from exc
	except BatchCancelledError as exc:
		raise HTTPException(status_code=409, detail=str(exc)) from exc
	return {"datasetId": dataset_id}


async def start_batch(
	request: Request,
	images: List[UploadFile],
	context: Optional[str] = None,
	model: Optional[str] = None,
	analyses: Optional[str] = None,
	description: Optional[str] = None,
) -> Dict[str, Any]:
	"""Validate a batch and start it in the background."""
	uploads = await read_uploads(images)
	resolved_model = pick_model(request, model)
	prior = parse_prior_analyses(analyses)
	try:
		run = _registry(request).start(uploads, model=resolved_model, context=pick_context(context, description), prior_analyses=prior)
	except ImageValidationError as exc:
		raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
	return {"batch_id": run.batch_id, "state": run.snapshot()}


async def get_batch(request: Request, batch_id: str) -> Dict[str, Any]:
	return _get_run(request, batch_id).snapshot()


async def cancel_batch(request: Request, batch_id: str) -> Dict[str, Any]:
	_get_run(request, batch_id)
	return _registry(request).cancel(batch_id).snapshot()


async def retry_batch(request: Request, batch_id: str) -> Dict[str, Any]:
	"""Re-run a failed or cancelled batch from the first image."""
	_get_run(request, batch_id)
	try:
		run = _registry(request).retry(batch_id)
	except InvalidTransitionError as exc:
		raise HTTPException(status_code=409, detail=str(exc)) from exc
	return run.snapshot()


async def discard_batch(request: Request, batch_id: str) -> Dict[str, Any]:
	_get_run(request, batch_id)
	_registry(request).discard(batch_id)
	return {"status": "discarded"}
