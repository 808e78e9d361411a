"""Single-image analysis used for live feedback before a batch is submitted."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import openai
from fastapi import HTTPException, Request, UploadFile

from controllers.form_inputs import pick_context, pick_model
from models.analysis_models import AnalysisRecord
from models.upload_models import UploadedImage
from services.batch.retry import retry_with_backoff
from services.openai.analysis_errors import (
	AnalysisError,
	AnalysisRefusedError,
	AnalysisTransportError,
	AnalysisUnparseableError,
)
from services.openai.image_analyzer import ImageAnalyzer
from utils.media_validation import ImageValidationError, validate_image


def analysis_status_code(exc: AnalysisError) -> int:
	"""HTTP status for an analysis failure."""
	if isinstance(exc, AnalysisRefusedError):
		return 422
	if isinstance(exc, AnalysisUnparseableError):
		return 502
	if isinstance(exc, AnalysisTransportError) and isinstance(
		exc.__cause__, (asyncio.TimeoutError, openai.APITimeoutError)
	):
		return 504
	return 502


async def analyze_image(
	request: Request,
	image: UploadFile,
	filename: Optional[str] = None,
	context: Optional[str] = None,
	model: Optional[str] = None,
) -> Dict[str, Any]:
	"""Validate and analyze one uploaded image.

	Args:
		request: FastAPI Request (to access the analyzer and settings on app.state).
		image: The uploaded image file.
		filename: Optional override for the upload's filename.
		context: Optional free text naming entities the prompt must mention.
		model: Optional vision model; defaults to the configured model.

	Returns:
		The analysis record as JSON, in the same shape used in `metadata.jsonl`.
	"""
	content = await image.read()
	upload = UploadedImage(
		filename=filename if filename is not None else (image.filename or ""),
		content=content,
		content_type=image.content_type,
	)
	try:
		mime_type = validate_image(upload)
	except ImageValidationError as exc:
		raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc

	resolved_model = pick_model(request, model)
	analyzer: ImageAnalyzer = request.app.state.analyzer
	try:
		result = await retry_with_backoff(
			lambda: analyzer.analyze(
				upload.content,
				filename=upload.filename,
				context=pick_context(context),
				model=resolved_model,
				mime_type=mime_type,
			),
			request.app.state.retry_policy,
		)
	except AnalysisError as exc:
		raise HTTPException(
			status_code=analysis_status_code(exc),
			detail={"error": exc.kind, "filename": upload.filename, "message": str(exc)},
		) from exc

	return AnalysisRecord(filename=upload.filename, result=result).to_dict()
