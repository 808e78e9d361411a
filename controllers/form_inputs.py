"""Helpers that turn multipart form fields into domain inputs."""

from __future__ import annotations

import json
from typing import List, Optional, Sequence

from fastapi import HTTPException, Request, UploadFile

from models.analysis_models import AnalysisRecord
from models.upload_models import UploadedImage
from services.openai.model_catalog import resolve_model


async def read_uploads(files: Sequence[UploadFile]) -> List[UploadedImage]:
	"""Read every uploaded file into memory, keeping the client's filename verbatim."""
	images: List[UploadedImage] = []
	for upload in files:
		content = await upload.read()
		images.append(UploadedImage(filename=upload.filename or "", content=content, content_type=upload.content_type))
	return images


def pick_context(context: Optional[str], description: Optional[str] = None) -> Optional[str]:
	"""Return the batch context; older clients send it as `description`."""
	value = context if context is not None else description
	if value is None:
		return None
	value = value.strip()
	return value or None


def pick_model(request: Request, model: Optional[str]) -> str:
	"""Resolve the requested model against the catalog, raising 400 when unsupported."""
	try:
		return resolve_model(model, request.app.state.settings.default_model)
	except ValueError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc


def parse_prior_analyses(raw: Optional[str]) -> List[AnalysisRecord]:
	"""Parse the `analyses` form field (a JSON list of analysis records).

	Entries without a processed image (fallback records) are skipped.

	Raises:
		HTTPException: 400 if the field is not valid JSON or a record is malformed.
	"""
	if raw is None or not raw.strip():
		return []
	try:
		data = json.loads(raw)
	except json.JSONDecodeError as exc:
		raise HTTPException(status_code=400, detail=f"analyses must be JSON: {exc}") from exc
	if not isinstance(data, list):
		raise HTTPException(status_code=400, detail="analyses must be a JSON list")

	records: List[AnalysisRecord] = []
	for item in data:
		if not isinstance(item, dict):
			raise HTTPException(status_code=400, detail="Each analysis must be a JSON object")
		if item.get("processed_image") is None:
			continue
		try:
			records.append(AnalysisRecord.from_dict(item))
		except (TypeError, ValueError) as exc:
			raise HTTPException(status_code=400, detail=str(exc)) from exc
	return records
