"""FastAPI routes for dataset batches."""

from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile

from controllers.batch_controller import (
	cancel_batch,
	discard_batch,
	get_batch,
	process_batch,
	retry_batch,
	start_batch,
)

router = APIRouter(prefix="/api")


@router.post("/process")
async def process_batch_route(
	request: Request,
	images: Optional[List[UploadFile]] = File(None),
	context: Optional[str] = Form(None),
	description: Optional[str] = Form(None),
	model: Optional[str] = Form(None),
	analyses: Optional[str] = Form(None),
):
	"""Analyze, package and store a batch, returning the dataset id."""
	try:
		return await process_batch(request, images or [], context, model, analyses, description)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/batches", status_code=202)
async def start_batch_route(
	request: Request,
	images: Optional[List[UploadFile]] = File(None),
	context: Optional[str] = Form(None),
	description: Optional[str] = Form(None),
	model: Optional[str] = Form(None),
	analyses: Optional[str] = Form(None),
):
	try:
		return await start_batch(request, images or [], context, model, analyses, description)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/batches/{batch_id}")
async def get_batch_route(request: Request, batch_id: str):
	try:
		return await get_batch(request, batch_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/batches/{batch_id}/cancel")
async def cancel_batch_route(request: Request, batch_id: str):
	try:
		return await cancel_batch(request, batch_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/batches/{batch_id}/retry", status_code=202)
async def retry_batch_route(request: Request, batch_id: str):
	try:
		return await retry_batch(request, batch_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.delete("/batches/{batch_id}")
async def discard_batch_route(request: Request, batch_id: str):
	try:
		return await discard_batch(request, batch_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
