from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile
from pydantic import BaseModel

from controllers.analysis_controller import analyze_image
from controllers.dataset_controller import list_models

router = APIRouter(prefix="/api")


class ModelInfo(BaseModel):
	name: str
	title: str


class ModelsResponse(BaseModel):
	default: str
	models: List[ModelInfo]


@router.post("/analyze")
async def analyze_image_route(
	request: Request,
	image: UploadFile = File(...),
	filename: Optional[str] = Form(None),
	context: Optional[str] = Form(None),
	model: Optional[str] = Form(None),
):
	"""Analyze one image and return its record for live feedback."""
	try:
		return await analyze_image(request, image, filename=filename, context=context, model=model)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/models", response_model=ModelsResponse)
async def list_models_route(request: Request):
	try:
		return await list_models(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
