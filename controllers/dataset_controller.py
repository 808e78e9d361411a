from fastapi import HTTPException, Request
from fastapi.responses import Response

from dal.dataset_store import DatasetNotFoundError, DatasetStore
from services.openai.model_catalog import SUPPORTED_MODELS


async def fetch_dataset(request: Request, dataset_id: str) -> Response:
	"""Return the stored archive as a ZIP attachment.

	Args:
		request: FastAPI Request (to access app.state.dataset_store).
		dataset_id: Identifier returned when the batch completed.

	Raises:
		HTTPException: 404 if no dataset exists for the id.
	"""
	store: DatasetStore = request.app.state.dataset_store
	try:
		archive = await store.get(dataset_id)
	except DatasetNotFoundError as exc:
		raise HTTPException(status_code=404, detail=f"Dataset {dataset_id} not found") from exc
	return Response(
		content=archive,
		media_type="application/zip",
		headers={"Content-Disposition": f'attachment; filename="dataset-{dataset_id}.zip"'},
	)


async def list_models(request: Request) -> dict:
	"""Vision models a client may request, plus the configured default."""
	return {
		"default": request.app.state.settings.default_model,
		"models": [dict(model) for model in SUPPORTED_MODELS],
	}
