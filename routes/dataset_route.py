from fastapi import APIRouter, HTTPException, Request

from controllers.dataset_controller import fetch_dataset

router = APIRouter(prefix="/api")


@router.get("/datasets/{dataset_id}")
async def get_dataset_route(request: Request, dataset_id: str):
	"""Download a generated dataset archive."""
	try:
		return await fetch_dataset(request, dataset_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
