"""WebSocket endpoint streaming batch state snapshots."""

from __future__ import annotations

import json

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect

from services.batch.batch_registry import BatchRegistry

router = APIRouter()


def _require_registry(websocket: WebSocket) -> BatchRegistry:
	registry = getattr(websocket.app.state, "batch_registry", None)
	if registry is None:
		raise HTTPException(status_code=500, detail="Batch registry unavailable")
	return registry


@router.websocket("/ws/batches/{batch_id}")
async def batch_socket(websocket: WebSocket, batch_id: str, registry: BatchRegistry = Depends(_require_registry)):
	"""Send one JSON snapshot per state change until the batch finishes."""
	await websocket.accept()
	try:
		registry.get(batch_id)
	except KeyError:
		await websocket.send_text(json.dumps({"type": "error", "detail": "Batch not found"}))
		await websocket.close()
		return

	try:
		async for snapshot in registry.subscribe(batch_id):
			await websocket.send_text(json.dumps({"type": "state", "state": snapshot}))
	except WebSocketDisconnect:
		return
	await websocket.close()
