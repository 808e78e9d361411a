"""Flat-file store for generated dataset archives.

Archives live at `<base_dir>/<dataset_id>.zip`. Writes go to a `.part`
file first and are moved into place with `os.replace`, so readers never
see a partial archive.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import secrets
import time
from pathlib import Path

import aiofiles

LOGGER = logging.getLogger(__name__)

_DATASET_ID_RE = re.compile(r"^\d{14}-[0-9a-f]{12}$")


class DatasetNotFoundError(KeyError):
	"""No archive exists for the requested dataset id."""


def new_dataset_id() -> str:
	"""Return a timestamped, collision-resistant identifier such as `20240101120000-1a2b3c4d5e6f`."""
	return f"{time.strftime('%Y%m%d%H%M%S', time.gmtime())}-{secrets.token_hex(6)}"


class DatasetStore:
	"""Persist and fetch dataset archives by opaque identifier."""

	def __init__(self, base_dir: str | os.PathLike) -> None:
		self.base_dir = Path(base_dir)

	def _path_for(self, dataset_id: str) -> Path:
		if not isinstance(dataset_id, str) or not _DATASET_ID_RE.match(dataset_id):
			raise DatasetNotFoundError(dataset_id)
		return self.base_dir / f"{dataset_id}.zip"

	async def put(self, archive: bytes) -> str:
		"""Write `archive` and return its new dataset id.

		Raises:
			OSError: If the archive cannot be written.
		"""
		self.base_dir.mkdir(parents=True, exist_ok=True)
		dataset_id = new_dataset_id()
		final_path = self._path_for(dataset_id)
		while final_path.exists():
			dataset_id = new_dataset_id()
			final_path = self._path_for(dataset_id)

		part_path = final_path.with_name(final_path.name + ".part")
		try:
			async with aiofiles.open(part_path, "wb") as f:
				await f.write(archive)
			await asyncio.to_thread(os.replace, part_path, final_path)
		except BaseException:
			part_path.unlink(missing_ok=True)
			raise
		LOGGER.info("Stored dataset %s (%d bytes)", dataset_id, len(archive))
		return dataset_id

	async def get(self, dataset_id: str) -> bytes:
		"""Return the archive bytes for `dataset_id`.

		Raises:
			DatasetNotFoundError: If the id is malformed or unknown.
		"""
		path = self._path_for(dataset_id)
		try:
			async with aiofiles.open(path, "rb") as f:
				return await f.read()
		except FileNotFoundError as exc:
			raise DatasetNotFoundError(dataset_id) from exc

	async def discard(self, dataset_id: str) -> None:
		"""Remove a stored archive; unknown ids are ignored."""
		try:
			path = self._path_for(dataset_id)
		except DatasetNotFoundError:
			return
		path.unlink(missing_ok=True)
		LOGGER.info("Discarded dataset %s", dataset_id)
