"""Build the dataset ZIP archive from analysis results and image bytes."""

from __future__ import annotations

import asyncio
import json
import logging
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Mapping, Optional, Sequence

from models.dataset_models import DatasetEntry, DatasetMetadata

LOGGER = logging.getLogger(__name__)

DATASET_FILENAME = "dataset.jsonl"
METADATA_FILENAME = "metadata.jsonl"
IMAGES_DIR = "images"


class PackagingError(Exception):
    """The archive could not be assembled."""


def render_dataset_lines(entries: Sequence[DatasetEntry]) -> str:
    """One compact JSON object per line, no trailing newline."""
    return "\n".join(
        json.dumps(entry.to_dict(), ensure_ascii=False, separators=(",", ":")) for entry in entries
    )


def render_metadata(metadata: DatasetMetadata) -> str:
    return json.dumps(metadata.to_dict(), ensure_ascii=False, indent=4)


class DatasetPackager:
    """Write the archive layout to a scratch directory and zip it."""

    def __init__(self, work_dir: Optional[Path] = None) -> None:
        self.work_dir = Path(work_dir) if work_dir else None

    async def package(
        self,
        entries: Sequence[DatasetEntry],
        metadata: DatasetMetadata,
        images: Mapping[str, bytes],
    ) -> bytes:
        """Return the ZIP bytes for one batch.

        Raises:
            PackagingError: If an entry references a missing image or the archive cannot be written.
        """
        missing = [entry.output_image for entry in entries if entry.output_image not in images]
        if missing:
            raise PackagingError(f"No uploaded image for: {', '.join(missing)}")
        return await asyncio.to_thread(self._build_archive, entries, metadata, images)

    def _build_archive(
        self,
        entries: Sequence[DatasetEntry],
        metadata: DatasetMetadata,
        images: Mapping[str, bytes],
    ) -> bytes:
        if self.work_dir is not None:
            self.work_dir.mkdir(parents=True, exist_ok=True)
        tmp_dir = Path(tempfile.mkdtemp(prefix="dataset_build_", dir=self.work_dir))
        try:
            images_dir = tmp_dir / IMAGES_DIR
            images_dir.mkdir()
            (tmp_dir / DATASET_FILENAME).write_text(render_dataset_lines(entries), encoding="utf-8")
            (tmp_dir / METADATA_FILENAME).write_text(render_metadata(metadata), encoding="utf-8")
            for entry in entries:
                (images_dir / entry.output_image).write_bytes(images[entry.output_image])

            zip_path = tmp_dir / "dataset.zip"
            with zipfile.ZipFile(zip_path, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
                zf.write(tmp_dir / DATASET_FILENAME, arcname=DATASET_FILENAME)
                zf.write(tmp_dir / METADATA_FILENAME, arcname=METADATA_FILENAME)
                for entry in entries:
                    zf.write(images_dir / entry.output_image, arcname=f"{IMAGES_DIR}/{entry.output_image}")
            archive = zip_path.read_bytes()
        except (OSError, ValueError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
            LOGGER.error("Failed to build dataset archive: %s", exc)
            raise PackagingError(str(exc)) from exc
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)

        LOGGER.info("Packaged %d entries into %d-byte archive", len(entries), len(archive))
        return archive
