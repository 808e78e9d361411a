"""Validation helpers for uploaded images."""

from __future__ import annotations

import io
import logging
from typing import Iterable, List

from PIL import Image, UnidentifiedImageError

from models.upload_models import UploadedImage

LOGGER = logging.getLogger(__name__)

# Raster formats accepted by the vision models, keyed by Pillow format name.
SUPPORTED_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}


class ImageValidationError(ValueError):
    """Raised when an upload or a batch fails validation."""

    def __init__(self, message: str, *, status_code: int = 400) -> None:
        super().__init__(message)
        self.status_code = status_code


def validate_filename(filename: str | None) -> str:
    """Return the filename if it can be used verbatim as an archive entry name."""
    name = (filename or "").strip()
    if not name:
        raise ImageValidationError("Image filename is required.")
    if name != filename:
        raise ImageValidationError(f"Image filename {filename!r} has leading or trailing whitespace.")
    if "/" in name or "\\" in name or name in (".", ".."):
        raise ImageValidationError(f"Image filename {filename!r} must not contain path components.")
    if any(ord(char) < 32 or ord(char) == 127 for char in name):
        raise ImageValidationError(f"Image filename {filename!r} must not contain control characters.")
    return name


def detect_mime_type(content: bytes, filename: str = "image") -> str:
    """Return the MIME type of a supported raster image.

    Raises:
        ImageValidationError: If the bytes are empty, not an image, or an unsupported format.
    """
    if not content:
        raise ImageValidationError(f"Uploaded image {filename} is empty.")
    try:
        with Image.open(io.BytesIO(content)) as img:
            image_format = img.format
            img.verify()
    except (UnidentifiedImageError, OSError, SyntaxError) as exc:
        raise ImageValidationError(
            f"{filename} is not a readable image.", status_code=415
        ) from exc

    mime_type = SUPPORTED_FORMATS.get(image_format or "")
    if mime_type is None:
        raise ImageValidationError(
            f"{filename} has unsupported image format {image_format}. "
            f"Supported: {', '.join(sorted(SUPPORTED_FORMATS))}",
            status_code=415,
        )
    return mime_type


def validate_image(image: UploadedImage) -> str:
    """Validate one upload and return its detected MIME type."""
    validate_filename(image.filename)
    return detect_mime_type(image.content, image.filename)


def validate_batch(images: Iterable[UploadedImage], max_images: int | None = None) -> List[str]:
    """Validate a whole batch before any analysis starts.

    Returns:
        The detected MIME type of each image, in input order.

    Raises:
        ImageValidationError: On an empty batch, too many images, duplicate
            filenames, or any invalid image.
    """
    images = list(images)
    if not images:
        raise ImageValidationError("No images uploaded.")
    if max_images is not None and len(images) > max_images:
        raise ImageValidationError(f"Too many images: {len(images)} (max {max_images}).")

    seen = set()
    mime_types: List[str] = []
    for image in images:
        name = validate_filename(image.filename)
        if name in seen:
            raise ImageValidationError(f"Duplicate image filename: {name}")
        seen.add(name)
        mime_types.append(detect_mime_type(image.content, name))

    LOGGER.debug("Validated batch of %d images", len(images))
    return mime_types
