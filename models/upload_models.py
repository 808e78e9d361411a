from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class UploadedImage:
    """An image received from the client, held in memory for one request.

    Attributes:
        filename: Original filename, reused verbatim inside the archive.
        content: Raw image bytes as uploaded.
        content_type: MIME type reported by the client, if any.
    """

    filename: str
    content: bytes
    content_type: Optional[str] = None
