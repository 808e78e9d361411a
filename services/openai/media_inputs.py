"""Utilities to build multimodal chat messages for the analysis request."""

import base64
from typing import Any, Dict, List


def to_image_data_url(image_bytes: bytes, mime_type: str = "image/jpeg") -> str:
    """Encode raw image bytes into a base64 data URL."""
    if not image_bytes:
        raise ValueError("Image bytes must not be empty.")
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def build_messages(
    system_prompt: str,
    user_prompt: str,
    *,
    image_bytes: bytes,
    mime_type: str = "image/jpeg",
) -> List[Dict[str, Any]]:
    """Build the chat messages: system text, then the prompt and image together."""
    return [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": to_image_data_url(image_bytes, mime_type)}},
            ],
        },
    ]
