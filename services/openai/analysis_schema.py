"""Structured output schema for reverse image-generation analysis."""

from typing import Any, Dict

SCHEMA_NAME = "reverse_image_generation"

RESPONSE_FORMAT: Dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": SCHEMA_NAME,
        "strict": True,
        "schema": {
            "type": "object",
            "properties": {
                "image_recognition_description": {
                    "type": "string",
                    "description": "A detailed description of everything visible in the image.",
                },
                "image_generation_prompt": {
                    "type": "string",
                    "description": "A concise prompt that would regenerate the image.",
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Short lowercase tags describing the image.",
                },
            },
            "required": ["image_recognition_description", "image_generation_prompt", "tags"],
            "additionalProperties": False,
        },
    },
}
