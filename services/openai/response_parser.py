"""Helpers to parse Chat Completions structured outputs."""

import json
from typing import Any, Dict, List, Optional

from services.openai.analysis_errors import AnalysisRefusedError, AnalysisUnparseableError


def _first_message(response: Any) -> Any:
    choices = getattr(response, "choices", None) or []
    if not choices:
        raise AnalysisUnparseableError("Model response contained no choices.")
    message = getattr(choices[0], "message", None)
    if message is None:
        raise AnalysisUnparseableError("Model response contained no message.")
    return message


def parse_structured_output(response: Any) -> Dict[str, Any]:
    """Return description, prompt and tags from the first choice.

    Raises:
        AnalysisRefusedError: If the model returned a refusal.
        AnalysisUnparseableError: If the content is missing or malformed.
    """
    message = _first_message(response)

    refusal = getattr(message, "refusal", None)
    if refusal:
        raise AnalysisRefusedError(f"Model refused to analyze the image: {refusal}")

    content = getattr(message, "content", None)
    if not content or not content.strip():
        raise AnalysisUnparseableError("Model returned empty content.")

    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise AnalysisUnparseableError(f"Model returned invalid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise AnalysisUnparseableError("Model returned JSON that is not an object.")

    description = payload.get("image_recognition_description")
    prompt = payload.get("image_generation_prompt")
    if not isinstance(description, str) or not isinstance(prompt, str) or not prompt.strip():
        raise AnalysisUnparseableError("Model output is missing the description or the generation prompt.")

    raw_tags = payload.get("tags") or []
    if not isinstance(raw_tags, list):
        raise AnalysisUnparseableError("Model output tags must be a list.")
    tags: List[str] = [tag.strip() for tag in raw_tags if isinstance(tag, str) and tag.strip()]

    return {"description": description.strip(), "prompt": prompt.strip(), "tags": tags}


def extract_usage(response: Any) -> Optional[Dict[str, Optional[int]]]:
    """Return token usage information from the response, if present."""
    usage = getattr(response, "usage", None)
    if usage is None:
        return None
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", None),
        "completion_tokens": getattr(usage, "completion_tokens", None),
        "total_tokens": getattr(usage, "total_tokens", None),
    }


def extract_fingerprint(response: Any) -> Optional[str]:
    """Return the backend `system_fingerprint`, if the API sent one."""
    return getattr(response, "system_fingerprint", None) or None
