"""Vision-capable models offered to clients."""

from typing import Dict, List

SUPPORTED_MODELS: List[Dict[str, str]] = [
    {"name": "gpt-4o-mini", "title": "GPT-4o mini"},
    {"name": "gpt-4o", "title": "GPT-4o"},
    {"name": "gpt-4o-2024-11-20", "title": "GPT-4o (2024-11-20)"},
]


def supported_model_names() -> List[str]:
    return [model["name"] for model in SUPPORTED_MODELS]


def resolve_model(requested: str | None, default: str) -> str:
    """Return the requested model, or `default` when none was given.

    The configured default is always accepted so operators can point
    OPENAI_MODEL at a model outside the catalog.

    Raises:
        ValueError: If the resolved model is not a supported vision model.
    """
    model = (requested or "").strip() or default
    if model != default and model not in supported_model_names():
        raise ValueError(
            f"Unsupported model '{model}'. Supported: {', '.join(supported_model_names())}"
        )
    return model
