"""Prompt builders for reverse image-generation analysis."""


def build_system_prompt() -> str:
    """Return the system prompt for the analyzer."""
    return (
        "You are an image generation prompt engineer. "
        "You describe images precisely so that a text-to-image model could regenerate them, "
        "and you never invent details that are not visible or supplied."
    )


def build_analysis_prompt(context: str | None = None) -> str:
    """Return the user prompt, extended with the context when one is given."""
    context_text = (context or "").strip()

    parts = [
        "Please describe the provided image in detail, focusing on visual elements that would be "
        "important for regenerating a similar image: subject, composition, lighting, colors and style.",
    ]
    if context_text:
        parts.append(f"Additional context for this image: {context_text}")
        parts.append(
            "Every person, animal, place or object that the additional context names must appear "
            "verbatim, by its given name, in the description, in the generation prompt and in the tags. "
            "Never replace a given name with a generic term such as 'a man' or 'a dog'."
        )
    parts.append(
        "Then write an optimized short prompt that would be used to generate the image"
        + (", integrating the additional context" if context_text else "")
        + "."
    )
    parts.append("Finally list a few short lowercase tags for the image.")
    parts.append("Be specific but concise.")
    return "\n\n".join(parts)
