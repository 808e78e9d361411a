"""Per-image analysis results and the records written to `metadata.jsonl`."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class AnalysisMetadata:
    """Provenance of a single analysis call."""

    model: str
    prompt: str
    temperature: float
    seed: int
    usage: Optional[Dict[str, Optional[int]]] = None
    system_fingerprint: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "prompt": self.prompt,
            "temperature": self.temperature,
            "seed": self.seed,
            "usage": self.usage,
            "system_fingerprint": self.system_fingerprint,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisMetadata":
        return cls(
            model=str(data.get("model") or ""),
            prompt=str(data.get("prompt") or ""),
            temperature=float(data.get("temperature") or 0.0),
            seed=int(data.get("seed") or 0),
            usage=data.get("usage"),
            system_fingerprint=data.get("system_fingerprint"),
        )


@dataclass
class AnalysisResult:
    """Structured output of the vision model for one image.

    Attributes:
        description: Detailed recognition description of the image.
        prompt: Concise text-to-image prompt that would regenerate it.
        tags: Ordered tag list, possibly empty.
        metadata: Model, prompt text and sampling parameters used.
    """

    description: str
    prompt: str
    tags: List[str] = field(default_factory=list)
    metadata: Optional[AnalysisMetadata] = None

    def processed_image(self) -> Dict[str, Any]:
        return {
            "image_recognition_description": self.description,
            "image_generation_prompt": self.prompt,
            "tags": list(self.tags),
        }


@dataclass
class AnalysisRecord:
    """One entry of the `analyses` list, successful or fallback."""

    filename: str
    result: Optional[AnalysisResult] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.result is not None

    def to_dict(self) -> Dict[str, Any]:
        if self.result is None:
            return {
                "filename": self.filename,
                "processed_image": None,
                "metadata": None,
                "error": self.error,
            }
        metadata = self.result.metadata.to_dict() if self.result.metadata else None
        return {
            "filename": self.filename,
            "processed_image": self.result.processed_image(),
            "metadata": metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisRecord":
        """Rebuild a record from its `to_dict` form.

        Raises:
            ValueError: If the filename or the processed image is missing.
        """
        filename = data.get("filename")
        if not filename or not isinstance(filename, str):
            raise ValueError("Analysis record is missing a filename.")
        processed = data.get("processed_image")
        if not isinstance(processed, dict):
            raise ValueError(f"Analysis record for {filename} has no processed_image.")
        prompt = processed.get("image_generation_prompt")
        if not prompt or not isinstance(prompt, str):
            raise ValueError(f"Analysis record for {filename} has no generation prompt.")
        tags = processed.get("tags") or []
        metadata = data.get("metadata")
        result = AnalysisResult(
            description=str(processed.get("image_recognition_description") or ""),
            prompt=prompt,
            tags=[str(tag) for tag in tags if isinstance(tag, str)],
            metadata=AnalysisMetadata.from_dict(metadata) if isinstance(metadata, dict) else None,
        )
        return cls(filename=filename, result=result)
