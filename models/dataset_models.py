from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from models.analysis_models import AnalysisRecord

TASK_TYPE = "text_to_image"
FALLBACK_INSTRUCTION = "Failed to analyze image with AI."


@dataclass
class DatasetEntry:
    """A single line of `dataset.jsonl`."""

    instruction: str
    output_image: str
    task_type: str = TASK_TYPE
    input_images: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        # Key order is part of the archive format.
        return {
            "task_type": self.task_type,
            "instruction": self.instruction,
            "input_images": list(self.input_images),
            "output_image": self.output_image,
        }

    @classmethod
    def from_record(cls, record: AnalysisRecord) -> "DatasetEntry":
        instruction = record.result.prompt if record.result is not None else FALLBACK_INSTRUCTION
        return cls(instruction=instruction, output_image=record.filename)


@dataclass
class DatasetMetadata:
    """Batch-level record written to `metadata.jsonl`."""

    model: str
    context: str
    analyses: List[AnalysisRecord] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "context": self.context,
            "analyses": [record.to_dict() for record in self.analyses],
        }
