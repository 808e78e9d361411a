"""Batch progress models exposed to clients."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from models.analysis_models import AnalysisRecord


class BatchStage(str, Enum):
	"""Stages a batch moves through; see `BatchStateMachine` for transitions."""

	IDLE = "idle"
	ANALYZING = "analyzing"
	GENERATING = "generating"
	ARCHIVING = "archiving"
	COMPLETE = "complete"
	ERROR = "error"
	CANCELLED = "cancelled"


@dataclass
class BatchState:
	"""Client-visible snapshot of a batch run."""

	batch_id: str
	stage: BatchStage = BatchStage.IDLE
	total: int = 0
	progress: float = 0.0
	current_file: Optional[str] = None
	results: List[AnalysisRecord] = field(default_factory=list)
	error: Optional[str] = None
	dataset_id: Optional[str] = None
	attempt: int = 1
	updated_at: float = field(default_factory=lambda: time.time())

	def to_dict(self) -> Dict[str, Any]:
		return {
			"batch_id": self.batch_id,
			"stage": self.stage.value,
			"total": self.total,
			"progress": round(self.progress, 4),
			"current_file": self.current_file,
			"results": [record.to_dict() for record in self.results],
			"error": self.error,
			"dataset_id": self.dataset_id,
			"attempt": self.attempt,
			"updated_at": self.updated_at,
		}
