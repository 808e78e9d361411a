import io
import os
import sys

import pytest
from PIL import Image

# Ensure project root is importable during tests
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from models.analysis_models import AnalysisMetadata, AnalysisResult
from models.upload_models import UploadedImage
from services.batch.retry import RetryPolicy


def image_bytes(color=(200, 30, 30), fmt="PNG", size=(8, 8)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


def uploaded(filename, color=(200, 30, 30), fmt="PNG") -> UploadedImage:
    return UploadedImage(filename=filename, content=image_bytes(color, fmt))


class StubAnalyzer:
    """Analyzer double that echoes the context into the generation prompt.

    `failures` maps a filename to an exception instance, or to a list of
    exceptions raised on successive calls for that file.
    """

    def __init__(self, failures=None, on_call=None):
        self.failures = dict(failures or {})
        self.on_call = on_call
        self.calls = []

    async def analyze(self, image_bytes, *, filename, context=None, model, mime_type="image/jpeg"):
        self.calls.append({"filename": filename, "context": context, "model": model, "mime_type": mime_type})
        if self.on_call:
            self.on_call(filename)
        failure = self.failures.get(filename)
        if isinstance(failure, list):
            failure = failure.pop(0) if failure else None
        if failure is not None:
            raise failure
        prompt = f"A photo of {filename}"
        if context:
            prompt = f"{prompt}. {context}"
        return AnalysisResult(
            description=f"Description of {filename}",
            prompt=prompt,
            tags=["stub", filename],
            metadata=AnalysisMetadata(model=model, prompt="user prompt", temperature=0.2, seed=42),
        )

    def called_files(self):
        return [call["filename"] for call in self.calls]


@pytest.fixture
def fast_retry():
    return RetryPolicy(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


@pytest.fixture
def png():
    return image_bytes()
