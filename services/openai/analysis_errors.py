"""Typed failures raised by the vision analysis client."""


class AnalysisError(Exception):
    """Base class for a failed image analysis."""

    kind = "error"

    def __init__(self, message: str, *, filename: str | None = None) -> None:
        super().__init__(message)
        self.filename = filename


class AnalysisRefusedError(AnalysisError):
    """The model explicitly refused to describe the image."""

    kind = "refused"


class AnalysisUnparseableError(AnalysisError):
    """The model returned empty or malformed structured output."""

    kind = "unparseable"


class AnalysisTransportError(AnalysisError):
    """Timeout, network failure or non-2xx response from the API."""

    kind = "transport"
